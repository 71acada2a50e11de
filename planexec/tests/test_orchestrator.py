"""
Tests for the execution orchestrator
"""

import pytest

from planexec.core.orchestrator import ExecutionContext, ExecutionOrchestrator
from planexec.models.complexity import ExecutionStrategy, StrategyType
from planexec.models.execution import ExecutionConfig, ExecutionStepResult, StepStatus
from planexec.models.plan import PlanStep


def make_steps(*step_defs):
    """step_defs are (tool, depends_on, parallel) tuples"""
    return [PlanStep(tool=tool, depends_on=deps, parallel=parallel) for tool, deps, parallel in step_defs]


def make_results(steps):
    return [
        ExecutionStepResult(step_index=i, tool=step.tool, params={}, dependencies=list(step.depends_on))
        for i, step in enumerate(steps)
    ]


@pytest.fixture
def orchestrator():
    return ExecutionOrchestrator()


def with_strategy(orchestrator, strategy, max_parallel=5, batch_size=2):
    orchestrator.execution_strategy = ExecutionStrategy(
        strategy=strategy,
        max_parallel_steps=max_parallel,
        batch_size=batch_size
    )
    return orchestrator


class TestExecutionContext:
    """Tracking set bookkeeping"""

    def test_sets_are_read_only_views(self, orchestrator):
        steps = make_steps(("a_list", [], False))
        context = orchestrator.create_context("e1", "p1", ExecutionConfig(), steps)

        orchestrator.mark_running(context, 0)

        assert context.running_steps == frozenset({0})
        assert isinstance(context.completed_steps, frozenset)
        with pytest.raises(AttributeError):
            context.running_steps.add(1)

    def test_step_moves_from_running_to_terminal_once(self, orchestrator):
        steps = make_steps(("a_list", [], False), ("b_list", [], False))
        context = orchestrator.create_context("e1", "p1", ExecutionConfig(), steps)

        orchestrator.mark_running(context, 0)
        orchestrator.update_context_after_step(context, 0, StepStatus.COMPLETED)

        assert context.running_steps == frozenset()
        assert context.completed_steps == frozenset({0})
        with pytest.raises(ValueError):
            orchestrator.update_context_after_step(context, 0, StepStatus.FAILED)
        with pytest.raises(ValueError):
            orchestrator.mark_running(context, 0)

    def test_non_terminal_status_rejected(self, orchestrator):
        steps = make_steps(("a_list", [], False))
        context = orchestrator.create_context("e1", "p1", ExecutionConfig(), steps)
        orchestrator.mark_running(context, 0)

        with pytest.raises(ValueError):
            orchestrator.update_context_after_step(context, 0, StepStatus.RUNNING)

    def test_accounting_never_exceeds_total(self, orchestrator):
        steps = make_steps(("a_list", [], False), ("b_list", [], False), ("c_list", [], False))
        context = orchestrator.create_context("e1", "p1", ExecutionConfig(), steps)

        orchestrator.mark_running(context, 0)
        orchestrator.mark_running(context, 1)
        orchestrator.update_context_after_step(context, 0, StepStatus.COMPLETED)
        orchestrator.update_context_after_step(context, 1, StepStatus.FAILED)

        tracked = len(context.running_steps) + len(context.completed_steps) + len(context.failed_steps)
        assert tracked == 2
        assert not orchestrator.is_execution_complete(3, context)
        assert orchestrator.calculate_progress(3, context) == 67

        summary = orchestrator.get_execution_summary(3, context)
        assert summary["pending_steps"] == 1
        assert summary["is_complete"] is False


class TestReadiness:
    """Ready and blocked step detection"""

    def test_ready_steps_require_completed_dependencies(self, orchestrator):
        steps = make_steps(("a_get", [], False), ("b_list", [0], False), ("c_list", [0, 1], False))
        results = make_results(steps)
        context = orchestrator.create_context("e1", "p1", ExecutionConfig(), steps)

        assert orchestrator.get_ready_steps(steps, results, context) == [0]

        orchestrator.mark_running(context, 0)
        assert orchestrator.get_ready_steps(steps, results, context) == []

        orchestrator.update_context_after_step(context, 0, StepStatus.COMPLETED)
        results[0].status = StepStatus.COMPLETED
        assert orchestrator.get_ready_steps(steps, results, context) == [1]

    def test_failed_dependency_never_becomes_ready(self, orchestrator):
        steps = make_steps(("a_get", [], False), ("b_list", [0], False))
        results = make_results(steps)
        context = orchestrator.create_context("e1", "p1", ExecutionConfig(), steps)

        orchestrator.mark_running(context, 0)
        orchestrator.update_context_after_step(context, 0, StepStatus.FAILED)

        assert orchestrator.get_ready_steps(steps, results, context) == []
        assert orchestrator.get_blocked_steps(steps, context) == {1: [0]}

    def test_dependents_and_graph(self, orchestrator):
        steps = make_steps(("a_get", [], False), ("b_list", [0], False), ("c_list", [0], False))
        context = orchestrator.create_context("e1", "p1", ExecutionConfig(), steps)

        assert context.dependency_graph == {0: [], 1: [0], 2: [0]}
        assert orchestrator.get_dependents(0, context) == [1, 2]

    def test_priority_sort_is_stable_on_index(self, orchestrator):
        steps = make_steps(("a_get", [], False), ("b_list", [0], False), ("c_list", [], False))

        assert orchestrator.sort_steps_by_priority([2, 1, 0], steps) == [0, 2, 1]


class TestGrouping:
    """Parallel, sequential and batch selection"""

    def test_parallel_flag_under_simple_strategy(self, orchestrator):
        with_strategy(orchestrator, StrategyType.SIMPLE, max_parallel=1, batch_size=1)
        steps = make_steps(("a_list", [], True), ("b_list", [], False), ("c_create", [], True))
        context = orchestrator.create_context("e1", "p1", ExecutionConfig(), steps)

        parallel = orchestrator.get_parallel_steps([0, 1, 2], steps, context)
        sequential = orchestrator.get_sequential_steps([0, 1, 2], steps, context)

        assert parallel == [0, 2]
        assert sequential == [1]

    def test_list_and_independent_get_run_in_parallel_under_parallel_strategy(self, orchestrator):
        with_strategy(orchestrator, StrategyType.PARALLEL, max_parallel=3)
        steps = make_steps(("a_list", [], False), ("b_get", [], False), ("c_get", [0], False), ("d_update", [], False))
        context = orchestrator.create_context("e1", "p1", ExecutionConfig(), steps)

        assert orchestrator.get_parallel_steps([0, 1, 2, 3], steps, context) == [0, 1]
        assert orchestrator.get_sequential_steps([0, 1, 2, 3], steps, context) == [2, 3]

    def test_parallel_groups_empty_when_running_at_limit(self, orchestrator):
        with_strategy(orchestrator, StrategyType.PARALLEL, max_parallel=1)
        steps = make_steps(("a_list", [], True), ("b_list", [], True))
        context = orchestrator.create_context("e1", "p1", ExecutionConfig(), steps)
        orchestrator.mark_running(context, 0)

        assert orchestrator.get_parallel_steps([1], steps, context) == []
        assert orchestrator.get_sequential_steps([1], steps, context) == [1]

    def test_zero_parallel_limit_falls_back_to_config(self, orchestrator):
        with_strategy(orchestrator, StrategyType.COMPLEX, max_parallel=0, batch_size=3)
        steps = make_steps(("a_list", [], False), ("b_list", [], False))
        context = orchestrator.create_context("e1", "p1", ExecutionConfig(parallel_execution_limit=2), steps)
        orchestrator.mark_running(context, 0)

        assert orchestrator.get_parallel_steps([1], steps, context) == [1]

    def test_intelligent_batches_respect_batch_size_and_limit(self, orchestrator):
        with_strategy(orchestrator, StrategyType.COMPLEX, max_parallel=5, batch_size=3)
        steps = make_steps(
            ("a_list", [], False), ("b_list", [], False), ("c_list", [], False), ("d_list", [], False),
            ("e_get", [], False), ("f_create", [], False)
        )
        context = orchestrator.create_context("e1", "p1", ExecutionConfig(parallel_execution_limit=2), steps)

        batches = orchestrator.get_intelligent_batches([0, 1, 2, 3, 4, 5], steps, context)

        assert batches == [[0, 1], [2, 3], [4], [5]]
        assert all(len(batch) <= 2 for batch in batches)

    def test_can_batch_steps_by_operation(self, orchestrator):
        steps = make_steps(("facilities_list", [], False), ("clients_list", [], False), ("clients_get", [], False))

        assert orchestrator.can_batch_steps([0, 1], steps) is True
        assert orchestrator.can_batch_steps([0, 2], steps) is False
        assert orchestrator.can_batch_steps([0], steps) is False

    def test_step_priority(self, orchestrator):
        with_strategy(orchestrator, StrategyType.COMPLEX)
        steps = make_steps(("a_list", [], False), ("b_get", [], False), ("c_create", [0], False), ("d_get", [0], False))

        assert [orchestrator.get_step_priority(i, steps) for i in range(4)] == [1, 2, 4, 3]


class TestValidation:
    """Context and plan validation"""

    def test_validate_context(self, orchestrator):
        steps = make_steps(("a_list", [], False))
        config = ExecutionConfig(max_retries=-1, retry_delay_ms=-5, parallel_execution_limit=0)
        context = orchestrator.create_context("", "p1", config, steps)

        errors = orchestrator.validate_context(context)

        assert "Execution ID is required" in errors
        assert "Max retries must be non-negative" in errors
        assert "Retry delay must be non-negative" in errors
        assert "Parallel execution limit must be at least 1" in errors

    def test_validate_plan_warnings(self, orchestrator):
        steps = make_steps(("a_list", [1], False), ("b_list", [1], False), ("c_list", [7], False))

        warnings = orchestrator.validate_plan(steps)

        assert "Step 0 depends on later step 1" in warnings
        assert "Step 1 depends on itself" in warnings
        assert "Step 2 depends on step 7 which is not part of the plan" in warnings

    def test_strategy_is_set_from_analysis(self, orchestrator):
        complexity = orchestrator.analyze_and_set_strategy("show clients", ["clients_list"])

        assert complexity.is_complex is False
        assert orchestrator.get_execution_strategy().strategy == StrategyType.SIMPLE
