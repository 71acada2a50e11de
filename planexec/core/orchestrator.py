"""
Execution orchestration: step readiness, grouping and per-run bookkeeping
"""

from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Set

from ..logging.config import get_logger
from ..models.complexity import ExecutionStrategy, QueryComplexity, StrategyType
from ..models.execution import ExecutionConfig, ExecutionStepResult, StepStatus
from ..models.plan import PlanStep
from ..planning.complexity import ComplexityAnalyzer


DependencyGraph = Dict[int, List[int]]


class ExecutionContext:
    """
    State of one execution run

    The running / completed / failed sets are exposed read-only. They are
    written only through ExecutionOrchestrator.mark_running and
    ExecutionOrchestrator.update_context_after_step, so a step index is in
    at most one of them at any time.
    """

    def __init__(
        self,
        execution_id: str,
        plan_request_id: str,
        config: ExecutionConfig,
        dependency_graph: DependencyGraph,
        strategy: Optional[ExecutionStrategy] = None
    ):
        self.execution_id = execution_id
        self.plan_request_id = plan_request_id
        self.config = config
        self.dependency_graph = dependency_graph
        self.strategy = strategy
        self._running: Set[int] = set()
        self._completed: Set[int] = set()
        self._failed: Set[int] = set()

    @property
    def running_steps(self) -> FrozenSet[int]:
        return frozenset(self._running)

    @property
    def completed_steps(self) -> FrozenSet[int]:
        return frozenset(self._completed)

    @property
    def failed_steps(self) -> FrozenSet[int]:
        return frozenset(self._failed)

    @property
    def total_steps(self) -> int:
        return len(self.dependency_graph)

    def is_tracked(self, step_index: int) -> bool:
        return step_index in self._running or step_index in self._completed or step_index in self._failed

    def _start(self, step_index: int) -> None:
        if self.is_tracked(step_index):
            raise ValueError(f"Step {step_index} has already left PENDING")
        self._running.add(step_index)

    def _finish(self, step_index: int, status: str) -> None:
        if step_index in self._completed or step_index in self._failed:
            raise ValueError(f"Step {step_index} already has a terminal status")
        self._running.discard(step_index)
        if status == StepStatus.COMPLETED:
            self._completed.add(step_index)
        elif status == StepStatus.FAILED:
            self._failed.add(step_index)
        else:
            raise ValueError(f"Step {step_index} cannot finish with status {status}")


class ExecutionOrchestrator:
    """Decides which steps run next and how they are grouped"""

    def __init__(self, complexity_analyzer: Optional[ComplexityAnalyzer] = None):
        self.complexity_analyzer = complexity_analyzer or ComplexityAnalyzer()
        self.execution_strategy: Optional[ExecutionStrategy] = None
        self.logger = get_logger(__name__)

    def analyze_and_set_strategy(self, query: str, selected_tools: List[str]) -> QueryComplexity:
        """Run complexity analysis and keep the resulting strategy for this run"""
        complexity, strategy = self.complexity_analyzer.analyze(query, selected_tools)
        self.execution_strategy = strategy
        return complexity

    def get_execution_strategy(self) -> Optional[ExecutionStrategy]:
        return self.execution_strategy

    def build_dependency_graph(self, steps: Sequence[PlanStep]) -> DependencyGraph:
        return {index: list(step.depends_on or []) for index, step in enumerate(steps)}

    def create_context(
        self,
        execution_id: str,
        plan_request_id: str,
        config: ExecutionConfig,
        steps: Sequence[PlanStep]
    ) -> ExecutionContext:
        return ExecutionContext(
            execution_id=execution_id,
            plan_request_id=plan_request_id,
            config=config,
            dependency_graph=self.build_dependency_graph(steps),
            strategy=self.execution_strategy
        )

    def validate_context(self, context: ExecutionContext) -> List[str]:
        errors = []

        if not context.execution_id:
            errors.append("Execution ID is required")
        if not context.plan_request_id:
            errors.append("Plan request ID is required")
        if context.config is None:
            errors.append("Execution config is required")
            return errors
        if context.config.max_retries < 0:
            errors.append("Max retries must be non-negative")
        if context.config.retry_delay_ms < 0:
            errors.append("Retry delay must be non-negative")
        if context.config.parallel_execution_limit < 1:
            errors.append("Parallel execution limit must be at least 1")

        return errors

    def validate_plan(self, steps: Sequence[PlanStep]) -> List[str]:
        """
        Structural warnings for a plan

        Dependencies must point at earlier steps. Plans are not rejected on
        these warnings; an unsatisfiable dependency surfaces at run time as a
        stuck execution.
        """
        warnings = []
        for index, step in enumerate(steps):
            if not step.tool:
                warnings.append(f"Step {index} has no tool")
            for dep in step.depends_on or []:
                if dep < 0 or dep >= len(steps):
                    warnings.append(f"Step {index} depends on step {dep} which is not part of the plan")
                elif dep == index:
                    warnings.append(f"Step {index} depends on itself")
                elif dep > index:
                    warnings.append(f"Step {index} depends on later step {dep}")
        return warnings

    def mark_running(self, context: ExecutionContext, step_index: int) -> None:
        """Move a pending step into the running set"""
        context._start(step_index)

    def update_context_after_step(self, context: ExecutionContext, step_index: int, status: str) -> None:
        """
        Record a step's terminal outcome

        Moves the step from running into completed or failed. Called exactly
        once per step.
        """
        context._finish(step_index, status)

    def is_execution_complete(self, total_steps: int, context: ExecutionContext) -> bool:
        return len(context.completed_steps) + len(context.failed_steps) >= total_steps

    def are_dependencies_satisfied(
        self,
        step_index: int,
        step_results: Sequence[ExecutionStepResult],
        context: ExecutionContext
    ) -> bool:
        if step_index >= len(step_results):
            return False
        completed = context.completed_steps
        return all(dep in completed for dep in step_results[step_index].dependencies)

    def get_ready_steps(
        self,
        steps: Sequence[PlanStep],
        step_results: Sequence[ExecutionStepResult],
        context: ExecutionContext
    ) -> List[int]:
        """
        Steps that are PENDING, untracked, and whose dependencies all completed

        A dependency that failed never completes, so its dependents are
        never ready.
        """
        ready = []
        for index in range(len(steps)):
            if context.is_tracked(index):
                continue
            if step_results[index].status != StepStatus.PENDING:
                continue
            if self.are_dependencies_satisfied(index, step_results, context):
                ready.append(index)
        return ready

    def get_blocked_steps(self, steps: Sequence[PlanStep], context: ExecutionContext) -> Dict[int, List[int]]:
        """Untracked steps mapped to the failed dependencies that block them"""
        failed = context.failed_steps
        blocked = {}
        for index, step in enumerate(steps):
            if context.is_tracked(index):
                continue
            failed_deps = [dep for dep in step.depends_on or [] if dep in failed]
            if failed_deps:
                blocked[index] = failed_deps
        return blocked

    def get_dependents(self, step_index: int, context: ExecutionContext) -> List[int]:
        return [
            index for index, deps in context.dependency_graph.items()
            if step_index in deps
        ]

    def sort_steps_by_priority(self, step_indices: Sequence[int], steps: Sequence[PlanStep]) -> List[int]:
        """Fewer dependencies first, plan order as tie-break"""
        return sorted(step_indices, key=lambda index: (len(steps[index].depends_on or []), index))

    def get_step_priority(self, step_index: int, steps: Sequence[PlanStep]) -> int:
        step = steps[step_index]
        strategy = self.execution_strategy

        if strategy is not None and strategy.strategy == StrategyType.COMPLEX and "_list" in step.tool:
            return 1
        if not step.depends_on:
            return 2
        if "_create" in step.tool:
            return 4
        return 3

    def _can_run_in_parallel(self, step: PlanStep) -> bool:
        strategy = self.execution_strategy
        if strategy is None or strategy.strategy not in (StrategyType.COMPLEX, StrategyType.PARALLEL):
            return False
        if "_list" in step.tool:
            return True
        return "_get" in step.tool and not step.depends_on

    def get_parallel_steps(
        self,
        ready_steps: Sequence[int],
        steps: Sequence[PlanStep],
        context: ExecutionContext
    ) -> List[int]:
        """
        Ready steps that may run concurrently

        Steps flagged ``parallel`` always qualify; under the complex and
        parallel strategies independent list/get steps qualify too.
        """
        strategy = self.execution_strategy
        max_parallel = (strategy.max_parallel_steps if strategy else 0) or context.config.parallel_execution_limit
        if len(context.running_steps) >= max_parallel:
            return []

        return [
            index for index in ready_steps
            if steps[index].parallel or self._can_run_in_parallel(steps[index])
        ]

    def get_sequential_steps(
        self,
        ready_steps: Sequence[int],
        steps: Sequence[PlanStep],
        context: ExecutionContext
    ) -> List[int]:
        """Ready steps not returned by get_parallel_steps, in the given order"""
        parallel = set(self.get_parallel_steps(ready_steps, steps, context))
        return [index for index in ready_steps if index not in parallel]

    def get_intelligent_batches(
        self,
        sorted_steps: Sequence[int],
        steps: Sequence[PlanStep],
        context: ExecutionContext
    ) -> List[List[int]]:
        """
        Group ready steps for the batched and complex strategies

        List steps are batched together, then get steps; everything else
        runs as a batch of one. No batch exceeds the strategy batch size or
        the configured parallel execution limit.
        """
        strategy = self.execution_strategy
        batch_size = (strategy.batch_size if strategy else 0) or 2
        batch_size = max(1, min(batch_size, context.config.parallel_execution_limit))

        list_steps = [index for index in sorted_steps if "_list" in steps[index].tool]
        get_steps = [
            index for index in sorted_steps
            if "_get" in steps[index].tool and index not in list_steps
        ]
        grouped = set(list_steps) | set(get_steps)
        other_steps = [index for index in sorted_steps if index not in grouped]

        batches: List[List[int]] = []
        for group in (list_steps, get_steps):
            for start in range(0, len(group), batch_size):
                batches.append(group[start:start + batch_size])
        for index in other_steps:
            batches.append([index])

        return batches

    def can_batch_steps(self, step_indices: Sequence[int], steps: Sequence[PlanStep]) -> bool:
        """Steps can share a batch when their operation kind matches"""
        if len(step_indices) < 2:
            return False

        def operation(tool: str) -> str:
            parts = tool.split("_")
            return parts[1] if len(parts) > 1 else ""

        return len({operation(steps[index].tool) for index in step_indices}) == 1

    def calculate_progress(self, total_steps: int, context: ExecutionContext) -> int:
        if total_steps == 0:
            return 100
        finished = len(context.completed_steps) + len(context.failed_steps)
        return round((finished / total_steps) * 100)

    def get_execution_summary(self, total_steps: int, context: ExecutionContext) -> Dict[str, Any]:
        completed = len(context.completed_steps)
        failed = len(context.failed_steps)
        running = len(context.running_steps)

        return {
            "total_steps": total_steps,
            "completed_steps": completed,
            "failed_steps": failed,
            "running_steps": running,
            "pending_steps": total_steps - completed - failed - running,
            "progress": self.calculate_progress(total_steps, context),
            "is_complete": self.is_execution_complete(total_steps, context)
        }
