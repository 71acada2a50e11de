"""
Execution agent - drives a plan from lookup to terminal status
"""

import time
import asyncio
from datetime import datetime
from typing import List, Optional, Sequence, Tuple, Union

from ..logging.config import (
    generate_execution_id,
    get_logger,
    log_execution,
    log_step_execution,
)
from ..models.execution import (
    ExecutionConfig,
    ExecutionConfigInput,
    ExecutionRecord,
    ExecutionStatistics,
    ExecutionStatus,
    ExecutionStepResult,
    ExecutionSummary,
    StepStatus,
    ToolResult,
)
from ..models.plan import PlanStep
from ..observability.metrics import metrics
from ..planning.complexity import ComplexityAnalyzer
from ..storage.database import ExecutionStorage, PlanStorage
from ..tools.client import ToolCallable, ToolClient, as_tool_client
from .errors import (
    ExecutionError,
    ParameterValidationError,
    PlanNotFoundError,
    RollbackError,
    StuckExecutionError,
    ToolExecutionError,
)
from .orchestrator import ExecutionContext, ExecutionOrchestrator
from .references import ReferenceResolver
from .result_analyzer import ResultAnalyzer
from .retry import RetryHandler
from .rollback import RollbackHandler
from .validation import ParameterValidator


class _StepFailed(ExecutionError):
    """Aborts the scheduling loop when a step fails and errors are not tolerated"""

    def __init__(self, step_index: int, tool: str, cause: BaseException):
        self.step_index = step_index
        self.tool = tool
        self.cause = cause
        super().__init__(f"Step {step_index} ({tool}) failed: {str(cause)}")


class ExecutionAgent:
    """
    Runs plans against the tool boundary

    The agent is the only component that talks to storage and to the tools.
    Each execution gets its own orchestrator and context, so one agent can
    run several executions concurrently.
    """

    def __init__(
        self,
        tools: Union[ToolClient, ToolCallable],
        execution_storage: ExecutionStorage,
        plan_storage: PlanStorage,
        default_config: Optional[ExecutionConfig] = None,
        retry_handler: Optional[RetryHandler] = None,
        complexity_analyzer: Optional[ComplexityAnalyzer] = None,
        reference_resolver: Optional[ReferenceResolver] = None
    ):
        self.tools = as_tool_client(tools)
        self.execution_storage = execution_storage
        self.plan_storage = plan_storage
        self.default_config = default_config or ExecutionConfig()
        self.retry_handler = retry_handler or RetryHandler()
        self.complexity_analyzer = complexity_analyzer or ComplexityAnalyzer()
        self.reference_resolver = reference_resolver or ReferenceResolver()
        self.validator = ParameterValidator()
        self.rollback_handler = RollbackHandler(self.tools)
        self.result_analyzer = ResultAnalyzer()
        self.logger = get_logger(__name__)

    async def execute_plan(
        self,
        plan_request_id: str,
        config_input: Optional[ExecutionConfigInput] = None
    ) -> ExecutionRecord:
        """
        Execute a stored plan

        Args:
            plan_request_id: ID of the stored plan request
            config_input: Optional overrides for the default configuration

        Returns:
            The final execution record. Never raises: any failure yields a
            FAILED record carrying the error message.
        """
        execution_id = generate_execution_id()
        start_time = time.time()
        strategy_label = "unknown"
        saved = False

        metrics.execution_started()
        try:
            plan_request = await self.plan_storage.get_plan_by_request_id(plan_request_id)
            if plan_request is None:
                raise PlanNotFoundError(plan_request_id)

            config = self.default_config.merge(config_input)
            steps = plan_request.plan.steps
            query = plan_request.query or plan_request.plan.metadata.query

            orchestrator = ExecutionOrchestrator(self.complexity_analyzer)
            orchestrator.analyze_and_set_strategy(query, plan_request.plan.tool_names)
            strategy_label = orchestrator.get_execution_strategy().strategy
            metrics.record_strategy(strategy_label)

            context = orchestrator.create_context(execution_id, plan_request_id, config, steps)
            config_errors = orchestrator.validate_context(context)
            if config_errors:
                raise ExecutionError(f"Invalid execution configuration: {', '.join(config_errors)}")

            for warning in orchestrator.validate_plan(steps):
                self.logger.warning("Plan structure warning", plan_request_id=plan_request_id, warning=warning)

            step_results = [
                ExecutionStepResult(
                    step_index=index,
                    tool=step.tool,
                    params=dict(step.params),
                    status=StepStatus.PENDING,
                    retry_count=0,
                    dependencies=list(step.depends_on or [])
                )
                for index, step in enumerate(steps)
            ]

            await self.execution_storage.save_execution(execution_id, plan_request_id, len(steps), step_results)
            saved = True
            await self.execution_storage.update_execution_status(execution_id, ExecutionStatus.RUNNING)

            self.logger.info(
                "Starting execution",
                execution_id=execution_id,
                plan_request_id=plan_request_id,
                total_steps=len(steps),
                strategy=strategy_label
            )

            success, error = await self._execute_plan_steps(orchestrator, steps, step_results, context)

            if success:
                final_status, final_error = ExecutionStatus.COMPLETED, None
            elif config.enable_rollback:
                final_status, final_error = await self._perform_rollback(step_results, context, error)
            else:
                final_status, final_error = ExecutionStatus.FAILED, error

            await self.execution_storage.update_execution_status(execution_id, final_status, final_error)

            record = await self.execution_storage.get_execution_by_id(execution_id)
            if record is None:
                raise ExecutionError("Failed to retrieve execution data")

            duration = time.time() - start_time
            log_execution(
                execution_id,
                plan_request_id,
                record.status,
                round(duration * 1000, 2),
                error=record.error,
                strategy=strategy_label
            )
            metrics.record_execution(record.status, strategy_label, duration)
            return record

        except Exception as e:
            return await self._fail_execution(execution_id, plan_request_id, e, saved, start_time, strategy_label)
        finally:
            metrics.execution_finished()

    async def _fail_execution(
        self,
        execution_id: str,
        plan_request_id: str,
        error: Exception,
        saved: bool,
        start_time: float,
        strategy_label: str
    ) -> ExecutionRecord:
        """Convert an unexpected failure into a FAILED record"""
        message = str(error) or type(error).__name__
        self.logger.error(
            "Execution failed",
            execution_id=execution_id,
            plan_request_id=plan_request_id,
            error=message,
            error_type=type(error).__name__
        )

        record = None
        if saved:
            try:
                await self.execution_storage.update_execution_status(execution_id, ExecutionStatus.FAILED, message)
                record = await self.execution_storage.get_execution_by_id(execution_id)
            except ExecutionError as storage_error:
                self.logger.error(
                    "Could not persist execution failure",
                    execution_id=execution_id,
                    error=str(storage_error)
                )

        if record is None:
            now = datetime.utcnow()
            record = ExecutionRecord(
                execution_id=execution_id,
                plan_request_id=plan_request_id,
                status=ExecutionStatus.FAILED,
                error=message,
                completed_at=now
            )

        duration = time.time() - start_time
        log_execution(execution_id, plan_request_id, record.status, round(duration * 1000, 2), error=record.error)
        metrics.record_execution(record.status, strategy_label, duration)
        return record

    async def _execute_plan_steps(
        self,
        orchestrator: ExecutionOrchestrator,
        steps: Sequence[PlanStep],
        step_results: List[ExecutionStepResult],
        context: ExecutionContext
    ) -> Tuple[bool, Optional[str]]:
        """
        Scheduling loop

        Returns:
            Tuple of (success, error). Storage failures propagate.
        """
        total_steps = len(steps)

        try:
            while not orchestrator.is_execution_complete(total_steps, context):
                if context.config.continue_on_error:
                    await self._skip_blocked_steps(orchestrator, steps, step_results, context)
                    if orchestrator.is_execution_complete(total_steps, context):
                        break

                ready = orchestrator.get_ready_steps(steps, step_results, context)
                if not ready:
                    pending = [index for index in range(total_steps) if not context.is_tracked(index)]
                    if pending:
                        raise StuckExecutionError(pending)
                    break

                sorted_steps = orchestrator.sort_steps_by_priority(ready, steps)
                strategy = orchestrator.get_execution_strategy()

                if strategy is not None and strategy.uses_batches:
                    batches = orchestrator.get_intelligent_batches(sorted_steps, steps, context)
                    for batch in batches:
                        await self._execute_group(orchestrator, batch, steps, step_results, context)
                else:
                    parallel = orchestrator.get_parallel_steps(sorted_steps, steps, context)
                    sequential = orchestrator.get_sequential_steps(sorted_steps, steps, context)
                    limit = context.config.parallel_execution_limit

                    for start in range(0, len(parallel), limit):
                        group = parallel[start:start + limit]
                        await self._execute_group(orchestrator, group, steps, step_results, context)

                    for index in sequential:
                        await self._execute_group(orchestrator, [index], steps, step_results, context)

        except _StepFailed as e:
            return False, str(e)
        except StuckExecutionError as e:
            self.logger.error("Execution stuck", execution_id=context.execution_id, pending=e.pending)
            return False, str(e)

        failed = [result for result in step_results if result.status == StepStatus.FAILED]
        if not failed or context.config.continue_on_error:
            return True, None
        return False, f"{len(failed)} step(s) failed"

    async def _execute_group(
        self,
        orchestrator: ExecutionOrchestrator,
        group: Sequence[int],
        steps: Sequence[PlanStep],
        step_results: List[ExecutionStepResult],
        context: ExecutionContext
    ) -> None:
        """Run steps concurrently and wait until every one of them settles"""
        if len(group) == 1:
            await self._execute_single_step(orchestrator, group[0], steps, step_results, context)
            return

        self.logger.debug("Executing step group", execution_id=context.execution_id, steps=list(group))
        outcomes = await asyncio.gather(
            *[self._execute_single_step(orchestrator, index, steps, step_results, context) for index in group],
            return_exceptions=True
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

    async def _execute_single_step(
        self,
        orchestrator: ExecutionOrchestrator,
        step_index: int,
        steps: Sequence[PlanStep],
        step_results: List[ExecutionStepResult],
        context: ExecutionContext
    ) -> None:
        step = steps[step_index]
        step_result = step_results[step_index]
        execution_id = context.execution_id

        orchestrator.mark_running(context, step_index)
        step_result.status = StepStatus.RUNNING
        step_result.started_at = datetime.utcnow()
        await self.execution_storage.update_step_result(execution_id, step_index, step_result)

        start_time = time.time()
        failure: Optional[Exception] = None

        def on_retry(retry_number: int, error: BaseException) -> None:
            step_result.retry_count = retry_number
            metrics.record_retry(step.tool)

        try:
            resolved_params = self.reference_resolver.resolve_params(step.params, step_results)
            step_result.params = resolved_params

            valid, errors = self.validator.validate(step.tool, resolved_params)
            if not valid:
                raise ParameterValidationError(errors, step_index=step_index)

            outcome = await self.retry_handler.retry_with_backoff(
                lambda: self._invoke_tool(step.tool, resolved_params),
                max_retries=context.config.max_retries,
                delay_ms=context.config.retry_delay_ms,
                on_retry=on_retry,
                operation=f"step_{step_index}:{step.tool}"
            )

            step_result.result = outcome.data
            step_result.status = StepStatus.COMPLETED
            step_result.completed_at = datetime.utcnow()

        except Exception as e:
            failure = e
            step_result.status = StepStatus.FAILED
            step_result.error = str(e) or type(e).__name__
            step_result.completed_at = datetime.utcnow()

        if failure is None:
            try:
                analysis = self.result_analyzer.analyze_step_result(step_result)
                self.result_analyzer.log_analysis(execution_id, step_result, analysis)
            except Exception as e:
                self.logger.warning(
                    "Result analysis failed",
                    execution_id=execution_id,
                    step_index=step_index,
                    tool=step.tool,
                    error=str(e)
                )

        orchestrator.update_context_after_step(context, step_index, step_result.status)

        duration = time.time() - start_time
        log_step_execution(
            execution_id,
            step_index,
            step.tool,
            step_result.status,
            round(duration * 1000, 2),
            retry_count=step_result.retry_count,
            error=step_result.error
        )
        metrics.record_step(step.tool, step_result.status, duration)

        await self.execution_storage.update_step_result(execution_id, step_index, step_result)
        await self.execution_storage.update_execution_progress(
            execution_id,
            len(context.completed_steps),
            len(context.failed_steps)
        )

        if failure is not None and not context.config.continue_on_error:
            raise _StepFailed(step_index, step.tool, failure)

    async def _invoke_tool(self, tool: str, params: dict) -> ToolResult:
        outcome = await self.tools.execute(tool, params)
        if not outcome.success:
            raise ToolExecutionError(outcome.error or f"Tool {tool} reported failure", tool=tool)
        return outcome

    async def _skip_blocked_steps(
        self,
        orchestrator: ExecutionOrchestrator,
        steps: Sequence[PlanStep],
        step_results: List[ExecutionStepResult],
        context: ExecutionContext
    ) -> None:
        """Fail pending steps whose dependencies failed, without calling their tools"""
        blocked = orchestrator.get_blocked_steps(steps, context)
        for step_index, failed_deps in sorted(blocked.items()):
            step_result = step_results[step_index]
            step_result.status = StepStatus.FAILED
            step_result.error = f"Skipped: dependency step(s) {failed_deps} failed"
            step_result.completed_at = datetime.utcnow()

            orchestrator.update_context_after_step(context, step_index, step_result.status)
            self.logger.warning(
                "Step skipped",
                execution_id=context.execution_id,
                step_index=step_index,
                tool=step_result.tool,
                failed_dependencies=failed_deps
            )
            await self.execution_storage.update_step_result(context.execution_id, step_index, step_result)

        if blocked:
            await self.execution_storage.update_execution_progress(
                context.execution_id,
                len(context.completed_steps),
                len(context.failed_steps)
            )

    async def _perform_rollback(
        self,
        step_results: Sequence[ExecutionStepResult],
        context: ExecutionContext,
        cause: Optional[str]
    ) -> Tuple[ExecutionStatus, Optional[str]]:
        """
        Undo completed steps after a failure

        Returns:
            Final status and error: ROLLED_BACK when every rollback step
            succeeded, FAILED when there was nothing to undo or a rollback
            step failed.
        """
        completed = [result for result in step_results if result.status == StepStatus.COMPLETED]
        plan = self.rollback_handler.generate_rollback_plan(completed)

        if not plan.steps:
            self.logger.info("No rollback steps needed", execution_id=context.execution_id)
            return ExecutionStatus.FAILED, cause

        for problem in self.rollback_handler.validate_rollback_plan(plan):
            self.logger.warning("Rollback plan problem", execution_id=context.execution_id, problem=problem)

        self.logger.info(
            "Execution failed, attempting rollback",
            execution_id=context.execution_id,
            rollback_steps=len(plan.steps),
            source_steps=plan.source_step_indices
        )

        try:
            result = await self.rollback_handler.execute_rollback(plan, execution_id=context.execution_id)
        except Exception as e:
            self.logger.error("Rollback execution failed", execution_id=context.execution_id, error=str(e))
            return ExecutionStatus.FAILED, f"{cause}; Rollback execution failed: {str(e)}"

        if result.success:
            return ExecutionStatus.ROLLED_BACK, cause
        return ExecutionStatus.FAILED, f"{cause}; {RollbackError(result.errors)}"

    async def get_execution(self, execution_id: str) -> Optional[ExecutionRecord]:
        return await self.execution_storage.get_execution_by_id(execution_id)

    async def cancel_execution(self, execution_id: str) -> bool:
        """
        Mark a RUNNING execution FAILED

        In-flight tool calls are not interrupted; their results are still
        written to the step rows.
        """
        execution = await self.execution_storage.get_execution_by_id(execution_id)
        if execution is None or execution.status != ExecutionStatus.RUNNING:
            return False

        updated = await self.execution_storage.update_execution_status(
            execution_id,
            ExecutionStatus.FAILED,
            "Execution cancelled by user"
        )
        if updated:
            self.logger.info("Execution cancelled", execution_id=execution_id)
        return updated

    async def retry_execution(self, execution_id: str) -> ExecutionRecord:
        """Start a new execution of the plan behind a FAILED execution"""
        execution = await self.execution_storage.get_execution_by_id(execution_id)
        if execution is None:
            raise ExecutionError(f"Execution not found: {execution_id}")
        if execution.status != ExecutionStatus.FAILED:
            raise ExecutionError(f"Cannot retry execution with status: {execution.status}")

        return await self.execute_plan(execution.plan_request_id)

    async def get_executions_by_plan_id(self, plan_request_id: str) -> List[ExecutionSummary]:
        executions = await self.execution_storage.get_executions_by_plan_id(plan_request_id)
        return [execution.to_summary() for execution in executions]

    async def get_recent_executions(self, limit: int = 50) -> List[ExecutionSummary]:
        executions = await self.execution_storage.get_recent_executions(limit)
        return [execution.to_summary() for execution in executions]

    async def get_statistics(self) -> ExecutionStatistics:
        return await self.execution_storage.get_execution_statistics()
