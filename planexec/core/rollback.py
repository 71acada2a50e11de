"""
Best-effort rollback of completed side-effecting steps
"""

import re
from typing import Any, Dict, List, Optional, Sequence, Union

from ..logging.config import get_logger, log_rollback
from ..models.execution import ExecutionStepResult, RollbackPlan, RollbackResult, StepStatus
from ..models.plan import PlanStep
from ..observability.metrics import metrics
from ..tools.client import ToolCallable, ToolClient, as_tool_client


CREATE_SUFFIX = "_create"
DELETE_SUFFIX = "_delete"
UPDATE_SUFFIX = "_update"

CRITICAL_PATTERNS = [
    re.compile(r"_create$"),
    re.compile(r"_delete$"),
    re.compile(r"_update$"),
]


def get_inverse_operation(tool: str) -> Optional[str]:
    """
    Map a tool to the tool that undoes it

    ``x_create`` maps to ``x_delete`` and back; ``x_update`` maps to itself,
    which re-applies the same values rather than restoring prior ones.
    """
    if not tool:
        return None
    if tool.endswith(CREATE_SUFFIX):
        return tool[:-len(CREATE_SUFFIX)] + DELETE_SUFFIX
    if tool.endswith(DELETE_SUFFIX):
        return tool[:-len(DELETE_SUFFIX)] + CREATE_SUFFIX
    if tool.endswith(UPDATE_SUFFIX):
        return tool
    return None


def _extract_identifier(value: Any) -> Optional[Any]:
    if isinstance(value, dict):
        return value.get("uid") or value.get("id")
    return None


class RollbackHandler:
    """Builds and executes inverse plans for completed steps"""

    def __init__(self, tools: Union[ToolClient, ToolCallable, None] = None):
        self.tools = as_tool_client(tools) if tools is not None else None
        self.logger = get_logger(__name__)

    def get_inverse_operation(self, tool: str) -> Optional[str]:
        return get_inverse_operation(tool)

    def supports_rollback(self, tool: str) -> bool:
        return get_inverse_operation(tool) is not None

    def generate_rollback_plan(self, completed_steps: Sequence[ExecutionStepResult]) -> RollbackPlan:
        """
        Derive inverse steps for completed steps, most recent first

        Steps without an inverse, or whose rollback parameters cannot be
        derived, are skipped with a warning.
        """
        candidates = sorted(
            (step for step in completed_steps if step.status == StepStatus.COMPLETED),
            key=lambda step: step.step_index,
            reverse=True
        )

        steps: List[PlanStep] = []
        source_indices: List[int] = []
        for step in candidates:
            rollback_step = self._create_rollback_step(step)
            if rollback_step is not None:
                steps.append(rollback_step)
                source_indices.append(step.step_index)

        return RollbackPlan(
            steps=steps,
            source_step_indices=source_indices,
            reason=f"Rollback for {len(completed_steps)} completed steps"
        )

    def create_minimal_rollback_plan(self, completed_steps: Sequence[ExecutionStepResult]) -> RollbackPlan:
        """Rollback plan restricted to create/delete/update steps"""
        critical = [
            step for step in completed_steps
            if step.status == StepStatus.COMPLETED
            and any(pattern.search(step.tool) for pattern in CRITICAL_PATTERNS)
        ]
        return self.generate_rollback_plan(critical)

    def _create_rollback_step(self, step: ExecutionStepResult) -> Optional[PlanStep]:
        inverse_tool = get_inverse_operation(step.tool)
        if not inverse_tool:
            self.logger.debug("No inverse operation for tool", tool=step.tool, step_index=step.step_index)
            return None

        params = self._generate_rollback_params(step)
        if params is None:
            self.logger.warning(
                "Could not generate rollback parameters",
                tool=step.tool,
                step_index=step.step_index
            )
            return None

        return PlanStep(
            tool=inverse_tool,
            params=params,
            depends_on=[],
            parallel=False,
            description=f"Rollback step {step.step_index}: {step.tool}"
        )

    def _generate_rollback_params(self, step: ExecutionStepResult) -> Optional[Dict[str, Any]]:
        if step.tool.endswith(CREATE_SUFFIX):
            identifier = _extract_identifier(step.result) or _extract_identifier(step.params)
            if not identifier:
                return None
            return {"uid": identifier}

        # delete is recreated from, and update re-applied with, the original parameters
        return dict(step.params)

    async def execute_rollback(self, plan: RollbackPlan, execution_id: Optional[str] = None) -> RollbackResult:
        """
        Execute rollback steps one at a time in plan order

        A failing step is recorded and the remaining steps still run.
        """
        if self.tools is None:
            raise RuntimeError("RollbackHandler has no tool client")

        results: List[Dict[str, Any]] = []
        errors: List[str] = []

        self.logger.info("Executing rollback plan", execution_id=execution_id, total_steps=len(plan.steps))

        for i, step in enumerate(plan.steps):
            try:
                outcome = await self.tools.execute(step.tool, step.params)
                results.append({
                    "step_index": i,
                    "tool": step.tool,
                    "success": outcome.success,
                    "result": outcome.data,
                    "error": outcome.error
                })
                if not outcome.success:
                    errors.append(f"Rollback step {i + 1} failed: {outcome.error}")
            except Exception as e:
                errors.append(f"Rollback step {i + 1} failed: {str(e)}")
                results.append({
                    "step_index": i,
                    "tool": step.tool,
                    "success": False,
                    "error": str(e)
                })

        success = len(errors) == 0
        metrics.record_rollback(success)
        log_rollback(execution_id, len(plan.steps), success, errors)

        return RollbackResult(success=success, results=results, errors=errors)

    def get_rollback_stats(self, plan: RollbackPlan) -> Dict[str, Any]:
        total_steps = len(plan.steps)
        supported_steps = len([step for step in plan.steps if self.supports_rollback(step.tool)])
        return {
            "total_steps": total_steps,
            "supported_steps": supported_steps,
            "unsupported_steps": total_steps - supported_steps,
            "support_rate": (supported_steps / total_steps) * 100 if total_steps > 0 else 0.0
        }

    def validate_rollback_plan(self, plan: RollbackPlan) -> List[str]:
        """Structural problems in a plan, as messages; never raises"""
        errors: List[str] = []

        if not plan.steps:
            errors.append("Rollback plan has no steps")
            return errors

        for i, step in enumerate(plan.steps):
            if not step.tool:
                errors.append(f"Rollback step {i} has no tool")
                continue

            if not self.supports_rollback(step.tool):
                errors.append(f"Rollback step {i} uses unsupported tool: {step.tool}")

            if not isinstance(step.params, dict):
                errors.append(f"Rollback step {i} has invalid parameters")

        return errors
