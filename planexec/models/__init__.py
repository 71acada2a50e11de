"""
Pydantic models for planexec
"""

from .plan import Plan, PlanStep, PlanMetadata, PlanRequest
from .execution import (
    ExecutionStatus,
    StepStatus,
    ExecutionConfig,
    ExecutionConfigInput,
    ExecutionStepResult,
    ExecutionRecord,
    ExecutionSummary,
    ExecutionStatistics,
    RollbackPlan,
    RollbackResult,
    ToolResult,
    TERMINAL_STATUSES,
)
from .request import PlanCreateRequest, ExecuteRequest, CancelResponse
from .complexity import (
    StrategyType,
    OpportunityType,
    ParallelizationOpportunity,
    QueryComplexity,
    ExecutionStrategy,
)

__all__ = [
    "Plan",
    "PlanStep",
    "PlanMetadata",
    "PlanRequest",
    "ExecutionStatus",
    "StepStatus",
    "ExecutionConfig",
    "ExecutionConfigInput",
    "ExecutionStepResult",
    "ExecutionRecord",
    "ExecutionSummary",
    "ExecutionStatistics",
    "RollbackPlan",
    "RollbackResult",
    "ToolResult",
    "TERMINAL_STATUSES",
    "StrategyType",
    "OpportunityType",
    "ParallelizationOpportunity",
    "QueryComplexity",
    "ExecutionStrategy",
    "PlanCreateRequest",
    "ExecuteRequest",
    "CancelResponse",
]
