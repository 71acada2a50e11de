"""
Models for execution records, step results and execution configuration
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from enum import Enum
from datetime import datetime

from .plan import PlanStep


class ExecutionStatus(str, Enum):
    """Execution status"""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    ROLLED_BACK = "ROLLED_BACK"


TERMINAL_STATUSES = (
    ExecutionStatus.COMPLETED,
    ExecutionStatus.FAILED,
    ExecutionStatus.ROLLED_BACK,
)


class StepStatus(str, Enum):
    """Step status"""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class ExecutionConfig(BaseModel):
    """Execution configuration"""
    max_retries: int = Field(default=3, description="Retries after the first attempt")
    retry_delay_ms: int = Field(default=1000, description="Base delay between attempts")
    enable_rollback: bool = Field(default=True, description="Roll back completed steps on failure")
    continue_on_error: bool = Field(default=False, description="Keep running other steps after a failure")
    parallel_execution_limit: int = Field(default=5, description="Maximum steps per concurrent batch")
    execution_timeout_ms: Optional[int] = Field(None, description="Accepted for compatibility, not enforced")

    def merge(self, overrides: Optional["ExecutionConfigInput"]) -> "ExecutionConfig":
        """Overlay the non-empty fields of overrides onto this config"""
        if overrides is None:
            return self.model_copy()
        values = {k: v for k, v in overrides.model_dump().items() if v is not None}
        return self.model_copy(update=values)


class ExecutionConfigInput(BaseModel):
    """Caller supplied configuration, every field optional"""
    max_retries: Optional[int] = None
    retry_delay_ms: Optional[int] = None
    enable_rollback: Optional[bool] = None
    continue_on_error: Optional[bool] = None
    parallel_execution_limit: Optional[int] = None
    execution_timeout_ms: Optional[int] = None


class ExecutionStepResult(BaseModel):
    """Run-time record of one step"""
    step_index: int = Field(..., description="Index of the step in the plan")
    tool: str = Field(..., description="Tool name")
    params: Dict[str, Any] = Field(default_factory=dict, description="Parameters, resolved once the step ran")
    status: StepStatus = Field(default=StepStatus.PENDING, description="Step status")
    result: Optional[Any] = Field(None, description="Unwrapped tool data")
    error: Optional[str] = Field(None, description="Error message if failed")
    retry_count: int = Field(default=0, description="Retries performed")
    dependencies: List[int] = Field(default_factory=list, description="Indices this step depends on")
    started_at: Optional[datetime] = Field(None, description="When the step started")
    completed_at: Optional[datetime] = Field(None, description="When the step finished")

    class Config:
        use_enum_values = True
        validate_assignment = True


class ExecutionRecord(BaseModel):
    """Persisted execution aggregate"""
    execution_id: str = Field(..., description="Unique execution ID")
    plan_request_id: str = Field(..., description="Executed plan")
    status: ExecutionStatus = Field(default=ExecutionStatus.PENDING, description="Execution status")
    total_steps: int = Field(default=0)
    completed_steps: int = Field(default=0)
    failed_steps: int = Field(default=0)
    results: List[ExecutionStepResult] = Field(default_factory=list)
    error: Optional[str] = Field(None, description="Summary of the failure cause")
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        use_enum_values = True

    def to_summary(self) -> "ExecutionSummary":
        return ExecutionSummary(**self.model_dump(exclude={"results", "created_at", "updated_at"}))


class ExecutionSummary(BaseModel):
    """Execution record without step results"""
    execution_id: str
    plan_request_id: str
    status: ExecutionStatus
    total_steps: int = 0
    completed_steps: int = 0
    failed_steps: int = 0
    error: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        use_enum_values = True


class ExecutionStatistics(BaseModel):
    """Aggregated execution statistics"""
    total: int = 0
    by_status: Dict[str, int] = Field(default_factory=dict)
    average_execution_time_ms: float = 0.0
    success_rate: float = 0.0
    average_steps_per_execution: float = 0.0


class RollbackPlan(BaseModel):
    """Inverse operations for completed steps, most recent first"""
    steps: List[PlanStep] = Field(default_factory=list)
    source_step_indices: List[int] = Field(default_factory=list, description="Original step index of each rollback step")
    reason: str = Field(default="")
    created_at: datetime = Field(default_factory=datetime.utcnow)


class RollbackResult(BaseModel):
    """Outcome of a rollback attempt"""
    success: bool = True
    results: List[Dict[str, Any]] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class ToolResult(BaseModel):
    """Tool boundary response envelope"""
    success: bool = Field(..., description="Whether the tool call succeeded")
    data: Optional[Any] = Field(None, description="Tool payload")
    error: Optional[str] = Field(None, description="Error message")
