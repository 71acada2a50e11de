"""
Request and response models for the planexec API
"""

from typing import Optional
from pydantic import BaseModel, Field

from .execution import ExecutionConfigInput
from .plan import Plan


class PlanCreateRequest(BaseModel):
    """Plan handed over by the planning collaborator"""
    request_id: Optional[str] = Field(None, description="Plan request ID, generated when omitted")
    query: str = Field(default="", description="Natural-language query the plan answers")
    plan: Plan = Field(..., description="Step graph")


class ExecuteRequest(BaseModel):
    """Request to execute a stored plan"""
    plan_request_id: str = Field(..., description="ID of the stored plan request")
    config: Optional[ExecutionConfigInput] = Field(None, description="Overrides for the execution defaults")


class CancelResponse(BaseModel):
    """Outcome of a cancel request"""
    execution_id: str
    cancelled: bool
