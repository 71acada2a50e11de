"""
Models for execution plans produced by the planning collaborator
"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field
from datetime import datetime


class PlanStep(BaseModel):
    """Single step of a plan"""
    tool: str = Field(..., description="Name of the tool to execute")
    params: Dict[str, Any] = Field(default_factory=dict, description="Tool parameters, may contain ${...} references")
    depends_on: List[int] = Field(default_factory=list, description="0-based indices of earlier steps")
    parallel: bool = Field(default=False, description="Whether the step may run concurrently with others")
    description: Optional[str] = Field(None, description="Human readable step description")


class PlanMetadata(BaseModel):
    """Planning metadata"""
    query: str = Field(default="", description="Original natural-language query")
    request_id: Optional[str] = Field(None, description="Plan request ID")
    estimated_duration_ms: Optional[int] = Field(None, description="Estimated duration")
    total_steps: int = Field(default=0, description="Number of steps")
    parallel_steps: int = Field(default=0, description="Number of steps flagged parallel")


class Plan(BaseModel):
    """Step graph"""
    steps: List[PlanStep] = Field(default_factory=list, description="Plan steps in declaration order")
    metadata: PlanMetadata = Field(default_factory=PlanMetadata, description="Planning metadata")

    @property
    def tool_names(self) -> List[str]:
        return [step.tool for step in self.steps]


class PlanRequest(BaseModel):
    """Stored plan request"""
    request_id: str = Field(..., description="Unique plan request ID")
    query: str = Field(default="", description="Natural-language query the plan answers")
    plan: Plan = Field(..., description="Generated plan")
    status: str = Field(default="COMPLETED", description="Planning status")
    created_at: datetime = Field(default_factory=datetime.utcnow)
