"""
Models for query complexity analysis and execution strategies
"""

from typing import List
from pydantic import BaseModel, Field
from enum import Enum


class StrategyType(str, Enum):
    """Scheduling policy for an execution"""
    SIMPLE = "simple"
    PARALLEL = "parallel"
    BATCHED = "batched"
    COMPLEX = "complex"


class OpportunityType(str, Enum):
    """Kinds of parallelization opportunity"""
    INDEPENDENT_QUERIES = "independent_queries"
    BATCH_OPERATIONS = "batch_operations"
    PARALLEL_FILTERS = "parallel_filters"


class ParallelizationOpportunity(BaseModel):
    """Group of tools that can run concurrently"""
    type: OpportunityType = Field(..., description="Opportunity kind")
    description: str = Field(..., description="Human readable description")
    tools: List[str] = Field(default_factory=list, description="Tools in the group")
    confidence: float = Field(..., description="Confidence (0.0-1.0)")

    class Config:
        use_enum_values = True


class QueryComplexity(BaseModel):
    """Complexity score for a query and its tool selection"""
    is_complex: bool = False
    complexity_score: float = 0.0
    entity_count: int = 0
    relationship_count: int = 0
    aggregation_needed: bool = False
    time_based_filtering: bool = False
    pagination_required: bool = False
    parallelization_opportunities: List[ParallelizationOpportunity] = Field(default_factory=list)
    estimated_steps: int = 0
    risk_factors: List[str] = Field(default_factory=list)


class ExecutionStrategy(BaseModel):
    """Strategy selected for a run"""
    strategy: StrategyType = Field(..., description="Scheduling policy")
    max_parallel_steps: int = Field(..., description="Maximum concurrent steps")
    batch_size: int = Field(..., description="Batch size for batched scheduling")
    error_recovery: bool = False
    progress_tracking: bool = False
    estimated_duration_ms: int = 0

    class Config:
        use_enum_values = True

    @property
    def uses_batches(self) -> bool:
        return self.strategy in (StrategyType.COMPLEX, StrategyType.BATCHED)
