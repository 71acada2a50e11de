"""
Core execution components of planexec

Import the agent from ``planexec.core.agent``; this package only exposes
the error taxonomy shared by the storage and tool layers.
"""

from .errors import (
    ExecutionError,
    PlanNotFoundError,
    ParameterValidationError,
    ToolExecutionError,
    StuckExecutionError,
    RollbackError,
    StorageError,
    ParameterResolutionWarning,
)

__all__ = [
    "ExecutionError",
    "PlanNotFoundError",
    "ParameterValidationError",
    "ToolExecutionError",
    "StuckExecutionError",
    "RollbackError",
    "StorageError",
    "ParameterResolutionWarning",
]
