"""
Exception hierarchy for plan execution
"""

from typing import List, Optional


class ExecutionError(Exception):
    """Base class for execution failures"""
    pass


class PlanNotFoundError(ExecutionError):
    """Raised when a plan request id does not resolve to a stored plan"""

    def __init__(self, plan_request_id: str):
        self.plan_request_id = plan_request_id
        super().__init__(f"Plan not found: {plan_request_id}")


class ParameterValidationError(ExecutionError):
    """Raised when resolved step parameters fail validation"""

    def __init__(self, errors: List[str], step_index: Optional[int] = None):
        self.errors = list(errors)
        self.step_index = step_index
        prefix = "Parameter validation failed"
        if step_index is not None:
            prefix = f"Parameter validation failed for step {step_index}"
        super().__init__(f"{prefix}: {'; '.join(self.errors)}")


class ToolExecutionError(ExecutionError):
    """
    Raised when a tool call fails.

    ``retryable`` overrides message based classification when set, and
    ``retry_after_ms`` overrides the computed backoff delay.
    """

    def __init__(
        self,
        message: str,
        tool: Optional[str] = None,
        retryable: Optional[bool] = None,
        status_code: Optional[int] = None,
        retry_after_ms: Optional[int] = None
    ):
        self.tool = tool
        self.retryable = retryable
        self.status_code = status_code
        self.retry_after_ms = retry_after_ms
        super().__init__(message)


class StuckExecutionError(ExecutionError):
    """Raised when steps remain pending but none of them can become ready"""

    def __init__(self, pending: List[int]):
        self.pending = sorted(pending)
        super().__init__(
            f"Execution stuck: no ready steps but {len(self.pending)} pending step(s) remain: {self.pending}"
        )


class RollbackError(ExecutionError):
    """Raised when one or more rollback steps fail"""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"Rollback failed: {', '.join(self.errors)}")


class StorageError(ExecutionError):
    """Raised when a persistence call fails"""
    pass


class ParameterResolutionWarning(UserWarning):
    """Diagnostic category for references that fell back to a default value"""
    pass
