"""
Exception types raised by the agent engine and the process supervisor.

Tool failures are reported as ``ToolResult(success=False)`` values; the
exceptions here are reserved for conditions callers must handle.
"""


class TaskpilotError(Exception):
    """Base class for taskpilot errors."""


class RetryExhaustedError(TaskpilotError):
    """Raised when every retry attempt of an operation has failed."""

    def __init__(self, last_error: BaseException, attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"Retry failed after {attempts} attempts: {last_error}")


class OperationCancelledError(TaskpilotError):
    """Raised when the caller's cancellation signal fires."""

    def __init__(self, message: str = "Operation cancelled"):
        super().__init__(message)


class JobNotFoundError(TaskpilotError):
    """Raised when a background job id is not in the registry."""

    def __init__(self, job_id: str, available: list[str]):
        self.job_id = job_id
        self.available = available
        super().__init__(f"Shell not found: {job_id}. Available: {available}")


class WorkspaceError(TaskpilotError):
    """Raised when the workspace directory cannot be created."""
