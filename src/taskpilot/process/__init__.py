"""
Process supervision for shell commands.

Includes:
- ProcessSupervisor: foreground execution and background job control
- JobRegistry / BackgroundJob: per-supervisor job tracking
"""

from .jobs import BackgroundJob, JobRegistry, JobStatus
from .supervisor import (
    KILLED_EXIT_CODE,
    CommandResult,
    JobOutput,
    ProcessSupervisor,
    normalize_timeout,
)

__all__ = [
    "BackgroundJob",
    "JobRegistry",
    "JobStatus",
    "KILLED_EXIT_CODE",
    "CommandResult",
    "JobOutput",
    "ProcessSupervisor",
    "normalize_timeout",
]
