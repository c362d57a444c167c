"""
Background job state and the registry that owns it.

Each job's mutable fields are guarded by the job's own lock; the registry
has a separate lock for insert/lookup/remove, so registry operations never
wait on another job's output read.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

import structlog

from ..errors import JobNotFoundError

logger = structlog.get_logger()

JOB_ID_LENGTH = 8


class JobStatus(str, Enum):
    """Lifecycle state of a background job."""

    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    TERMINATED = "terminated"
    ERROR = "error"


@dataclass
class BackgroundJob:
    """A tracked background subprocess and its output buffer."""

    job_id: str
    command: str
    process: asyncio.subprocess.Process | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    output_lines: list[str] = field(default_factory=list)
    read_cursor: int = 0
    status: JobStatus = JobStatus.RUNNING
    exit_code: int | None = None
    monitor_task: asyncio.Task | None = field(default=None, repr=False)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    async def append_output(self, line: str) -> None:
        async with self.lock:
            self.output_lines.append(line)

    async def take_new_output(self) -> list[str]:
        """Return lines appended since the previous call and advance the cursor."""
        async with self.lock:
            new_lines = self.output_lines[self.read_cursor:]
            self.read_cursor = len(self.output_lines)
            return new_lines

    async def mark_finished(self, exit_code: int) -> None:
        """Record a natural exit. A terminated job keeps its status."""
        async with self.lock:
            if self.status != JobStatus.RUNNING:
                return
            self.status = JobStatus.COMPLETED if exit_code == 0 else JobStatus.FAILED
            self.exit_code = exit_code

    async def mark_error(self, message: str) -> None:
        async with self.lock:
            if self.status != JobStatus.RUNNING:
                return
            self.status = JobStatus.ERROR
            self.output_lines.append(f"Monitor error: {message}")

    async def mark_terminated(self, exit_code: int) -> None:
        async with self.lock:
            self.status = JobStatus.TERMINATED
            self.exit_code = exit_code

    async def state(self) -> tuple[JobStatus, int | None]:
        async with self.lock:
            return self.status, self.exit_code


class JobRegistry:
    """Mapping from job id to BackgroundJob for one supervisor."""

    def __init__(self):
        self._jobs: dict[str, BackgroundJob] = {}
        self._lock = asyncio.Lock()

    def _new_id(self) -> str:
        return uuid.uuid4().hex[:JOB_ID_LENGTH]

    async def create(
        self,
        command: str,
        process: asyncio.subprocess.Process | None = None,
    ) -> BackgroundJob:
        """Register a new running job under a fresh id.

        Ids are short for readability, so uniqueness is checked here.
        """
        async with self._lock:
            job_id = self._new_id()
            while job_id in self._jobs:
                logger.debug("Job id collision, regenerating", job_id=job_id)
                job_id = self._new_id()

            job = BackgroundJob(job_id=job_id, command=command, process=process)
            self._jobs[job_id] = job
            return job

    async def get(self, job_id: str) -> BackgroundJob:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id, list(self._jobs))
            return job

    async def pop(self, job_id: str) -> BackgroundJob:
        async with self._lock:
            job = self._jobs.pop(job_id, None)
            if job is None:
                raise JobNotFoundError(job_id, list(self._jobs))
            return job

    async def ids(self) -> list[str]:
        async with self._lock:
            return list(self._jobs)

    def __len__(self) -> int:
        return len(self._jobs)
