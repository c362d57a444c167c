"""
Process Supervisor - foreground and background shell execution.

Foreground commands race natural exit against a timeout and an optional
cancellation signal. Background commands are tracked as jobs whose merged
output is collected by one monitor task per job and read incrementally.

Every command runs in its own process group so that a kill reaches the
whole pipeline, not just the shell.
"""

import asyncio
import os
import re
import shutil
import signal
from dataclasses import dataclass
from pathlib import Path

import structlog

from ..errors import JobNotFoundError
from .jobs import BackgroundJob, JobRegistry, JobStatus

logger = structlog.get_logger()

DEFAULT_TIMEOUT_SECONDS = 120
MAX_TIMEOUT_SECONDS = 600

# Reported when the process was killed or never produced an exit status
KILLED_EXIT_CODE = -1

# How long to wait for pipes to close after a kill
KILL_GRACE_SECONDS = 5.0

STREAM_LIMIT = 1024 * 1024


@dataclass
class CommandResult:
    """Outcome of running or starting a command."""

    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0
    error: str | None = None
    job_id: str | None = None


@dataclass
class JobOutput:
    """Output taken from a background job."""

    job_id: str
    output: str
    exit_code: int
    status: JobStatus


def normalize_timeout(timeout: int | float | None) -> int:
    """Clamp a foreground timeout to the supported range."""
    if timeout is None or timeout < 1:
        return DEFAULT_TIMEOUT_SECONDS
    if timeout > MAX_TIMEOUT_SECONDS:
        return MAX_TIMEOUT_SECONDS
    return int(timeout)


def _decode(data: bytes | None) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    """Force-kill a process and everything in its process group.

    On POSIX the group is signalled even after the shell itself has exited,
    since its children may still hold the output pipes open.
    """
    try:
        if os.name == "posix":
            os.killpg(process.pid, signal.SIGKILL)
        elif process.returncode is None:
            process.kill()
    except ProcessLookupError:
        pass
    except PermissionError as e:
        logger.warning("Could not kill process group, killing shell only", pid=process.pid, error=str(e))
        try:
            process.kill()
        except ProcessLookupError:
            pass


async def _reap(process: asyncio.subprocess.Process) -> None:
    """Wait briefly for a killed process to exit so its transport closes cleanly."""
    try:
        await asyncio.wait_for(process.wait(), timeout=KILL_GRACE_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("Killed process did not exit", pid=process.pid)
    except asyncio.CancelledError:
        # Caller re-raises its own cancellation
        logger.debug("Reap interrupted by cancellation", pid=process.pid)


class ProcessSupervisor:
    """Runs shell commands in the foreground and tracks background jobs."""

    def __init__(self, workspace_dir: str | Path | None = None, shell: str | None = None):
        self.workspace_dir = Path(workspace_dir).expanduser().resolve() if workspace_dir else None
        self.shell = shell or (shutil.which("bash") if os.name == "posix" else None)
        self.registry = JobRegistry()

    async def _spawn(self, command: str, merge_stderr: bool) -> asyncio.subprocess.Process:
        return await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT if merge_stderr else asyncio.subprocess.PIPE,
            cwd=str(self.workspace_dir) if self.workspace_dir else None,
            executable=self.shell,
            start_new_session=True,
            limit=STREAM_LIMIT,
        )

    # ------------------------------------------------------------------
    # Foreground
    # ------------------------------------------------------------------

    async def run_foreground(
        self,
        command: str,
        timeout: int | float | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CommandResult:
        """Run a command to completion, its timeout, or cancellation.

        If the calling task is cancelled, the process group is killed
        before ``CancelledError`` propagates.
        """
        timeout = normalize_timeout(timeout)

        try:
            process = await self._spawn(command, merge_stderr=False)
        except OSError as e:
            logger.error("Failed to start command", command=command, error=str(e))
            return CommandResult(success=False, exit_code=KILLED_EXIT_CODE, error=f"Failed to start command: {e}")

        communicate = asyncio.ensure_future(process.communicate())
        waiters: set[asyncio.Future] = {communicate}
        canceller = None
        if cancel_event is not None:
            canceller = asyncio.ensure_future(cancel_event.wait())
            waiters.add(canceller)

        try:
            done, _ = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            _kill_process_group(process)
            communicate.cancel()
            await _reap(process)
            raise
        finally:
            if canceller is not None:
                canceller.cancel()

        if communicate in done:
            stdout, stderr = communicate.result()
            exit_code = process.returncode if process.returncode is not None else KILLED_EXIT_CODE
            error = None if exit_code == 0 else f"Command exited with code {exit_code}"
            return CommandResult(
                success=exit_code == 0,
                stdout=_decode(stdout),
                stderr=_decode(stderr),
                exit_code=exit_code,
                error=error,
            )

        _kill_process_group(process)
        stdout, stderr = await self._collect_after_kill(communicate)

        if canceller is not None and canceller in done:
            error = "Command cancelled"
        else:
            error = f"Command timed out after {timeout} seconds"
        logger.warning("Foreground command killed", command=command, reason=error)

        return CommandResult(
            success=False,
            stdout=_decode(stdout),
            stderr=_decode(stderr),
            exit_code=KILLED_EXIT_CODE,
            error=error,
        )

    async def _collect_after_kill(self, communicate: asyncio.Future) -> tuple[bytes, bytes]:
        try:
            return await asyncio.wait_for(communicate, timeout=KILL_GRACE_SECONDS)
        except asyncio.TimeoutError:
            logger.warning("Pipes still open after kill, discarding partial output")
            return b"", b""

    # ------------------------------------------------------------------
    # Background
    # ------------------------------------------------------------------

    async def start_background(self, command: str) -> CommandResult:
        """Start a command as a tracked job and return without waiting."""
        try:
            process = await self._spawn(command, merge_stderr=True)
        except OSError as e:
            logger.error("Failed to start background command", command=command, error=str(e))
            return CommandResult(success=False, exit_code=KILLED_EXIT_CODE, error=f"Failed to start command: {e}")

        job = await self.registry.create(command, process)
        job.monitor_task = asyncio.create_task(self._monitor(job), name=f"monitor-{job.job_id}")

        logger.info("Background job started", job_id=job.job_id, command=command, pid=process.pid)
        return CommandResult(success=True, job_id=job.job_id)

    async def _monitor(self, job: BackgroundJob) -> None:
        """Collect a job's output until EOF, then record how it ended."""
        stream = job.process.stdout
        try:
            while True:
                line = await stream.readline()
                if not line:
                    break
                await job.append_output(_decode(line).rstrip("\r\n"))
        except Exception as e:
            logger.warning("Background output read failed", job_id=job.job_id, error=str(e))
            await job.mark_error(str(e))
            return

        exit_code = await job.process.wait()
        await job.mark_finished(exit_code)
        logger.info("Background job finished", job_id=job.job_id, exit_code=exit_code)

    async def read_output(self, job_id: str, filter_pattern: str | None = None) -> JobOutput:
        """Take output produced since the previous read of this job.

        Lines not matching ``filter_pattern`` are discarded. A pattern that
        does not compile is ignored.

        Raises:
            JobNotFoundError: if ``job_id`` is not registered
        """
        job = await self.registry.get(job_id)
        lines = await job.take_new_output()

        if filter_pattern:
            try:
                regex = re.compile(filter_pattern)
            except re.error as e:
                logger.debug("Invalid filter pattern, returning all lines", pattern=filter_pattern, error=str(e))
            else:
                lines = [line for line in lines if regex.search(line)]

        status, exit_code = await job.state()
        return JobOutput(
            job_id=job_id,
            output="\n".join(lines),
            exit_code=exit_code if exit_code is not None else 0,
            status=status,
        )

    async def terminate(self, job_id: str) -> JobOutput:
        """Kill a job, remove it from the registry, and return its unread output.

        Raises:
            JobNotFoundError: if ``job_id`` is not registered
        """
        job = await self.registry.pop(job_id)

        if job.process is not None:
            _kill_process_group(job.process)

        if job.monitor_task is not None and not job.monitor_task.done():
            try:
                await asyncio.wait_for(asyncio.shield(job.monitor_task), timeout=KILL_GRACE_SECONDS)
            except asyncio.TimeoutError:
                logger.warning("Monitor did not finish after kill", job_id=job_id)
                job.monitor_task.cancel()

        lines = await job.take_new_output()
        await job.mark_terminated(KILLED_EXIT_CODE)

        logger.info("Background job terminated", job_id=job_id)
        return JobOutput(
            job_id=job_id,
            output="\n".join(lines),
            exit_code=KILLED_EXIT_CODE,
            status=JobStatus.TERMINATED,
        )

    async def job_ids(self) -> list[str]:
        return await self.registry.ids()

    async def shutdown(self) -> None:
        """Terminate every registered job."""
        for job_id in await self.registry.ids():
            try:
                await self.terminate(job_id)
            except JobNotFoundError:
                continue
