"""
Shell Command Tools - foreground and background command execution.

Wraps a ProcessSupervisor as three tools:
- bash: run a command in the foreground, or start it in the background
- bash_output: read new output from a background command
- bash_kill: terminate a background command
"""

from typing import Any

from ..errors import JobNotFoundError
from ..process import CommandResult, ProcessSupervisor
from ..process.supervisor import DEFAULT_TIMEOUT_SECONDS
from .base import Tool, ToolParameter, ToolResult


def format_shell_content(
    stdout: str,
    stderr: str = "",
    exit_code: int = 0,
    job_id: str | None = None,
) -> str:
    """Render shell output in the layout the model sees.

    stdout first, then labelled ``[stderr]``, ``[bash_id]`` and
    ``[exit_code]`` sections.
    """
    parts = []
    if stdout:
        parts.append(stdout)
    if stderr:
        parts.append(f"[stderr]:\n{stderr}")
    if job_id:
        parts.append(f"[bash_id]:\n{job_id}")
    parts.append(f"[exit_code]:\n{exit_code}")
    return "\n".join(parts)


def _as_int(value: Any, default: int) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return default


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


def _command_result_to_tool_result(result: CommandResult) -> ToolResult:
    content = format_shell_content(result.stdout, result.stderr, result.exit_code)
    error = result.error
    # The model only sees the error text on failure, so carry the output along
    if error and (result.stdout or result.stderr):
        error = f"{error}\n{content}"
    return ToolResult(
        success=result.success,
        content=content,
        error=error,
        stdout=result.stdout,
        stderr=result.stderr,
        exit_code=result.exit_code,
    )


def create_shell_tools(supervisor: ProcessSupervisor) -> list[Tool]:
    """Create shell tools bound to ``supervisor``."""

    async def bash_handler(
        command: str = "",
        timeout: Any = None,
        run_in_background: Any = False,
    ) -> ToolResult:
        """Run a command in the foreground or start it in the background."""
        if not command or not command.strip():
            return ToolResult(success=False, error="command is required")

        if not _as_bool(run_in_background):
            result = await supervisor.run_foreground(
                command,
                timeout=_as_int(timeout, DEFAULT_TIMEOUT_SECONDS),
            )
            return _command_result_to_tool_result(result)

        result = await supervisor.start_background(command)
        if not result.success:
            return ToolResult(success=False, error=result.error, exit_code=result.exit_code)

        job_id = result.job_id
        message = f"Command started in background. Use bash_output to monitor (bash_id='{job_id}')."
        return ToolResult(
            success=True,
            content=f"{message}\n\nCommand: {command}\nBash ID: {job_id}",
            stdout=f"Background command started with ID: {job_id}",
            exit_code=0,
            job_id=job_id,
        )

    async def bash_output_handler(bash_id: str = "", filter_str: str | None = None) -> ToolResult:
        """Read new output from a background command."""
        try:
            output = await supervisor.read_output(bash_id, filter_str)
        except JobNotFoundError as e:
            return ToolResult(success=False, error=str(e))

        return ToolResult(
            success=True,
            content=format_shell_content(output.output, "", output.exit_code, bash_id),
            data={"status": output.status.value},
            stdout=output.output,
            exit_code=output.exit_code,
            job_id=bash_id,
        )

    async def bash_kill_handler(bash_id: str = "") -> ToolResult:
        """Terminate a background command."""
        try:
            output = await supervisor.terminate(bash_id)
        except JobNotFoundError as e:
            return ToolResult(success=False, error=str(e))

        return ToolResult(
            success=True,
            content=format_shell_content(output.output, "", output.exit_code, bash_id),
            data={"status": output.status.value},
            stdout=output.output,
            exit_code=output.exit_code,
            job_id=bash_id,
        )

    bash = Tool(
        name="bash",
        description="""Execute bash commands in foreground or background.

For terminal operations like git, npm, docker, etc. DO NOT use for file operations - use specialized tools.

Tips:
  - Quote file paths with spaces: cd "My Documents"
  - Chain dependent commands with &&: git add . && git commit -m "msg"
  - Use absolute paths instead of cd when possible
  - For background commands, monitor with bash_output and terminate with bash_kill""",
        parameters=[
            ToolParameter(
                name="command",
                param_type="string",
                description="The bash command to execute. Quote file paths with spaces using double quotes.",
                required=True,
            ),
            ToolParameter(
                name="timeout",
                param_type="integer",
                description="Optional: Timeout in seconds (default: 120, max: 600). Only applies to foreground commands.",
                required=False,
                default=DEFAULT_TIMEOUT_SECONDS,
            ),
            ToolParameter(
                name="run_in_background",
                param_type="boolean",
                description=(
                    "Optional: Set to true to run the command in the background. Use this for "
                    "long-running commands like servers. You can monitor output using bash_output tool."
                ),
                required=False,
            ),
        ],
        handler=bash_handler,
    )

    bash_output = Tool(
        name="bash_output",
        description="""Retrieves output from a running or completed background bash shell.

- Takes a bash_id parameter identifying the shell
- Always returns only new output since the last check
- Returns stdout and stderr output (combined) along with exit_code
- Supports optional regex filtering to show only lines matching a pattern
- Use this tool to monitor long-running commands started with bash(run_in_background=true)""",
        parameters=[
            ToolParameter(
                name="bash_id",
                param_type="string",
                description="The ID of the background shell to retrieve output from.",
                required=True,
            ),
            ToolParameter(
                name="filter_str",
                param_type="string",
                description="Optional regular expression to filter the output lines. Non-matching new lines will be discarded.",
                required=False,
            ),
        ],
        handler=bash_output_handler,
    )

    bash_kill = Tool(
        name="bash_kill",
        description="""Kills a running background bash shell by its ID.

- Takes a bash_id parameter identifying the shell to kill
- Attempts termination and returns remaining output
- Cleans up all resources associated with the shell
- Use this tool when you need to terminate long-running commands started with bash(run_in_background=true)""",
        parameters=[
            ToolParameter(
                name="bash_id",
                param_type="string",
                description="The ID of the background shell to terminate.",
                required=True,
            ),
        ],
        handler=bash_kill_handler,
    )

    return [bash, bash_output, bash_kill]
