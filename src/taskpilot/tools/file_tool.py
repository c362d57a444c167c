"""
File Operations Tools - read, write, and edit files in the workspace.

Relative paths resolve against the workspace directory; paths that
resolve outside it are rejected.
"""

from pathlib import Path

import structlog

from ..agent.tokens import truncate_text_by_tokens
from ..errors import WorkspaceError
from .base import Tool, ToolParameter, ToolResult

logger = structlog.get_logger()

# Token budget for a single read_file result
MAX_READ_TOKENS = 32_000


class FileManager:
    """Manages file operations within a workspace."""

    def __init__(self, workspace_dir: str | Path):
        self.workspace_dir = Path(workspace_dir).expanduser().resolve()
        try:
            self.workspace_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WorkspaceError(f"Cannot create workspace directory {self.workspace_dir}: {e}") from e

    def _resolve(self, path: str) -> Path:
        """Resolve ``path`` against the workspace, rejecting escapes."""
        p = Path(path).expanduser()
        if not p.is_absolute():
            p = self.workspace_dir / p
        resolved = p.resolve()
        if not resolved.is_relative_to(self.workspace_dir):
            logger.warning("Path outside workspace", path=path)
            raise PermissionError(f"Access denied: {path}")
        return resolved

    def read_file(self, path: str, offset: int | None = None, limit: int | None = None) -> str:
        """Read a file with right-aligned line numbers.

        ``offset`` is 1-based; ``limit`` caps the number of lines.
        """
        file_path = self._resolve(path)

        if not file_path.exists():
            raise FileNotFoundError(f"File not found: {path}")

        if not file_path.is_file():
            raise IsADirectoryError(f"Path is a directory: {path}")

        lines = file_path.read_text(encoding="utf-8", errors="replace").split("\n")

        start = max(0, (offset or 1) - 1)
        start = min(start, len(lines))
        end = len(lines) if limit is None else min(start + max(0, limit), len(lines))

        numbered = [f"{start + i + 1:6d}|{line}" for i, line in enumerate(lines[start:end])]
        return truncate_text_by_tokens("\n".join(numbered), MAX_READ_TOKENS)

    def write_file(self, path: str, content: str) -> str:
        """Write content to a file, replacing it and creating parent directories."""
        file_path = self._resolve(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content, encoding="utf-8")
        return f"Successfully wrote to {file_path}"

    def edit_file(self, path: str, old_str: str, new_str: str) -> str:
        """Replace the first exact occurrence of ``old_str`` with ``new_str``."""
        file_path = self._resolve(path)

        if not file_path.is_file():
            raise FileNotFoundError(f"File not found: {path}")

        content = file_path.read_text(encoding="utf-8")
        if old_str not in content:
            raise ValueError(f"Text not found: {old_str}")

        file_path.write_text(content.replace(old_str, new_str, 1), encoding="utf-8")
        return f"Successfully edited {file_path}"


def create_file_tools(workspace_dir: str | Path) -> list[Tool]:
    """Create file operation tools bound to ``workspace_dir``."""
    manager = FileManager(workspace_dir)

    async def read_file_handler(path: str, offset: int | None = None, limit: int | None = None) -> ToolResult:
        """Read a file."""
        try:
            content = manager.read_file(
                path,
                int(offset) if offset is not None else None,
                int(limit) if limit is not None else None,
            )
            return ToolResult(success=True, content=content)
        except Exception as e:
            return ToolResult(success=False, error=str(e))

    async def write_file_handler(path: str, content: str) -> ToolResult:
        """Write to a file."""
        try:
            return ToolResult(success=True, content=manager.write_file(path, content))
        except Exception as e:
            return ToolResult(success=False, error=str(e))

    async def edit_file_handler(path: str, old_str: str, new_str: str) -> ToolResult:
        """Edit a file in place."""
        try:
            return ToolResult(success=True, content=manager.edit_file(path, old_str, new_str))
        except Exception as e:
            return ToolResult(success=False, error=str(e))

    read_file = Tool(
        name="read_file",
        description="Read file content with line numbers. Supports offset/limit and token truncation.",
        parameters=[
            ToolParameter(
                name="path",
                param_type="string",
                description="File path (absolute or relative to workspace)",
                required=True,
            ),
            ToolParameter(
                name="offset",
                param_type="integer",
                description="Starting line number (1-indexed)",
                required=False,
            ),
            ToolParameter(
                name="limit",
                param_type="integer",
                description="Number of lines to read",
                required=False,
            ),
        ],
        handler=read_file_handler,
    )

    write_file = Tool(
        name="write_file",
        description="Write full content to a file. Overwrites existing content.",
        parameters=[
            ToolParameter(
                name="path",
                param_type="string",
                description="File path (absolute or relative to workspace)",
                required=True,
            ),
            ToolParameter(
                name="content",
                param_type="string",
                description="Complete file content",
                required=True,
            ),
        ],
        handler=write_file_handler,
    )

    edit_file = Tool(
        name="edit_file",
        description="Perform exact string replacement in a file. old_str must appear in the file; the first occurrence is replaced.",
        parameters=[
            ToolParameter(
                name="path",
                param_type="string",
                description="File path (absolute or relative to workspace)",
                required=True,
            ),
            ToolParameter(
                name="old_str",
                param_type="string",
                description="Exact text to find",
                required=True,
            ),
            ToolParameter(
                name="new_str",
                param_type="string",
                description="Replacement text",
                required=True,
            ),
        ],
        handler=edit_file_handler,
    )

    return [read_file, write_file, edit_file]
