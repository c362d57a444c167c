"""
Tools module for agent capabilities.
"""

from .base import Tool, ToolParameter, ToolResult
from .registry import ToolRegistry
from .shell_tool import create_shell_tools, format_shell_content
from .file_tool import FileManager, create_file_tools

__all__ = [
    "Tool",
    "ToolParameter",
    "ToolResult",
    "ToolRegistry",
    "create_shell_tools",
    "format_shell_content",
    "FileManager",
    "create_file_tools",
]
