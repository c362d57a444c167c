"""
Per-run audit log of model requests, responses, and tool results.

Each ``start_new_run`` opens a fresh timestamped file. Write failures are
reported through structlog and never interrupt the agent.
"""

import json
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Any, TextIO

import structlog

from ..llm.base import LLMMessage, LLMResponse
from ..tools.base import ToolResult

logger = structlog.get_logger()

RULE = "=" * 80
SEPARATOR = "-" * 80


def _to_json(data: Any) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False, default=str)


class RunLogger:
    """Writes numbered, timestamped entries to one log file per run."""

    def __init__(self, log_dir: str | Path | None = None):
        self.log_dir = Path(log_dir or Path.home() / ".taskpilot" / "log").expanduser()
        self._file: TextIO | None = None
        self._path: Path | None = None
        self._index = 0

    @property
    def log_file_path(self) -> Path | None:
        return self._path

    def start_new_run(self) -> None:
        """Close any previous run's file and open a new one."""
        self.close()
        self._index = 0
        now = datetime.now()
        try:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self._path = self.log_dir / f"agent_run_{now:%Y%m%d_%H%M%S}.log"
            self._file = self._path.open("w", encoding="utf-8")
            self._file.write(f"{RULE}\nAgent Run Log - {now:%Y-%m-%d %H:%M:%S}\n{RULE}\n")
            self._file.flush()
        except OSError as e:
            logger.warning("Could not open run log", log_dir=str(self.log_dir), error=str(e))
            self._file = None
            self._path = None

    def _write(self, entry_type: str, content: str) -> None:
        if self._file is None:
            return
        self._index += 1
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S.%f")[:-3]
        try:
            self._file.write(
                f"\n{SEPARATOR}\n[{self._index}] {entry_type}\nTimestamp: {timestamp}\n{SEPARATOR}\n{content}\n"
            )
            self._file.flush()
        except OSError as e:
            logger.warning("Could not write run log entry", entry_type=entry_type, error=str(e))

    def log_request(self, messages: list[LLMMessage], tool_names: list[str]) -> None:
        request = {
            "messages": [m.to_dict() for m in messages],
            "tools": tool_names,
        }
        self._write("REQUEST", "LLM Request:\n\n" + _to_json(request))

    def log_response(self, response: LLMResponse) -> None:
        data: dict[str, Any] = {"content": response.content}
        if response.thinking:
            data["thinking"] = response.thinking
        if response.tool_calls:
            data["tool_calls"] = [asdict(tc) for tc in response.tool_calls]
        if response.finish_reason:
            data["finish_reason"] = response.finish_reason
        self._write("RESPONSE", "LLM Response:\n\n" + _to_json(data))

    def log_tool_result(self, tool_name: str, arguments: dict[str, Any], result: ToolResult) -> None:
        data: dict[str, Any] = {
            "tool_name": tool_name,
            "arguments": arguments,
            "success": result.success,
        }
        if result.success:
            data["result"] = result.content
        else:
            data["error"] = result.error
        self._write("TOOL_RESULT", "Tool Execution:\n\n" + _to_json(data))

    def close(self) -> None:
        if self._file is not None:
            try:
                self._file.close()
            except OSError as e:
                logger.warning("Could not close run log", error=str(e))
            self._file = None
