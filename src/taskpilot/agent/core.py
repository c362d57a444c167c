"""
Core agent implementation: the step loop that drives a tool-using
conversation within a bounded budget.

Each step:
1. Summarizes the history if it is over the token budget
2. Calls the model (with retries) with the history and tool catalog
3. Records the assistant message
4. Returns the reply if no tools were requested, otherwise runs each
   requested tool in order and records its result
"""

import asyncio
import copy
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable

import structlog

from ..cancellation import check_cancelled, run_cancellable
from ..errors import OperationCancelledError, WorkspaceError
from ..llm.base import BaseLLM, LLMMessage, LLMResponse, ToolCall
from ..retry import OnRetry, RetryConfig, run_with_retry
from ..tools.base import Tool, ToolResult
from ..tools.registry import ToolRegistry
from .run_log import RunLogger
from .summarizer import HistorySummarizer

logger = structlog.get_logger()

DEFAULT_SYSTEM_PROMPT = """You are a coding agent running in a CLI environment.

- You can edit files in the current workspace using the available tools.
- You can run shell commands for building, testing and inspecting the project.
- Always be explicit about what files you read or modify.
- Prefer small, incremental changes and keep outputs concise."""

DEFAULT_MAX_STEPS = 50
DEFAULT_TOKEN_LIMIT = 80_000

WORKSPACE_SECTION_MARKER = "Current Workspace"
CANCELLED_MESSAGE = "Agent run cancelled"


@dataclass
class ConversationContext:
    """Message history for one agent. The first message is always the system prompt."""

    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    messages: list[LLMMessage] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.messages:
            self.messages.append(LLMMessage(role="system", content=self.system_prompt))

    def add_user_message(self, content: str) -> None:
        """Add a user message."""
        self.messages.append(LLMMessage(role="user", content=content))

    def add_assistant_message(
        self,
        content: str,
        thinking: str | None = None,
        tool_calls: list[ToolCall] | None = None,
    ) -> None:
        """Add an assistant message."""
        self.messages.append(LLMMessage(
            role="assistant",
            content=content,
            thinking=thinking,
            tool_calls=tool_calls or None,
        ))

    def add_tool_result(self, tool_call_id: str, result: str, tool_name: str = "") -> None:
        """Add a tool result."""
        self.messages.append(LLMMessage(
            role="tool",
            content=result,
            tool_call_id=tool_call_id,
            name=tool_name,
        ))

    def reset(self) -> None:
        """Drop everything except the system message."""
        del self.messages[1:]

    @property
    def message_count(self) -> int:
        """Get the number of messages."""
        return len(self.messages)


class Agent:
    """Runs a multi-step, tool-using conversation with a language model.

    One agent owns one history and runs at most one step at a time.
    """

    def __init__(
        self,
        llm: BaseLLM,
        system_prompt: str | None = None,
        tools: ToolRegistry | Iterable[Tool] | None = None,
        max_steps: int = DEFAULT_MAX_STEPS,
        workspace_dir: str | Path = "./workspace",
        token_limit: int = DEFAULT_TOKEN_LIMIT,
        retry_config: RetryConfig | None = None,
        on_retry: OnRetry | None = None,
        run_logger: RunLogger | None = None,
    ):
        self.llm = llm
        self.max_steps = max_steps
        self.token_limit = token_limit
        self.retry_config = retry_config or RetryConfig()
        self.on_retry = on_retry
        self.run_logger = run_logger or RunLogger()

        if isinstance(tools, ToolRegistry):
            self.tool_registry = tools
        else:
            self.tool_registry = ToolRegistry(tools)

        self.workspace_dir = Path(workspace_dir).expanduser().resolve()
        try:
            self.workspace_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WorkspaceError(f"Cannot create workspace directory {self.workspace_dir}: {e}") from e

        self.system_prompt = self._with_workspace_info(system_prompt or DEFAULT_SYSTEM_PROMPT)
        self.context = ConversationContext(system_prompt=self.system_prompt)
        self.summarizer = HistorySummarizer(llm, token_limit)

    def _with_workspace_info(self, prompt: str) -> str:
        if WORKSPACE_SECTION_MARKER in prompt:
            return prompt
        return (
            f"{prompt}\n\n## {WORKSPACE_SECTION_MARKER}\n"
            f"Current workspace: `{self.workspace_dir}`\n"
            "All relative paths will resolve here."
        )

    def add_user_message(self, content: str) -> None:
        """Append a user turn to the history."""
        self.context.add_user_message(content)

    def history(self) -> list[LLMMessage]:
        """Return a copy of the message history."""
        return copy.deepcopy(self.context.messages)

    def reset(self) -> None:
        """Clear the conversation, keeping the system prompt."""
        self.context.reset()

    async def _maybe_summarize(self, cancel_event: asyncio.Event | None) -> None:
        """Shrink the history if it is over budget. Failures are logged, not raised."""
        try:
            self.context.messages = await run_cancellable(
                self.summarizer.summarize(self.context.messages),
                cancel_event,
                CANCELLED_MESSAGE,
            )
        except OperationCancelledError:
            raise
        except Exception as e:
            logger.warning("Summarization failed, continuing with full history", error=str(e))

    async def _call_model(self, cancel_event: asyncio.Event | None) -> LLMResponse:
        tool_definitions = self.tool_registry.get_definitions()
        messages = list(self.context.messages)

        return await run_cancellable(
            run_with_retry(
                lambda: self.llm.generate(messages=messages, tools=tool_definitions or None),
                self.retry_config,
                self.on_retry,
                cancel_event,
            ),
            cancel_event,
            CANCELLED_MESSAGE,
        )

    async def _execute_tool(self, tool_call: ToolCall, cancel_event: asyncio.Event | None) -> ToolResult:
        logger.info("Tool call", tool=tool_call.name, arguments=tool_call.arguments)
        result = await run_cancellable(
            self.tool_registry.execute(tool_call.name, tool_call.arguments),
            cancel_event,
            CANCELLED_MESSAGE,
        )
        self.run_logger.log_tool_result(tool_call.name, tool_call.arguments, result)
        if result.success:
            logger.info("Tool succeeded", tool=tool_call.name)
        else:
            logger.warning("Tool failed", tool=tool_call.name, error=result.error)
        return result

    async def run(self, cancel_event: asyncio.Event | None = None) -> str:
        """Drive the loop until the model stops calling tools or the step budget runs out.

        Args:
            cancel_event: Optional signal; when set, in-flight work is
                cancelled and ``OperationCancelledError`` is raised

        Returns:
            The model's final reply, or a budget-exceeded message

        Raises:
            RetryExhaustedError: if the model call keeps failing
            OperationCancelledError: if ``cancel_event`` fires
        """
        self.run_logger.start_new_run()
        if self.run_logger.log_file_path:
            logger.info("Run log", path=str(self.run_logger.log_file_path))

        tool_names = self.tool_registry.list_tools()

        for step in range(self.max_steps):
            check_cancelled(cancel_event, CANCELLED_MESSAGE)
            await self._maybe_summarize(cancel_event)

            logger.info("Agent step", step=step + 1, max_steps=self.max_steps)
            self.run_logger.log_request(self.context.messages, tool_names)

            try:
                response = await self._call_model(cancel_event)
            except OperationCancelledError:
                raise
            except Exception as e:
                logger.error("LLM call failed", error=str(e))
                raise

            self.run_logger.log_response(response)
            self.context.add_assistant_message(response.content, response.thinking, response.tool_calls)

            if not response.tool_calls:
                return response.content

            for n, tool_call in enumerate(response.tool_calls):
                try:
                    result = await self._execute_tool(tool_call, cancel_event)
                except OperationCancelledError:
                    # Every tool call still needs a result for the next request
                    for pending in response.tool_calls[n:]:
                        self.context.add_tool_result(pending.id, "Error: Tool execution cancelled", pending.name)
                    raise
                self.context.add_tool_result(tool_call.id, result.message_text, tool_call.name)

        message = f"Task could not complete in {self.max_steps} steps."
        logger.warning("Step budget exhausted", max_steps=self.max_steps)
        return message
