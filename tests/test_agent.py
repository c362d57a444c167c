"""
Tests for agent module.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from taskpilot.agent import Agent, ConversationContext, RunLogger
from taskpilot.errors import OperationCancelledError, RetryExhaustedError, WorkspaceError
from taskpilot.llm.base import LLMMessage, LLMResponse, ToolCall
from taskpilot.retry import RetryConfig
from taskpilot.tools.base import Tool, ToolParameter, ToolResult

FAST_RETRY = RetryConfig(max_retries=2, initial_delay=0, max_delay=0)


def _echo_tool(handler=None) -> Tool:
    async def echo(text: str = "") -> ToolResult:
        return ToolResult(success=True, content=f"echo: {text}")

    return Tool(
        name="echo",
        description="Echo text back",
        parameters=[ToolParameter(name="text", param_type="string", description="Text to echo")],
        handler=handler or echo,
    )


def _tool_response(name: str = "echo", call_id: str = "call-1", **arguments) -> LLMResponse:
    return LLMResponse(content="", tool_calls=[ToolCall(id=call_id, name=name, arguments=arguments)])


@pytest.fixture
def make_agent(mock_llm, tmp_path):
    def factory(**kwargs):
        kwargs.setdefault("tools", [_echo_tool()])
        kwargs.setdefault("retry_config", FAST_RETRY)
        return Agent(
            llm=mock_llm,
            system_prompt="You are a test agent.",
            workspace_dir=tmp_path / "workspace",
            run_logger=RunLogger(tmp_path / "logs"),
            **kwargs,
        )
    return factory


def test_conversation_context_starts_with_system():
    context = ConversationContext(system_prompt="sys")

    assert context.message_count == 1
    assert context.messages[0].role == "system"
    assert context.messages[0].content == "sys"


def test_conversation_context_tool_result():
    context = ConversationContext()
    context.add_tool_result("tool_123", "Result data", "bash")

    message = context.messages[-1]
    assert message.role == "tool"
    assert message.tool_call_id == "tool_123"
    assert message.content == "Result data"
    assert message.name == "bash"


def test_workspace_created_and_described(make_agent, tmp_path):
    agent = make_agent()

    assert (tmp_path / "workspace").is_dir()
    assert "## Current Workspace" in agent.history()[0].content
    assert str((tmp_path / "workspace").resolve()) in agent.history()[0].content


def test_workspace_section_not_duplicated(mock_llm, tmp_path):
    prompt = "Custom.\n\n## Current Workspace\nelsewhere"
    agent = Agent(mock_llm, prompt, workspace_dir=tmp_path, run_logger=RunLogger(tmp_path / "logs"))

    assert agent.history()[0].content == prompt


def test_workspace_creation_failure(mock_llm, tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("not a directory")

    with pytest.raises(WorkspaceError):
        Agent(mock_llm, "sys", workspace_dir=blocker / "ws")


@pytest.mark.asyncio
async def test_returns_content_when_no_tool_calls(make_agent, mock_llm):
    mock_llm.generate.return_value = LLMResponse(content="All done.")
    agent = make_agent()
    agent.add_user_message("hi")

    result = await agent.run()

    assert result == "All done."
    assert mock_llm.generate.await_count == 1
    assert [m.role for m in agent.history()] == ["system", "user", "assistant"]


@pytest.mark.asyncio
async def test_model_receives_history_and_tools(make_agent, mock_llm):
    mock_llm.generate.return_value = LLMResponse(content="ok")
    agent = make_agent()
    agent.add_user_message("hi")

    await agent.run()

    kwargs = mock_llm.generate.await_args.kwargs
    assert [m.role for m in kwargs["messages"]] == ["system", "user"]
    assert [t.name for t in kwargs["tools"]] == ["echo"]


@pytest.mark.asyncio
async def test_tool_call_then_final_answer(make_agent, mock_llm):
    mock_llm.generate.side_effect = [
        _tool_response(text="ping"),
        LLMResponse(content="Finished"),
    ]
    agent = make_agent()
    agent.add_user_message("say ping")

    result = await agent.run()

    assert result == "Finished"
    history = agent.history()
    assert [m.role for m in history] == ["system", "user", "assistant", "tool", "assistant"]
    tool_message = history[3]
    assert tool_message.tool_call_id == "call-1"
    assert tool_message.name == "echo"
    assert tool_message.content == "echo: ping"


@pytest.mark.asyncio
async def test_step_budget_exhausted(make_agent, mock_llm):
    mock_llm.generate.return_value = _tool_response(text="again")
    agent = make_agent(max_steps=3)
    agent.add_user_message("loop forever")

    result = await agent.run()

    assert result == "Task could not complete in 3 steps."
    assert mock_llm.generate.await_count == 3


@pytest.mark.asyncio
async def test_unknown_tool_becomes_error_message(make_agent, mock_llm):
    mock_llm.generate.side_effect = [
        _tool_response(name="missing_tool"),
        LLMResponse(content="ok"),
    ]
    agent = make_agent()
    agent.add_user_message("go")

    await agent.run()

    tool_message = agent.history()[3]
    assert tool_message.content == "Error: Unknown tool: missing_tool"


@pytest.mark.asyncio
async def test_tool_exception_becomes_error_message(make_agent, mock_llm):
    failing = _echo_tool(handler=AsyncMock(side_effect=RuntimeError("kaboom")))
    mock_llm.generate.side_effect = [_tool_response(text="x"), LLMResponse(content="recovered")]
    agent = make_agent(tools=[failing])
    agent.add_user_message("go")

    result = await agent.run()

    assert result == "recovered"
    assert agent.history()[3].content == "Error: kaboom"


@pytest.mark.asyncio
async def test_multiple_tool_calls_run_in_order(make_agent, mock_llm):
    calls = [
        ToolCall(id="a", name="echo", arguments={"text": "one"}),
        ToolCall(id="b", name="echo", arguments={"text": "two"}),
    ]
    mock_llm.generate.side_effect = [
        LLMResponse(content="", tool_calls=calls),
        LLMResponse(content="done"),
    ]
    agent = make_agent()
    agent.add_user_message("go")

    await agent.run()

    tool_messages = [m for m in agent.history() if m.role == "tool"]
    assert [(m.tool_call_id, m.content) for m in tool_messages] == [("a", "echo: one"), ("b", "echo: two")]


@pytest.mark.asyncio
async def test_model_failure_raises_retry_exhausted(make_agent, mock_llm):
    mock_llm.generate.side_effect = ConnectionError("network down")
    on_retry = MagicMock()
    agent = make_agent(on_retry=on_retry)
    agent.add_user_message("go")

    with pytest.raises(RetryExhaustedError) as exc_info:
        await agent.run()

    assert mock_llm.generate.await_count == FAST_RETRY.max_retries + 1
    assert on_retry.call_count == FAST_RETRY.max_retries
    assert isinstance(exc_info.value.last_error, ConnectionError)


@pytest.mark.asyncio
async def test_model_failure_without_retry_propagates_raw(make_agent, mock_llm):
    mock_llm.generate.side_effect = ConnectionError("network down")
    agent = make_agent(retry_config=RetryConfig(enabled=False))
    agent.add_user_message("go")

    with pytest.raises(ConnectionError):
        await agent.run()

    assert mock_llm.generate.await_count == 1


@pytest.mark.asyncio
async def test_history_is_a_copy(make_agent):
    agent = make_agent()
    agent.add_user_message("hi")

    snapshot = agent.history()
    snapshot.append(LLMMessage(role="user", content="injected"))
    snapshot[1].content = "changed"

    assert len(agent.history()) == 2
    assert agent.history()[1].content == "hi"


@pytest.mark.asyncio
async def test_history_copy_does_not_share_tool_calls(make_agent, mock_llm):
    mock_llm.generate.side_effect = [
        _tool_response(call_id="c1", text="a"),
        LLMResponse(content="done"),
    ]
    agent = make_agent()
    agent.add_user_message("go")
    await agent.run()

    snapshot = agent.history()
    snapshot[2].tool_calls.append(ToolCall(id="z", name="echo", arguments={}))
    snapshot[2].tool_calls[0].arguments["text"] = "tampered"

    live_calls = agent.context.messages[2].tool_calls
    assert len(live_calls) == 1
    assert live_calls[0].id == "c1"
    assert live_calls[0].arguments == {"text": "a"}


def test_reset_keeps_system_prompt(make_agent):
    agent = make_agent()
    agent.add_user_message("hi")

    agent.reset()

    history = agent.history()
    assert len(history) == 1
    assert history[0].role == "system"


@pytest.mark.asyncio
async def test_cancelled_before_start(make_agent, mock_llm):
    agent = make_agent()
    agent.add_user_message("go")
    cancel_event = asyncio.Event()
    cancel_event.set()

    with pytest.raises(OperationCancelledError):
        await agent.run(cancel_event)

    mock_llm.generate.assert_not_awaited()


@pytest.mark.asyncio
async def test_cancel_during_tool_execution(make_agent, mock_llm):
    started = asyncio.Event()

    async def slow(text: str = "") -> ToolResult:
        started.set()
        await asyncio.sleep(30)
        return ToolResult(success=True, content="never")

    mock_llm.generate.return_value = _tool_response(text="x")
    agent = make_agent(tools=[_echo_tool(handler=slow)])
    agent.add_user_message("go")
    cancel_event = asyncio.Event()

    async def cancel_when_started():
        await started.wait()
        cancel_event.set()

    asyncio.create_task(cancel_when_started())
    with pytest.raises(OperationCancelledError):
        await asyncio.wait_for(agent.run(cancel_event), timeout=5)

    # The pending call still gets a result so the history stays well formed
    last = agent.history()[-1]
    assert last.role == "tool"
    assert last.tool_call_id == "call-1"
    assert "cancelled" in last.content


@pytest.mark.asyncio
async def test_summarization_failure_is_not_fatal(make_agent, mock_llm):
    mock_llm.generate.side_effect = [LLMResponse(content="answer")]
    agent = make_agent(token_limit=1)
    agent.summarizer.summarize = AsyncMock(side_effect=RuntimeError("summary broke"))
    agent.add_user_message("go")

    result = await agent.run()

    assert result == "answer"


@pytest.mark.asyncio
async def test_run_log_written(make_agent, mock_llm, tmp_path):
    mock_llm.generate.side_effect = [_tool_response(text="x"), LLMResponse(content="done")]
    agent = make_agent()
    agent.add_user_message("go")

    await agent.run()
    agent.run_logger.close()

    log_files = list((tmp_path / "logs").glob("agent_run_*.log"))
    assert len(log_files) == 1
    text = log_files[0].read_text()
    assert "REQUEST" in text
    assert "RESPONSE" in text
    assert "TOOL_RESULT" in text
