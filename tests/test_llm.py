"""
Tests for LLM providers and the factory.
"""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest

from taskpilot.config import LLMConfig
from taskpilot.llm import AnthropicLLM, OpenAILLM, create_llm
from taskpilot.llm.base import LLMMessage, ToolCall, ToolDefinition

HISTORY = [
    LLMMessage(role="system", content="sys"),
    LLMMessage(role="user", content="list files"),
    LLMMessage(
        role="assistant",
        content="",
        tool_calls=[
            ToolCall(id="c1", name="bash", arguments={"command": "ls"}),
            ToolCall(id="c2", name="bash", arguments={"command": "pwd"}),
        ],
    ),
    LLMMessage(role="tool", content="a.txt", tool_call_id="c1", name="bash"),
    LLMMessage(role="tool", content="/ws", tool_call_id="c2", name="bash"),
]

TOOLS = [ToolDefinition(name="bash", description="Run", parameters={"type": "object", "properties": {}})]


def test_factory_routes_by_provider():
    openai_llm = create_llm(LLMConfig(provider="openai", api_key="k", model="gpt-4o"))
    anthropic_llm = create_llm(LLMConfig(provider="anthropic", api_key="k", model="claude"))

    assert isinstance(openai_llm, OpenAILLM)
    assert isinstance(anthropic_llm, AnthropicLLM)
    assert anthropic_llm.model == "claude"


def test_factory_requires_api_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    with pytest.raises(ValueError, match="No API key"):
        create_llm(LLMConfig(provider="openai", api_key=""))


def test_openai_keeps_system_and_tool_messages():
    llm = OpenAILLM(api_key="k")

    converted = llm._convert_messages(HISTORY)

    assert converted[0] == {"role": "system", "content": "sys"}
    assert converted[2]["tool_calls"][0]["function"] == {"name": "bash", "arguments": '{"command": "ls"}'}
    assert converted[2]["content"] is None
    assert converted[3] == {"role": "tool", "tool_call_id": "c1", "content": "a.txt"}


def test_openai_parse_arguments_tolerates_bad_json():
    assert OpenAILLM._parse_arguments('{"a": 1}') == {"a": 1}
    assert OpenAILLM._parse_arguments("not json") == {}
    assert OpenAILLM._parse_arguments("[1, 2]") == {}
    assert OpenAILLM._parse_arguments(None) == {}


@pytest.mark.asyncio
async def test_openai_generate_parses_tool_calls():
    llm = OpenAILLM(api_key="k")
    message = SimpleNamespace(
        content=None,
        model_extra={"reasoning_content": "thinking it over"},
        tool_calls=[SimpleNamespace(
            id="c9",
            function=SimpleNamespace(name="bash", arguments='{"command": "ls"}'),
        )],
    )
    response = SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason="tool_calls")],
        usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5),
        model="gpt-4o",
    )
    llm.client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(
        create=AsyncMock(return_value=response),
    )))

    result = await llm.generate(HISTORY, TOOLS)

    assert result.content == ""
    assert result.thinking == "thinking it over"
    assert result.tool_calls == [ToolCall(id="c9", name="bash", arguments={"command": "ls"})]
    assert result.finish_reason == "tool_calls"
    sent = llm.client.chat.completions.create.await_args.kwargs
    assert sent["tools"][0]["function"]["name"] == "bash"


def test_anthropic_merges_tool_results():
    llm = AnthropicLLM(api_key="k")

    converted = llm._convert_messages(HISTORY)

    assert [m["role"] for m in converted] == ["user", "assistant", "user"]
    assert [b["type"] for b in converted[1]["content"]] == ["tool_use", "tool_use"]
    results = converted[2]["content"]
    assert [(b["tool_use_id"], b["content"]) for b in results] == [("c1", "a.txt"), ("c2", "/ws")]


@pytest.mark.asyncio
async def test_anthropic_generate_collects_blocks():
    llm = AnthropicLLM(api_key="k")
    response = SimpleNamespace(
        content=[
            SimpleNamespace(type="thinking", thinking="plan"),
            SimpleNamespace(type="text", text="Running it."),
            SimpleNamespace(type="tool_use", id="t1", name="bash", input={"command": "ls"}),
        ],
        stop_reason="tool_use",
        usage=SimpleNamespace(input_tokens=3, output_tokens=4),
        model="claude",
    )
    llm.client = SimpleNamespace(messages=SimpleNamespace(create=AsyncMock(return_value=response)))

    result = await llm.generate(HISTORY, TOOLS)

    assert result.content == "Running it."
    assert result.thinking == "plan"
    assert result.tool_calls[0].arguments == {"command": "ls"}
    assert result.finish_reason == "tool_use"
    sent = llm.client.messages.create.await_args.kwargs
    assert sent["system"] == "sys"
    assert sent["tools"][0]["input_schema"] == TOOLS[0].parameters
