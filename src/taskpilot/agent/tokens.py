"""
Token estimation for message histories.

Uses tiktoken's cl100k_base encoding when it can be loaded, and a
deterministic character-ratio estimate otherwise.
"""

from functools import lru_cache
from typing import Any

import structlog
import tiktoken

from ..llm.base import LLMMessage, serialize_tool_calls

logger = structlog.get_logger()

ENCODING_NAME = "cl100k_base"

# Role and framing cost of each message on the wire
MESSAGE_OVERHEAD_TOKENS = 4

# Characters per token for the fallback estimate
FALLBACK_CHARS_PER_TOKEN = 2.5


@lru_cache(maxsize=1)
def get_encoder() -> Any | None:
    """Load the tokenizer once; None when it is unavailable."""
    try:
        return tiktoken.get_encoding(ENCODING_NAME)
    except Exception as e:
        logger.warning("Failed to load tiktoken encoding, using fallback estimate", error=str(e))
        return None


def _count(encoder: Any, text: str | None) -> int:
    if not text:
        return 0
    return len(encoder.encode(text, disallowed_special=()))


def estimate_tokens(messages: list[LLMMessage]) -> int:
    """Estimate the token cost of a message history."""
    encoder = get_encoder()
    if encoder is None:
        return estimate_tokens_fallback(messages)

    total = 0
    try:
        for msg in messages:
            total += _count(encoder, msg.content)
            total += _count(encoder, msg.thinking)
            total += _count(encoder, serialize_tool_calls(msg.tool_calls))
            total += MESSAGE_OVERHEAD_TOKENS
    except Exception as e:
        logger.warning("Token encoding failed, using fallback estimate", error=str(e))
        return estimate_tokens_fallback(messages)

    return total


def estimate_tokens_fallback(messages: list[LLMMessage]) -> int:
    """Character-count estimate; never raises."""
    total_chars = 0
    for msg in messages:
        total_chars += len(msg.content or "")
        total_chars += len(msg.thinking or "")
        total_chars += len(serialize_tool_calls(msg.tool_calls))
    return int(total_chars / FALLBACK_CHARS_PER_TOKEN)


def truncate_text_by_tokens(text: str, max_tokens: int) -> str:
    """Keep the head and tail of ``text`` so it fits within ``max_tokens``.

    Both halves are aligned to line boundaries and a marker noting the
    original size is inserted between them.
    """
    if not text:
        return text

    encoder = get_encoder()
    if encoder is None:
        token_count = int(len(text) / FALLBACK_CHARS_PER_TOKEN)
    else:
        token_count = _count(encoder, text)

    if token_count <= max_tokens:
        return text

    ratio = token_count / len(text)
    chars_per_half = max(1, int((max_tokens / 2) / ratio * 0.95))

    head = text[:chars_per_half]
    newline = head.rfind("\n")
    if newline > 0:
        head = head[:newline]

    tail = text[-chars_per_half:]
    newline = tail.find("\n")
    if newline > 0:
        tail = tail[newline + 1:]

    note = f"\n\n... [Content truncated: {token_count} tokens -> ~{max_tokens} tokens limit] ...\n\n"
    return head + note + tail
