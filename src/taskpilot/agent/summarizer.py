"""
History Summarization - round-based compression of agent execution.

When the estimated token count of a history exceeds the budget, each
round's assistant/tool exchange is replaced by a short model-written
summary. The system message and every user message are kept verbatim.

A round starts at a user message and runs up to the next user message
(or the end of the history). Rounds whose summary request fails are left
untouched, so one bad call never aborts the whole pass.
"""

import structlog

from ..llm.base import BaseLLM, LLMMessage
from .tokens import estimate_tokens

logger = structlog.get_logger()

SUMMARY_PREFIX = "[Execution Summary]\n\n"
SUMMARY_WORD_LIMIT = 800
SUMMARIZER_SYSTEM_PROMPT = "You summarize agent execution processes."


def split_rounds(messages: list[LLMMessage]) -> tuple[list[LLMMessage], list[list[LLMMessage]]]:
    """Split a history into its preamble and its rounds.

    The preamble is the system message plus anything before the first
    user message. Each round begins with its user message.
    """
    user_indices = [i for i, m in enumerate(messages) if i > 0 and m.role == "user"]
    if not user_indices:
        return list(messages), []

    preamble = list(messages[:user_indices[0]])
    rounds = []
    for n, start in enumerate(user_indices):
        end = user_indices[n + 1] if n + 1 < len(user_indices) else len(messages)
        rounds.append(list(messages[start:end]))
    return preamble, rounds


def _build_transcript(execution: list[LLMMessage], round_number: int) -> str:
    """Render a round's assistant/tool messages for the summary prompt."""
    parts = [f"Round {round_number} execution process:\n"]
    for msg in execution:
        if msg.role == "assistant":
            parts.append(f"Assistant: {msg.content}")
            if msg.tool_calls:
                names = ", ".join(tc.name for tc in msg.tool_calls)
                parts.append(f"  → Called tools: {names}")
        elif msg.role == "tool":
            parts.append(f"  ← Tool returned: {msg.content}")
    return "\n".join(parts)


class HistorySummarizer:
    """Compresses a message history that has exceeded a token budget."""

    def __init__(self, llm: BaseLLM, token_limit: int):
        self.llm = llm
        self.token_limit = token_limit

    async def summarize(self, messages: list[LLMMessage]) -> list[LLMMessage]:
        """Return a history whose rounds are summarized if over budget.

        Returns the input list itself when no summarization is needed.
        """
        tokens = estimate_tokens(messages)
        if tokens <= self.token_limit:
            return messages

        preamble, rounds = split_rounds(messages)
        if not rounds:
            logger.warning("No user messages to summarize", estimated_tokens=tokens)
            return messages

        logger.info(
            "Token budget exceeded, summarizing history",
            estimated_tokens=tokens,
            token_limit=self.token_limit,
            rounds=len(rounds),
        )

        summarized: list[LLMMessage] = list(preamble)
        for number, round_messages in enumerate(rounds, start=1):
            user_message, execution = round_messages[0], round_messages[1:]
            if not execution:
                summarized.append(user_message)
                continue

            try:
                summary = await self._create_summary(execution, number)
            except Exception as e:
                logger.warning("Summary failed, keeping round unmodified", round=number, error=str(e))
                summarized.extend(round_messages)
                continue

            summarized.append(user_message)
            summarized.append(LLMMessage(role="user", content=SUMMARY_PREFIX + summary))

        logger.info(
            "Summary complete",
            tokens_before=tokens,
            tokens_after=estimate_tokens(summarized),
        )
        return summarized

    async def _create_summary(self, execution: list[LLMMessage], round_number: int) -> str:
        """Ask the model for a prose summary of one round's execution."""
        transcript = _build_transcript(execution, round_number)

        prompt = f"""Please summarize the following agent execution process:

{transcript}

Rules:
- Focus on what the agent did and which tools were used
- Concise, English, < {SUMMARY_WORD_LIMIT} words
- Summarize execution only (no user content)"""

        response = await self.llm.generate(
            messages=[
                LLMMessage(role="system", content=SUMMARIZER_SYSTEM_PROMPT),
                LLMMessage(role="user", content=prompt),
            ],
        )
        return response.content.strip()
