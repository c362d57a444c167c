"""
Agent module - the execution engine.

Includes:
- Agent: Step loop with model calls, retries, and tool dispatch
- ConversationContext: In-memory message history
- HistorySummarizer: Round-based summarization over a token budget
- RunLogger: Per-run audit log
"""

from .core import Agent, ConversationContext
from .run_log import RunLogger
from .summarizer import HistorySummarizer
from .tokens import estimate_tokens

__all__ = [
    "Agent",
    "ConversationContext",
    "HistorySummarizer",
    "RunLogger",
    "estimate_tokens",
]
