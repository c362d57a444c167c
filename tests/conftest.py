"""
Shared fixtures.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from taskpilot.agent import tokens
from taskpilot.llm.base import BaseLLM


@pytest.fixture(autouse=True)
def offline_token_counting(monkeypatch):
    """Use the character-ratio estimate so tests never fetch encodings."""
    monkeypatch.setattr(tokens, "get_encoder", lambda: None)


@pytest.fixture
def mock_llm():
    llm = MagicMock(spec=BaseLLM)
    llm.generate = AsyncMock()
    return llm
