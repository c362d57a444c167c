"""
LLM factory for creating provider instances.
"""

from ..config import LLMConfig, Settings
from .base import BaseLLM
from .anthropic import AnthropicLLM
from .openai import OpenAILLM


def create_llm(config: LLMConfig | None = None, settings: Settings | None = None) -> BaseLLM:
    """Create an LLM instance based on configuration.

    Provider routing:
    - openai -> OpenAILLM (any OpenAI-compatible endpoint via base_url)
    - anthropic -> AnthropicLLM (native Anthropic SDK)
    """
    if config is None:
        if settings is None:
            from ..config import get_settings
            settings = get_settings()
        config = settings.llm

    api_key = config.resolved_api_key()
    if not api_key:
        raise ValueError(f"No API key configured for provider: {config.provider}")

    if config.provider == "anthropic":
        return AnthropicLLM(
            api_key=api_key,
            model=config.model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
        )
    elif config.provider == "openai":
        return OpenAILLM(
            api_key=api_key,
            model=config.model,
            base_url=config.base_url,
            max_tokens=config.max_tokens,
            temperature=config.temperature,
        )
    else:
        raise ValueError(f"Unknown LLM provider: {config.provider}")
