"""
Configuration management for taskpilot

Uses pydantic-settings for environment variable parsing and validation,
with an optional YAML file layered underneath the environment.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from .retry import RetryConfig

DEFAULT_CONFIG_FILE = "config.yaml"


class RetrySettings(BaseModel):
    """Retry policy for model calls."""

    enabled: bool = True
    max_retries: int = Field(default=3, ge=0)
    initial_delay: float = Field(default=1.0, ge=0)
    max_delay: float = Field(default=60.0, ge=0)
    exponential_base: float = Field(default=2.0, ge=1)

    def to_retry_config(self) -> RetryConfig:
        return RetryConfig(
            enabled=self.enabled,
            max_retries=self.max_retries,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            exponential_base=self.exponential_base,
        )


class LLMConfig(BaseModel):
    """Configuration for the chat completion provider."""

    provider: Literal["openai", "anthropic"] = "openai"
    model: str = "gpt-4o"
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7
    retry: RetrySettings = Field(default_factory=RetrySettings)

    def resolved_api_key(self) -> str:
        """Return the configured key, falling back to the provider's env var."""
        if self.api_key:
            return self.api_key
        env_var = "ANTHROPIC_API_KEY" if self.provider == "anthropic" else "OPENAI_API_KEY"
        return os.getenv(env_var, "")


class AgentSettings(BaseModel):
    """Configuration for the agent loop."""

    max_steps: int = Field(default=50, ge=1)
    workspace_dir: str = "./workspace"
    system_prompt_path: str | None = None
    token_limit: int = Field(default=80_000, ge=1)


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="TASKPILOT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_dir: str = Field(
        default=str(Path.home() / ".taskpilot" / "log"),
        description="Directory for per-run agent logs",
    )

    llm: LLMConfig = Field(default_factory=LLMConfig)
    agent: AgentSettings = Field(default_factory=AgentSettings)

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.strip().upper() if v else "INFO"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        yaml_file = os.getenv("TASKPILOT_CONFIG_FILE", DEFAULT_CONFIG_FILE)
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file),
            file_secret_settings,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
