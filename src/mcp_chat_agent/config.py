"""
Configuration management for MCP-Chat-Agent

Uses pydantic-settings for environment variable parsing and validation.
"""

import json
from functools import lru_cache
from typing import Any, Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMConfig(BaseSettings):
    """Configuration for a single LLM provider."""

    model_config = SettingsConfigDict(extra="ignore")

    provider: Literal["anthropic", "openai", "openrouter"] = "openai"
    model: str = "gpt-4o-mini"
    api_key: str = ""
    base_url: str | None = None
    max_tokens: int = 4096
    temperature: float = 0.7


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_nested_delimiter="__",
    )

    # Application
    app_name: str = "MCP-Chat-Agent"
    debug: bool = False
    log_level: str = "INFO"

    # Server
    host: str = "0.0.0.0"
    port: int = 8080

    # LLM Providers (API Keys)
    anthropic_api_key: str = Field(default="", description="Anthropic API key for Claude")
    openai_api_key: str = Field(default="", description="OpenAI API key")
    openrouter_api_key: str = Field(default="", description="OpenRouter API key")

    # Default model settings
    default_provider: Literal["anthropic", "openai", "openrouter"] = "openai"
    default_model: str = ""
    summary_model: str = Field(default="", description="Model used for compaction summaries")
    max_tokens: int = 4096
    temperature: float = 0.7
    max_tool_iterations: int = 10

    # Memory store
    redis_url: str = Field(default="", description="Redis connection URL (in-memory store when empty)")
    memory_key_prefix: str = "chat-memory:"
    ephemeral_session_prefix: str = "temp-"

    # MCP backends
    mcp_servers: str = Field(default="", description="JSON list of MCP servers to register at startup")
    mcp_tool_cache_ttl_seconds: float = 30.0
    backend_connect_timeout_seconds: float = 30.0
    tool_call_timeout_seconds: float = 60.0
    correlation_retention_seconds: float = 300.0

    # Compaction
    min_messages_to_compact: int = Field(default=8, description="Sessions shorter than this are left alone")
    messages_to_keep_recent: int = Field(default=6, description="Recent messages kept verbatim")
    summarization_timeout_seconds: float = 120.0
    compaction_enabled: bool = True
    compaction_interval_seconds: float = 300.0
    compaction_initial_delay_seconds: float = 60.0

    @field_validator("mcp_servers", mode="before")
    @classmethod
    def parse_mcp_servers(cls, v: str) -> str:
        return v.strip() if v else ""

    @model_validator(mode="after")
    def check_compaction_window(self) -> "Settings":
        if self.messages_to_keep_recent < 1:
            raise ValueError("messages_to_keep_recent must be at least 1")
        if self.min_messages_to_compact <= self.messages_to_keep_recent:
            raise ValueError("min_messages_to_compact must be greater than messages_to_keep_recent")
        return self

    @property
    def mcp_servers_list(self) -> list[dict[str, Any]]:
        """Get the startup MCP server definitions."""
        if not self.mcp_servers:
            return []
        data = json.loads(self.mcp_servers)
        if not isinstance(data, list):
            raise ValueError("MCP_SERVERS must be a JSON list")
        return data

    def get_llm_config(self, provider: str | None = None, model: str | None = None) -> LLMConfig:
        """Get LLM configuration for a provider."""
        provider = provider or self.default_provider

        api_key_map = {
            "anthropic": self.anthropic_api_key,
            "openai": self.openai_api_key,
            "openrouter": self.openrouter_api_key,
        }

        model_map = {
            "anthropic": "claude-sonnet-4-20250514",
            "openai": "gpt-4o-mini",
            "openrouter": "openai/gpt-4o-mini",
        }

        base_url_map = {
            "anthropic": None,
            "openai": None,
            "openrouter": "https://openrouter.ai/api/v1",
        }

        return LLMConfig(
            provider=provider,  # type: ignore
            model=model or self.default_model or model_map.get(provider, "gpt-4o-mini"),
            api_key=api_key_map.get(provider, ""),
            base_url=base_url_map.get(provider),
            max_tokens=self.max_tokens,
            temperature=self.temperature,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
