"""Configuration settings for OpsAgent."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or overrides."""

    model_config = SettingsConfigDict(
        env_prefix="", case_sensitive=False, populate_by_name=True
    )

    provider: Literal["openai", "claude"] = Field(
        default="claude", validation_alias="AGENT_DEFAULT_PROVIDER"
    )
    openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
    openai_base_url: str = Field(
        default="https://api.openai.com/v1", validation_alias="OPENAI_BASE_URL"
    )
    openai_model: str = Field(default="gpt-4-turbo", validation_alias="OPENAI_MODEL")
    openai_extra_headers: str | None = Field(
        default=None, validation_alias="OPENAI_EXTRA_HEADERS"
    )
    openai_disable_tool_choice: bool = Field(
        default=False, validation_alias="OPENAI_DISABLE_TOOL_CHOICE"
    )
    openai_force_chatcompletions_path: str | None = Field(
        default=None, validation_alias="OPENAI_FORCE_CHATCOMPLETIONS_PATH"
    )
    anthropic_api_key: str | None = Field(default=None, validation_alias="ANTHROPIC_API_KEY")
    anthropic_base_url: str = Field(
        default="https://api.anthropic.com", validation_alias="ANTHROPIC_BASE_URL"
    )
    anthropic_model: str = Field(
        default="claude-sonnet-4-20250514", validation_alias="ANTHROPIC_MODEL"
    )
    anthropic_version: str = Field(default="2023-06-01", validation_alias="ANTHROPIC_VERSION")
    llm_temperature: float = Field(default=0.3, validation_alias="LLM_TEMPERATURE")
    llm_max_tokens: int | None = Field(default=None, validation_alias="LLM_MAX_TOKENS")
    llm_timeout_ms: int = Field(default=30000, validation_alias="LLM_TIMEOUT_MS")
    recent_decisions_limit: int = Field(default=5, validation_alias="AGENT_RECENT_DECISIONS")
    short_circuit_overrides: bool = Field(
        default=True, validation_alias="AGENT_SHORT_CIRCUIT_OVERRIDES"
    )
    retry_max_attempts: int = Field(default=3, validation_alias="RETRY_MAX_ATTEMPTS")
    retry_delays_ms: list[int] = Field(
        default_factory=lambda: [1000, 5000, 30000], validation_alias="RETRY_DELAYS_MS"
    )
    rate_limit_max_requests: int = Field(default=30, validation_alias="RATE_LIMIT_MAX_REQUESTS")
    rate_limit_window_ms: int = Field(default=60000, validation_alias="RATE_LIMIT_WINDOW_MS")
    audit_dir: Path | None = Field(default=None, validation_alias="AGENT_AUDIT_DIR")
    decision_db_path: Path | None = Field(default=None, validation_alias="AGENT_DECISION_DB")
    audit_db_path: Path | None = Field(default=None, validation_alias="AGENT_AUDIT_DB")

    @field_validator("provider", mode="before")
    @classmethod
    def _normalize_provider(cls, value: object) -> str:
        # Anything other than OPENAI selects Claude.
        if isinstance(value, str) and value.strip().lower() == "openai":
            return "openai"
        return "claude"


DEFAULT_SETTINGS = Settings()
