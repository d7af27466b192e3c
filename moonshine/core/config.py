"""Configuration for the orchestration core using Pydantic Settings.

Two settings objects are read from the environment (and an optional
``.env`` file):

    AiLinterConfig   MOONSHINE_AI_*   concurrency, batching, rate limits, retries
    MoonShineConfig  MOONSHINE_*      provider models/credentials, file patterns

Both are immutable snapshots; build a new instance to change settings.
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AiLinterConfig(BaseSettings):
    """Limits and toggles for AI-assisted linting.

    Example:
        >>> config = AiLinterConfig(batch_size=10, rate_limit_per_minute=30)
        >>> config.max_concurrent_requests
        3
    """

    model_config = SettingsConfigDict(
        env_prefix="MOONSHINE_AI_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    enable_claude_ai: bool = Field(default=True, description="Allow AI provider calls")
    enable_semantic_checks: bool = Field(default=True)
    claude_model: str = Field(default="sonnet")

    max_processing_time: int = Field(
        default=600, gt=0, description="Per-invocation timeout in seconds"
    )
    quality_threshold: float = Field(
        default=0.8, ge=0.0, le=1.0, description="Provider capability floor used when ranking"
    )

    max_concurrent_requests: int = Field(
        default=3, gt=0, description="Batches allowed in flight at once"
    )
    batch_size: int = Field(default=5, gt=0, description="Items per batch")
    rate_limit_per_minute: int = Field(
        default=20, gt=0, description="Admissions allowed per 60s window"
    )
    max_tokens_per_request: int = Field(default=16384, gt=0)

    retry_attempts: int = Field(
        default=3, ge=0, description="Extra admission attempts after a rejection"
    )
    retry_delay_ms: int = Field(default=1000, ge=0)

    @property
    def retry_delay_s(self) -> float:
        return self.retry_delay_ms / 1000.0


class MoonShineConfig(BaseSettings):
    """Workspace-level settings: provider selection, credentials and file scope."""

    model_config = SettingsConfigDict(
        env_prefix="MOONSHINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Model override applied to providers without an explicit model
    ai_model: str | None = None
    temperature: float = Field(default=0.7)
    operation_mode: str = Field(default="fix", description="fix | lint-only | reporting")

    # Claude CLI
    claude_command: str = "claude"
    claude_model: str | None = None
    claude_uses_oauth: bool = True
    claude_api_key_env: str | None = "ANTHROPIC_API_KEY"

    # Gemini CLI
    gemini_command: str = "gemini"
    gemini_model: str | None = None
    gemini_uses_oauth: bool = True
    gemini_api_key_env: str | None = "GOOGLE_API_KEY"

    # Codex CLI
    codex_command: str = "codex"
    codex_model: str = "gpt-5-codex"
    codex_uses_oauth: bool = True
    codex_api_key_env: str | None = "OPENAI_API_KEY"
    codex_reasoning_effort: str = "low"

    # File scope
    include_patterns: tuple[str, ...] = ("**/*.ts", "**/*.tsx", "**/*.js", "**/*.jsx")
    exclude_patterns: tuple[str, ...] = ("**/node_modules/**", "**/dist/**", "**/*.d.ts")
    max_files_per_task: int = Field(default=50, gt=0)
    max_suggestions: int = Field(default=50, gt=0)
    enable_auto_fix: bool = True

    # Agent sessions
    session_base_path: str = ".moon/moonshine/sessions"
    session_max_age_hours: int = Field(default=24, gt=0)

    custom_prompts: dict[str, str] = Field(default_factory=dict)

    @field_validator("temperature")
    @classmethod
    def _check_temperature(cls, value: float) -> float:
        if not 0.0 <= value <= 2.0:
            raise ValueError("temperature must be between 0.0 and 2.0")
        return value

    @field_validator("operation_mode")
    @classmethod
    def _check_mode(cls, value: str) -> str:
        if value not in ("fix", "lint-only", "reporting"):
            raise ValueError(f"unknown operation_mode '{value}'")
        return value
