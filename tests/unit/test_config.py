"""Unit tests for settings loading and validation."""

import pytest
from pydantic import ValidationError

from moonshine.core.config import AiLinterConfig, MoonShineConfig


class TestAiLinterConfig:

    def test_defaults(self):
        config = AiLinterConfig()
        assert config.enable_claude_ai is True
        assert config.claude_model == "sonnet"
        assert config.max_processing_time == 600
        assert config.quality_threshold == 0.8
        assert config.max_tokens_per_request == 16384
        assert config.retry_delay_ms == 1000

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("MOONSHINE_AI_BATCH_SIZE", "12")
        monkeypatch.setenv("MOONSHINE_AI_RATE_LIMIT_PER_MINUTE", "60")
        config = AiLinterConfig()
        assert config.batch_size == 12
        assert config.rate_limit_per_minute == 60

    def test_invalid_environment_value(self, monkeypatch):
        monkeypatch.setenv("MOONSHINE_AI_MAX_CONCURRENT_REQUESTS", "0")
        with pytest.raises(ValidationError):
            AiLinterConfig()

    def test_quality_threshold_bounded(self):
        with pytest.raises(ValidationError):
            AiLinterConfig(quality_threshold=1.5)

    def test_frozen(self):
        config = AiLinterConfig()
        with pytest.raises(ValidationError):
            config.batch_size = 10


class TestMoonShineConfig:

    def test_provider_defaults(self):
        config = MoonShineConfig()
        assert config.claude_command == "claude"
        assert config.codex_model == "gpt-5-codex"
        assert config.claude_api_key_env == "ANTHROPIC_API_KEY"
        assert config.gemini_api_key_env == "GOOGLE_API_KEY"
        assert config.codex_uses_oauth is True
        assert config.operation_mode == "fix"

    def test_environment_override(self, monkeypatch):
        monkeypatch.setenv("MOONSHINE_GEMINI_MODEL", "gemini-2.5-pro")
        monkeypatch.setenv("MOONSHINE_CODEX_USES_OAUTH", "false")
        config = MoonShineConfig()
        assert config.gemini_model == "gemini-2.5-pro"
        assert config.codex_uses_oauth is False

    @pytest.mark.parametrize("temperature", [-0.1, 2.5])
    def test_temperature_range(self, temperature):
        with pytest.raises(ValidationError, match="temperature"):
            MoonShineConfig(temperature=temperature)

    def test_unknown_operation_mode(self):
        with pytest.raises(ValidationError, match="operation_mode"):
            MoonShineConfig(operation_mode="rewrite-everything")

    def test_custom_prompts(self):
        config = MoonShineConfig(custom_prompts={"enhance_code": "Fix {file_path}"})
        assert config.custom_prompts["enhance_code"] == "Fix {file_path}"
