"""
Provider Capability Catalog
=============================

Static description of each AI backend: its capability profile, how to
invoke it, and which credential it needs. Adding a backend means adding a
ProviderConfig record; nothing in the router or invoker is provider-specific.

Capability dimensions are ratings in [0.0, 1.0]; ``context_length`` is a
token count.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from moonshine.core.config import MoonShineConfig

__all__ = [
    "CAPABILITY_DIMENSIONS",
    "FILE_ARGS",
    "ProviderCapabilities",
    "ProviderConfig",
    "default_catalog",
]

CAPABILITY_DIMENSIONS = ("code_analysis", "code_generation", "complex_reasoning", "speed")

# Marker token in ``ProviderConfig.args`` replaced by ``file_args`` when a file is attached.
FILE_ARGS = "{file_args}"

@dataclass(frozen=True, slots=True)
class ProviderCapabilities:
    code_analysis: float
    code_generation: float
    complex_reasoning: float
    speed: float
    context_length: int
    supports_sessions: bool = True

    def __post_init__(self) -> None:
        for name in CAPABILITY_DIMENSIONS:
            value = getattr(self, name)
            if not (0.0 <= value <= 1.0) or math.isnan(value):
                raise ValueError(f"{name} must be within [0.0, 1.0], got {value}")
        if self.context_length <= 0:
            raise ValueError("context_length must be positive")

    def rating(self, dimension: str) -> float:
        if dimension not in CAPABILITY_DIMENSIONS:
            raise KeyError(dimension)
        return getattr(self, dimension)

@dataclass(frozen=True, slots=True)
class ProviderConfig:
    """
    One AI backend.

    Attributes:
        name:              Unique provider name ("claude", "google", "openai")
        command:           Executable invoked for this provider
        model:             Model identifier passed to the command
        capabilities:      Capability profile used for ranking
        api_key_env:       Environment variable holding the API key, if any
        requires_api_key:  True when the provider cannot run without that key
        args:              argv template; placeholders {model}, {prompt},
                           {session_id}, {file_path}, {file_dir}
        file_args:         Tokens substituted for the {file_args} marker when a
                           file path accompanies the request
    """

    name: str
    command: str
    model: str
    capabilities: ProviderCapabilities
    api_key_env: str | None = None
    requires_api_key: bool = False
    args: tuple[str, ...] = ("{prompt}",)
    file_args: tuple[str, ...] = field(default=())

# ── Built-in catalog ─────────────────────────────────────────────────

_GEMINI_PROFILES: dict[str, tuple[float, float, float, float]] = {
    "gemini-2.5-pro": (0.90, 0.85, 0.90, 0.70),
    "gemini-2.5-flash": (0.80, 0.80, 0.85, 0.90),
}
_GEMINI_DEFAULT_PROFILE = (0.80, 0.80, 0.85, 0.85)

def _credential(uses_oauth: bool, api_key_env: str | None) -> tuple[str | None, bool]:
    if uses_oauth:
        return None, False
    return api_key_env, True

def claude_provider(config: MoonShineConfig) -> ProviderConfig:
    env, required = _credential(config.claude_uses_oauth, config.claude_api_key_env)
    return ProviderConfig(
        name="claude",
        command=config.claude_command,
        model=config.claude_model or config.ai_model or "sonnet",
        api_key_env=env,
        requires_api_key=required,
        capabilities=ProviderCapabilities(
            code_analysis=0.95,
            code_generation=0.85,
            complex_reasoning=0.95,
            speed=0.75,
            context_length=200_000,
        ),
        args=(
            "--session-id", "{session_id}",
            "--model", "{model}",
            "--no-stream",
            FILE_ARGS,
            "--prompt", "{prompt}",
        ),
        file_args=("code", "--file", "{file_path}"),
    )

def google_provider(config: MoonShineConfig) -> ProviderConfig:
    model = config.gemini_model or "gemini-2.5-flash"
    analysis, generation, reasoning, speed = _GEMINI_PROFILES.get(model, _GEMINI_DEFAULT_PROFILE)
    env, required = _credential(config.gemini_uses_oauth, config.gemini_api_key_env)
    return ProviderConfig(
        name="google",
        command=config.gemini_command,
        model=model,
        api_key_env=env,
        requires_api_key=required,
        capabilities=ProviderCapabilities(
            code_analysis=analysis,
            code_generation=generation,
            complex_reasoning=reasoning,
            speed=speed,
            context_length=100_000,
        ),
        args=("-m", "{model}", "-p", "{prompt}"),
    )

def openai_provider(config: MoonShineConfig) -> ProviderConfig:
    env, required = _credential(config.codex_uses_oauth, config.codex_api_key_env)
    return ProviderConfig(
        name="openai",
        command=config.codex_command,
        model=config.codex_model,
        api_key_env=env,
        requires_api_key=required,
        capabilities=ProviderCapabilities(
            code_analysis=0.88,
            code_generation=0.95,
            complex_reasoning=0.85,
            speed=0.85,
            context_length=200_000,
        ),
        args=(
            "exec", "--json", "--sandbox", "read-only",
            "--model", "{model}",
            "--config", f'model_reasoning_effort="{config.codex_reasoning_effort}"',
            FILE_ARGS,
            "{prompt}",
        ),
        file_args=("--cd", "{file_dir}"),
    )

def default_catalog(config: MoonShineConfig | None = None) -> tuple[ProviderConfig, ...]:
    """Built-in providers in declaration order (the ranking tie-break order)."""
    config = config or MoonShineConfig()
    return (claude_provider(config), google_provider(config), openai_provider(config))
