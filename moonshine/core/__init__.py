"""Core layer: shared types, configuration and errors."""

from moonshine.core.config import AiLinterConfig, MoonShineConfig
from moonshine.core.exceptions import MoonShineError, RetryConfig, compute_retry_delay
from moonshine.core.types import ContextKind, StepStatus

__all__ = [
    "AiLinterConfig",
    "ContextKind",
    "MoonShineConfig",
    "MoonShineError",
    "RetryConfig",
    "StepStatus",
    "compute_retry_delay",
]
