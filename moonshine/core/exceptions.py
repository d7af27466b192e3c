"""Exception taxonomy for the orchestration core.

Includes:
- Base exception with structured serialization
- Provider selection and invocation errors
- Rate limiting and batching errors
- Workflow validation and execution errors
- Retry configuration and backoff computation
"""

from __future__ import annotations

import random
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any


class MoonShineError(Exception):
    """Base exception for all Moon Shine errors."""

    def __init__(
        self,
        detail: str,
        error_code: str = "INTERNAL_ERROR",
        recoverable: bool = False,
        context: dict[str, Any] | None = None,
    ):
        self.detail = detail
        self.error_code = error_code
        self.recoverable = recoverable
        self.context = context or {}
        self.timestamp = datetime.now(UTC).isoformat()
        super().__init__(detail)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a JSON-serializable dictionary."""
        return {
            "error": self.error_code,
            "detail": self.detail,
            "recoverable": self.recoverable,
            "context": self.context,
            "timestamp": self.timestamp,
        }


class UnhandledVariantError(MoonShineError):
    """Raised when a tagged variant has no handler."""

    def __init__(self, family: str, variant: str):
        super().__init__(
            detail=f"Unhandled {family} variant: {variant}",
            error_code="UNHANDLED_VARIANT",
            context={"family": family, "variant": variant},
        )
        self.family = family
        self.variant = variant


# =============================================================================
# PROVIDER EXCEPTIONS
# =============================================================================


class NoProviderAvailable(MoonShineError):
    """Raised when no configured provider satisfies a request's constraints."""

    def __init__(self, reason: str, excluded: dict[str, str] | None = None):
        super().__init__(
            detail=f"No provider available: {reason}",
            error_code="NO_PROVIDER_AVAILABLE",
            recoverable=True,
            context={"excluded": dict(excluded or {})},
        )
        self.reason = reason
        self.excluded = dict(excluded or {})


class ProviderInvocationError(MoonShineError):
    """A single provider call failed. Callers may fall back to another provider."""

    def __init__(self, provider: str, detail: str, exit_code: int | None = None):
        super().__init__(
            detail=f"Provider '{provider}' failed: {detail}",
            error_code="PROVIDER_INVOCATION_FAILED",
            recoverable=True,
            context={"provider": provider, "exit_code": exit_code},
        )
        self.provider = provider
        self.exit_code = exit_code


class AllProvidersFailed(MoonShineError):
    """Every ranked provider was tried and failed."""

    def __init__(self, errors: Sequence[ProviderInvocationError]):
        self.errors = tuple(errors)
        summary = "; ".join(str(e) for e in self.errors) or "no providers attempted"
        super().__init__(
            detail=f"All providers failed: {summary}",
            error_code="ALL_PROVIDERS_FAILED",
            recoverable=True,
            context={"providers": [e.provider for e in self.errors]},
        )


# =============================================================================
# RUNTIME EXCEPTIONS
# =============================================================================


class RateLimitExceeded(MoonShineError):
    """Raised by the rate limiter when the current window is exhausted."""

    def __init__(self, limit: int, retry_after_s: float):
        super().__init__(
            detail=(
                f"Rate limit exceeded: too many requests per minute "
                f"(limit={limit}, retry after {retry_after_s:.2f}s)"
            ),
            error_code="RATE_LIMIT_EXCEEDED",
            recoverable=True,
            context={"limit": limit, "retry_after_s": round(retry_after_s, 3)},
        )
        self.limit = limit
        self.retry_after_s = retry_after_s


class BatchError(MoonShineError):
    """A batch failed. Partial results of the whole run are discarded."""

    def __init__(self, batch_index: int, cause: BaseException):
        super().__init__(
            detail=f"Batch {batch_index} failed: {cause}",
            error_code="BATCH_FAILED",
            recoverable=isinstance(cause, RateLimitExceeded),
            context={"batch_index": batch_index, "cause": type(cause).__name__},
        )
        self.batch_index = batch_index
        self.cause = cause


# =============================================================================
# WORKFLOW EXCEPTIONS
# =============================================================================


class WorkflowValidationError(MoonShineError):
    """Base class for errors detected while constructing a workflow."""

    def __init__(self, detail: str, error_code: str = "WORKFLOW_INVALID", **context: Any):
        super().__init__(detail=detail, error_code=error_code, context=context)


class DuplicateStepError(WorkflowValidationError):
    def __init__(self, step_id: str):
        super().__init__(
            f"Duplicate step id '{step_id}'",
            error_code="DUPLICATE_STEP",
            step_id=step_id,
        )
        self.step_id = step_id


class UnknownDependency(WorkflowValidationError):
    """A step depends on an id that is not part of the workflow."""

    def __init__(self, step_id: str, missing_dep: str):
        super().__init__(
            f"Step '{step_id}' depends on unknown step '{missing_dep}'",
            error_code="UNKNOWN_DEPENDENCY",
            step_id=step_id,
            missing_dep=missing_dep,
        )
        self.step_id = step_id
        self.missing_dep = missing_dep


class CyclicDependency(WorkflowValidationError):
    """The dependency relation contains a cycle."""

    def __init__(self, cycle_members: Sequence[str]):
        self.cycle_members = tuple(cycle_members)
        super().__init__(
            f"Dependency cycle: {' -> '.join(self.cycle_members)}",
            error_code="CYCLIC_DEPENDENCY",
            cycle_members=list(self.cycle_members),
        )


class InvalidConditionError(WorkflowValidationError):
    def __init__(self, step_id: str, reason: str):
        super().__init__(
            f"Step '{step_id}' has an invalid condition: {reason}",
            error_code="INVALID_CONDITION",
            step_id=step_id,
        )
        self.step_id = step_id


class StepExecutionError(MoonShineError):
    """Failure raised from inside a step action.

    ``retryable=False`` fails the step without consuming further attempts.
    """

    def __init__(self, step_id: str, detail: str, retryable: bool = True):
        super().__init__(
            detail=f"Step '{step_id}' failed: {detail}",
            error_code="STEP_FAILED",
            recoverable=retryable,
            context={"step_id": step_id},
        )
        self.step_id = step_id
        self.retryable = retryable


class UnknownFunctionError(MoonShineError):
    def __init__(self, function_name: str):
        super().__init__(
            detail=f"Unknown workflow function '{function_name}'",
            error_code="UNKNOWN_FUNCTION",
            context={"function_name": function_name},
        )
        self.function_name = function_name


class WorkflowAlreadyExecutedError(MoonShineError):
    def __init__(self) -> None:
        super().__init__(
            detail="Workflow engine has already executed; create a new engine per run",
            error_code="WORKFLOW_ALREADY_EXECUTED",
        )


# Errors that fail a step on the first attempt.
NON_RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    UnhandledVariantError,
    UnknownFunctionError,
    WorkflowValidationError,
    NoProviderAvailable,
)


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, StepExecutionError):
        return exc.retryable
    return not isinstance(exc, NON_RETRYABLE_ERRORS)


# =============================================================================
# RETRY CONFIGURATION
# =============================================================================


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """Configuration for retry behavior.

    ``max_attempts`` counts total attempts, including the first.
    """

    max_attempts: int = 3
    initial_delay_s: float = 0.1
    exponential_base: float = 2.0
    max_delay_s: float = 10.0
    jitter: bool = False
    jitter_factor: float = 0.25

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.initial_delay_s < 0 or self.max_delay_s < 0:
            raise ValueError("retry delays must be non-negative")


NO_RETRY = RetryConfig(max_attempts=1)


def compute_retry_delay(cfg: RetryConfig, attempt: int) -> float:
    """Compute the delay after failed ``attempt`` (1-based), with optional jitter."""
    delay = min(
        cfg.initial_delay_s * (cfg.exponential_base ** (attempt - 1)),
        cfg.max_delay_s,
    )
    if cfg.jitter:
        delay += delay * cfg.jitter_factor * random.random()
    return delay
