"""
Canonical Type Definitions
===========================

Shared enums and request context variants used across the codebase.
All modules should import these from here.

This module defines:
- ContextKind: the kind of work an AI request carries
- StepStatus: terminal state of a workflow step
- ConditionOperator: comparison used by context-value step conditions
- AIContext variants: CodeFix, CodeGeneration, CodeAnalysis, AiLinting, General
- AIRequest / AIResponse: a routed unit of AI work and its outcome
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from moonshine.core.exceptions import UnhandledVariantError

__all__ = [
    "AIContext",
    "AIRequest",
    "AIResponse",
    "AiLinting",
    "CodeAnalysis",
    "CodeFix",
    "CodeGeneration",
    "ConditionOperator",
    "ContextKind",
    "General",
    "StepStatus",
    "context_kind",
]

class ContextKind(StrEnum):
    """Kind of work carried by an AI request.

    Drives requirement inference and therefore provider selection.
    """

    CODE_FIX = "code_fix"
    CODE_GENERATION = "code_generation"
    CODE_ANALYSIS = "code_analysis"
    AI_LINTING = "ai_linting"
    GENERAL = "general"

class StepStatus(StrEnum):
    """Terminal state of a workflow step."""

    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"  # Condition evaluated false
    NOT_RUN = "not_run"  # Never started because a critical step aborted the run

class ConditionOperator(StrEnum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    CONTAINS = "contains"
    EXISTS = "exists"

# ── AI Context Variants ──────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class CodeFix:
    language: str
    content: str

    @property
    def kind(self) -> ContextKind:
        return ContextKind.CODE_FIX

    def payload_text(self) -> str:
        return self.content

@dataclass(frozen=True, slots=True)
class CodeGeneration:
    language: str
    specification: str

    @property
    def kind(self) -> ContextKind:
        return ContextKind.CODE_GENERATION

    def payload_text(self) -> str:
        return self.specification

@dataclass(frozen=True, slots=True)
class CodeAnalysis:
    language: str
    content: str

    @property
    def kind(self) -> ContextKind:
        return ContextKind.CODE_ANALYSIS

    def payload_text(self) -> str:
        return self.content

@dataclass(frozen=True, slots=True)
class AiLinting:
    """Lint pass over source that already carries static-analysis findings."""

    language: str
    content: str
    static_issues: tuple[str, ...] = ()
    analysis_focus: tuple[str, ...] = field(default=("quality",))

    @property
    def kind(self) -> ContextKind:
        return ContextKind.AI_LINTING

    def payload_text(self) -> str:
        if not self.static_issues:
            return self.content
        return self.content + "\n" + "\n".join(self.static_issues)

@dataclass(frozen=True, slots=True)
class General:
    @property
    def kind(self) -> ContextKind:
        return ContextKind.GENERAL

    def payload_text(self) -> str:
        return ""

AIContext = CodeFix | CodeGeneration | CodeAnalysis | AiLinting | General

_VARIANTS = (CodeFix, CodeGeneration, CodeAnalysis, AiLinting, General)

def context_kind(context: object) -> ContextKind:
    """Return the kind of a context variant; reject anything else."""
    if isinstance(context, _VARIANTS):
        return context.kind
    raise UnhandledVariantError("AIContext", type(context).__name__)

# ── Requests ─────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class AIRequest:
    """One unit of AI work, routed to a single provider."""

    prompt: str
    session_id: str
    context: AIContext
    file_path: str | None = None
    preferred_providers: tuple[str, ...] = ()

@dataclass(frozen=True, slots=True)
class AIResponse:
    provider_used: str
    content: str
    session_id: str
    success: bool = True
    execution_time_ms: float = 0.0
    routing_reason: str = ""
    attempted_providers: tuple[str, ...] = ()
