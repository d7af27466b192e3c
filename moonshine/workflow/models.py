"""
Workflow Data Model
====================

Immutable step declarations and the results produced by running them.

A WorkflowStep names its dependencies, the action it runs, the condition
under which it runs, how it retries, how long each attempt may take and
whether its failure aborts the whole workflow (``critical``).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from moonshine.core.exceptions import RetryConfig
from moonshine.core.types import ConditionOperator, ContextKind, StepStatus

# ── Step Actions ─────────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class CustomFunction:
    """Call a registered function by name."""

    function_name: str
    parameters: dict[str, str] = field(default_factory=dict)

@dataclass(frozen=True, slots=True)
class ExecuteAIProvider:
    """
    Send a prompt to the routed AI provider.

    Attributes:
        prompt_template:      str.format template over source, file_path, language
                              and the shared workflow data
        context_kind:         AIContext variant built for the request
        preferred_providers:  Caller preference passed to the router
        batch_key:            Shared-data key holding a list of items; when set
                              the items are processed in batches
        output_key:           Shared-data key receiving the response text
    """

    prompt_template: str
    context_kind: ContextKind = ContextKind.CODE_ANALYSIS
    preferred_providers: tuple[str, ...] = ()
    batch_key: str | None = None
    output_key: str = "ai_response"

@dataclass(frozen=True, slots=True)
class CreateSessionDir:
    base_path: str
    session_prefix: str = "moonshine"

@dataclass(frozen=True, slots=True)
class WriteAgentRequest:
    agent_type: str
    request_data: dict[str, Any] = field(default_factory=dict)

@dataclass(frozen=True, slots=True)
class ReadAgentResponse:
    agent_type: str
    timeout_ms: int = 30_000

@dataclass(frozen=True, slots=True)
class CleanupSession:
    max_age_hours: int = 24

StepAction = (
    CustomFunction
    | ExecuteAIProvider
    | CreateSessionDir
    | WriteAgentRequest
    | ReadAgentResponse
    | CleanupSession
)

# ── Step Conditions ──────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class Always:
    pass

@dataclass(frozen=True, slots=True)
class OnSuccess:
    """Run only if ``step_id`` completed."""

    step_id: str

@dataclass(frozen=True, slots=True)
class OnFailure:
    """Run only if ``step_id`` failed."""

    step_id: str

@dataclass(frozen=True, slots=True)
class ContextValue:
    """Compare a shared-data value. ``value`` is ignored for EXISTS."""

    key: str
    operator: ConditionOperator
    value: Any = None

StepCondition = Always | OnSuccess | OnFailure | ContextValue

ALWAYS = Always()

# ── Step Definition ──────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class WorkflowStep:
    """
    Declares a single workflow step.

    Attributes:
        id:           Unique step id (used for dependency resolution)
        name:         Human-readable name
        description:  Free text
        depends_on:   Ids of steps that must finish before this one starts
        action:       What the step does
        condition:    Predicate evaluated once dependencies finish
        retry:        Total attempts and backoff between them. Configuration
                      errors (unknown function, invalid variant, no eligible
                      provider) and StepExecutionError(retryable=False)
                      stop after one attempt
        timeout_s:    Per-attempt timeout
        critical:     If True, exhausting retries aborts the workflow
    """

    id: str
    action: StepAction
    name: str = ""
    description: str = ""
    depends_on: tuple[str, ...] = ()
    condition: StepCondition = ALWAYS
    retry: RetryConfig = field(default_factory=RetryConfig)
    timeout_s: float = 30.0
    critical: bool = True

    def __post_init__(self) -> None:
        if not self.id:
            raise ValueError("step id must be non-empty")
        if self.timeout_s <= 0:
            raise ValueError(f"step '{self.id}': timeout_s must be positive")
        # Accept lists from callers; keep the record hashable.
        object.__setattr__(self, "depends_on", tuple(self.depends_on))
        if not self.name:
            object.__setattr__(self, "name", self.id)

# ── Results ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class StepResult:
    step_id: str
    status: StepStatus
    output: Any = None
    error: str | None = None
    attempts: int = 0
    duration_ms: float = 0.0
    critical: bool = True

    @property
    def retry_count(self) -> int:
        return max(0, self.attempts - 1)

@dataclass(frozen=True, slots=True)
class WorkflowStats:
    total: int = 0
    completed: int = 0
    failed: int = 0
    skipped: int = 0
    not_run: int = 0
    retried: int = 0  # Steps that needed more than one attempt
    total_retries: int = 0
    duration_ms: float = 0.0

    @classmethod
    def from_results(cls, results: list[StepResult], duration_ms: float) -> WorkflowStats:
        counts = {status: 0 for status in StepStatus}
        for r in results:
            counts[r.status] += 1
        return cls(
            total=len(results),
            completed=counts[StepStatus.COMPLETED],
            failed=counts[StepStatus.FAILED],
            skipped=counts[StepStatus.SKIPPED],
            not_run=counts[StepStatus.NOT_RUN],
            retried=sum(1 for r in results if r.attempts > 1),
            total_retries=sum(r.retry_count for r in results),
            duration_ms=round(duration_ms, 2),
        )

@dataclass(frozen=True, slots=True)
class WorkflowResult:
    """Final aggregated result of a workflow run."""

    success: bool
    stats: WorkflowStats
    step_results: tuple[StepResult, ...]
    final_context: dict[str, Any] = field(default_factory=dict)
    failed_step: str | None = None
    error: str | None = None

    def result_for(self, step_id: str) -> StepResult:
        for r in self.step_results:
            if r.step_id == step_id:
                return r
        raise KeyError(step_id)
