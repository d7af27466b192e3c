"""
Workflow Engine
================

Executes a validated set of workflow steps with dependency-aware
parallelism, per-attempt timeouts, bounded retries and criticality.

Execution model:
  - A step starts once every dependency has finished, in any terminal state
  - Its condition is evaluated at that point; false marks it ``skipped``
  - Ready steps start in plan order, at most ``max_parallel`` at a time
  - Each attempt runs under ``asyncio.wait_for(timeout_s)``; failures and
    timeouts retry with exponential backoff up to ``retry.max_attempts``
  - A critical step that exhausts its attempts aborts the run: nothing new
    starts, in-flight steps finish, unstarted steps are ``not_run``
  - A non-critical failure is recorded and its dependents still run

``success`` is true iff no critical step failed.

Usage:
    engine = WorkflowEngine(steps, source, "src/app.ts", config, ai_client=client)
    engine.execution_plan()          # ["session_setup", "analysis", ...]
    result = await engine.execute()
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import Sequence
from typing import Any

from moonshine.core.config import MoonShineConfig
from moonshine.core.exceptions import (
    UnhandledVariantError,
    WorkflowAlreadyExecutedError,
    compute_retry_delay,
    is_retryable,
)
from moonshine.core.types import ConditionOperator, StepStatus
from moonshine.infra.telemetry import get_logger, get_metrics, get_tracer, log_context
from moonshine.providers.client import AIClient
from moonshine.workflow.actions import FunctionRegistry, StepContext, default_registry, run_action
from moonshine.workflow.graph import execution_plan, validate_steps
from moonshine.workflow.models import (
    Always,
    ContextValue,
    OnFailure,
    OnSuccess,
    StepCondition,
    StepResult,
    WorkflowResult,
    WorkflowStats,
    WorkflowStep,
)

logger = get_logger(__name__)
tracer = get_tracer(__name__)

class WorkflowEngine:
    """
    Owns one workflow definition and the payload it runs against.

    Validation happens here, so an engine that constructs is always
    runnable. ``execute`` may be called once; build a new engine per run.
    """

    def __init__(
        self,
        steps: Sequence[WorkflowStep],
        source: str,
        file_path: str,
        config: MoonShineConfig,
        *,
        ai_client: AIClient | None = None,
        functions: FunctionRegistry | None = None,
        max_parallel: int = 4,
        initial_data: dict[str, Any] | None = None,
    ) -> None:
        if max_parallel < 1:
            raise ValueError("max_parallel must be at least 1")
        self._steps = tuple(steps)
        validate_steps(self._steps)
        self._plan = execution_plan(self._steps)
        self._by_id = {s.id: s for s in self._steps}

        self.source = source
        self.file_path = file_path
        self.config = config
        self._ai_client = ai_client
        self._functions = functions or default_registry()
        self._max_parallel = max_parallel
        self._initial_data = dict(initial_data or {})
        self._executed = False

    # ── Public API ───────────────────────────────────────────────────

    def execution_plan(self) -> list[str]:
        return list(self._plan)

    def describe(self) -> list[dict[str, Any]]:
        """Return a JSON-serializable description of the workflow."""
        return [
            {
                "id": s.id,
                "name": s.name,
                "depends_on": list(s.depends_on),
                "action": type(s.action).__name__,
                "condition": type(s.condition).__name__,
                "critical": s.critical,
                "timeout_s": s.timeout_s,
                "max_attempts": s.retry.max_attempts,
            }
            for s in (self._by_id[sid] for sid in self._plan)
        ]

    async def execute(self) -> WorkflowResult:
        if self._executed:
            raise WorkflowAlreadyExecutedError()
        self._executed = True

        run = _WorkflowRun(self)
        with log_context(run_id=run.run_id), tracer.span(
            "workflow.execute",
            attributes={"workflow.run_id": run.run_id, "workflow.steps": len(self._steps)},
        ) as span:
            result = await run.run()
            span.set_attribute("workflow.success", result.success)

        get_metrics().workflow_runs.labels(outcome="success" if result.success else "failure").inc()
        logger.info(
            "workflow_complete",
            run_id=run.run_id,
            success=result.success,
            completed=result.stats.completed,
            failed=result.stats.failed,
            skipped=result.stats.skipped,
            not_run=result.stats.not_run,
            total_retries=result.stats.total_retries,
            duration_ms=result.stats.duration_ms,
        )
        return result

# ── Execution Context ────────────────────────────────────────────────────────

class _WorkflowRun:
    """Mutable state of a single run. Not shared across runs."""

    def __init__(self, engine: WorkflowEngine):
        self.engine = engine
        self.run_id = f"wf-{uuid.uuid4().hex[:12]}"
        self.data: dict[str, Any] = dict(engine._initial_data)
        self.results: dict[str, StepResult] = {}
        self.pending: list[str] = list(engine._plan)
        self.running: dict[asyncio.Task, str] = {}
        self.failed_step: str | None = None
        self.error: str | None = None

    @property
    def aborted(self) -> bool:
        return self.failed_step is not None

    async def run(self) -> WorkflowResult:
        t0 = time.perf_counter()
        try:
            while True:
                if not self.aborted:
                    self._start_ready()
                if not self.running:
                    break
                done, _ = await asyncio.wait(list(self.running), return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    self._record(self.running.pop(task), task.result())
        finally:
            for task in self.running:
                task.cancel()

        for step_id in self.pending:
            step = self.engine._by_id[step_id]
            self.results[step_id] = StepResult(
                step_id=step_id, status=StepStatus.NOT_RUN, critical=step.critical
            )
            get_metrics().record_step(
                step_id=step_id, status=StepStatus.NOT_RUN, duration_s=0.0, retries=0
            )
        self.pending.clear()

        ordered = [self.results[sid] for sid in self.engine._plan]
        return WorkflowResult(
            success=not self.aborted,
            stats=WorkflowStats.from_results(ordered, (time.perf_counter() - t0) * 1000),
            step_results=tuple(ordered),
            final_context=dict(self.data),
            failed_step=self.failed_step,
            error=self.error,
        )

    def _start_ready(self) -> None:
        """Start (or skip) every step whose dependencies are finished, in plan order."""
        progressed = True
        while progressed:
            progressed = False
            for step_id in list(self.pending):
                if len(self.running) >= self.engine._max_parallel:
                    return
                step = self.engine._by_id[step_id]
                if not all(dep in self.results for dep in step.depends_on):
                    continue
                self.pending.remove(step_id)
                progressed = True
                if not self._condition_holds(step.condition):
                    logger.info("step_skipped", step_id=step_id, condition=type(step.condition).__name__)
                    self._record(step_id, StepResult(
                        step_id=step_id, status=StepStatus.SKIPPED, critical=step.critical
                    ))
                    continue
                task = asyncio.create_task(self._run_step(step), name=f"step-{step_id}")
                self.running[task] = step_id

    def _record(self, step_id: str, result: StepResult) -> None:
        self.results[step_id] = result
        get_metrics().record_step(
            step_id=step_id,
            status=result.status,
            duration_s=result.duration_ms / 1000,
            retries=result.retry_count,
        )
        if result.status != StepStatus.FAILED:
            return
        logger.error(
            "step_failed",
            step_id=step_id,
            error=result.error,
            critical=result.critical,
            attempts=result.attempts,
        )
        if result.critical and not self.aborted:
            self.failed_step = step_id
            self.error = result.error
            logger.warning("workflow_aborting", step_id=step_id, in_flight=len(self.running))

    # ── Conditions ───────────────────────────────────────────────────

    def _condition_holds(self, condition: StepCondition) -> bool:
        if isinstance(condition, Always):
            return True
        if isinstance(condition, OnSuccess):
            return self.results[condition.step_id].status == StepStatus.COMPLETED
        if isinstance(condition, OnFailure):
            return self.results[condition.step_id].status == StepStatus.FAILED
        if isinstance(condition, ContextValue):
            return evaluate_context_value(condition, self.data)
        raise UnhandledVariantError("StepCondition", type(condition).__name__)

    # ── Step Execution ───────────────────────────────────────────────

    async def _run_step(self, step: WorkflowStep) -> StepResult:
        t0 = time.perf_counter()
        last_error: str | None = None
        attempts = 0

        with log_context(step_id=step.id), tracer.span(
            "workflow.step",
            attributes={"step.id": step.id, "step.critical": step.critical},
        ) as span:
            for attempt in range(1, step.retry.max_attempts + 1):
                attempts = attempt
                ctx = StepContext(
                    step_id=step.id,
                    run_id=self.run_id,
                    source=self.engine.source,
                    file_path=self.engine.file_path,
                    config=self.engine.config,
                    data=self.data,
                    results=self.results,
                    ai_client=self.engine._ai_client,
                    functions=self.engine._functions,
                )
                try:
                    output = await asyncio.wait_for(
                        run_action(step.action, ctx), timeout=step.timeout_s
                    )
                except TimeoutError:
                    last_error = f"Timeout after {step.timeout_s}s"
                    logger.warning("step_timeout", step_id=step.id, attempt=attempt)
                except Exception as exc:  # step boundary
                    last_error = str(exc)
                    logger.warning(
                        "step_attempt_failed",
                        step_id=step.id,
                        attempt=attempt,
                        error=last_error,
                        error_type=type(exc).__name__,
                    )
                    if not is_retryable(exc):
                        break
                else:
                    latency = (time.perf_counter() - t0) * 1000
                    span.set_attribute("step.attempts", attempt)
                    logger.debug("step_completed", step_id=step.id, attempt=attempt, latency_ms=round(latency, 2))
                    return StepResult(
                        step_id=step.id,
                        status=StepStatus.COMPLETED,
                        output=output,
                        attempts=attempt,
                        duration_ms=round(latency, 2),
                        critical=step.critical,
                    )

                if attempt < step.retry.max_attempts:
                    await asyncio.sleep(compute_retry_delay(step.retry, attempt))

            span.set_attribute("step.attempts", attempts)
            return StepResult(
                step_id=step.id,
                status=StepStatus.FAILED,
                error=last_error,
                attempts=attempts,
                duration_ms=round((time.perf_counter() - t0) * 1000, 2),
                critical=step.critical,
            )

def evaluate_context_value(condition: ContextValue, data: dict[str, Any]) -> bool:
    """Compare ``data[condition.key]`` against ``condition.value``; missing keys are false."""
    op = condition.operator
    if op == ConditionOperator.EXISTS:
        return condition.key in data
    if condition.key not in data:
        return False
    actual = data[condition.key]
    expected = condition.value

    if op == ConditionOperator.EQUALS:
        return actual == expected
    if op == ConditionOperator.NOT_EQUALS:
        return actual != expected
    if op in (ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN):
        try:
            left, right = float(actual), float(expected)
        except (TypeError, ValueError):
            return False
        return left > right if op == ConditionOperator.GREATER_THAN else left < right
    if op == ConditionOperator.CONTAINS:
        try:
            return expected in actual
        except TypeError:
            return False
    raise UnhandledVariantError("ConditionOperator", str(op))
