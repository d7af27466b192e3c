"""
Step Actions
=============

Runs a single attempt of a step's action against the shared run state.

  CustomFunction     registered Python function, looked up by name
  ExecuteAIProvider  prompt rendered from shared data, sent through AIClient
                     (optionally in batches over a list in shared data)
  CreateSessionDir   per-run directory for agent request/response files
  WriteAgentRequest  ``<agent>-request.json`` in the session directory
  ReadAgentResponse  waits for ``<agent>-response.json``
  CleanupSession     removes session directories older than a cutoff

Actions write their outputs into ``StepContext.data``; downstream steps
and conditions read from there.
"""

from __future__ import annotations

import asyncio
import inspect
import json
import shutil
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from moonshine.core.config import MoonShineConfig
from moonshine.core.exceptions import (
    StepExecutionError,
    UnhandledVariantError,
    UnknownFunctionError,
)
from moonshine.core.types import (
    AIContext,
    AIRequest,
    AiLinting,
    CodeAnalysis,
    CodeFix,
    CodeGeneration,
    ContextKind,
    General,
)
from moonshine.infra.runtime.batcher import BatchProcessor
from moonshine.infra.telemetry import get_logger
from moonshine.providers.client import AIClient
from moonshine.workflow.models import (
    CleanupSession,
    CreateSessionDir,
    CustomFunction,
    ExecuteAIProvider,
    ReadAgentResponse,
    StepAction,
    StepResult,
    WriteAgentRequest,
)

logger = get_logger(__name__)

_LANGUAGES = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".json": "json",
    ".py": "python",
    ".rs": "rust",
}

def detect_language(file_path: str) -> str:
    return _LANGUAGES.get(Path(file_path).suffix.lower(), "unknown")

# ── Run State ────────────────────────────────────────────────────────────────

@dataclass
class StepContext:
    """Per-attempt view of the run. ``data`` and ``results`` are shared by all steps."""

    step_id: str
    run_id: str
    source: str
    file_path: str
    config: MoonShineConfig
    data: dict[str, Any]
    results: dict[str, StepResult]
    ai_client: AIClient | None = None
    functions: FunctionRegistry | None = None

    @property
    def language(self) -> str:
        return detect_language(self.file_path)

    def fail(self, detail: str, *, retryable: bool = False) -> StepExecutionError:
        return StepExecutionError(self.step_id, detail, retryable=retryable)

# ── Function Registry ────────────────────────────────────────────────────────

StepFunction = Callable[[StepContext, dict[str, str]], Any | Awaitable[Any]]

class FunctionRegistry:
    """Named functions callable from CustomFunction steps."""

    def __init__(self) -> None:
        self._functions: dict[str, StepFunction] = {}

    def register(self, name: str, fn: StepFunction | None = None) -> Any:
        """Register ``fn`` under ``name``; usable as a decorator when ``fn`` is omitted."""
        def decorator(func: StepFunction) -> StepFunction:
            self._functions[name] = func
            return func

        if fn is None:
            return decorator
        return decorator(fn)

    def get(self, name: str) -> StepFunction:
        try:
            return self._functions[name]
        except KeyError:
            raise UnknownFunctionError(name) from None

    def __contains__(self, name: object) -> bool:
        return name in self._functions

    def names(self) -> list[str]:
        return sorted(self._functions)

def _set_context(ctx: StepContext, params: dict[str, str]) -> dict[str, str]:
    ctx.data.update(params)
    return dict(params)

def _count_lines(ctx: StepContext, params: dict[str, str]) -> int:
    count = len(ctx.source.splitlines())
    ctx.data[params.get("key", "line_count")] = count
    return count

def _noop(ctx: StepContext, params: dict[str, str]) -> None:
    return None

def default_registry() -> FunctionRegistry:
    registry = FunctionRegistry()
    registry.register("set_context", _set_context)
    registry.register("count_lines", _count_lines)
    registry.register("noop", _noop)
    return registry

# ── Dispatch ─────────────────────────────────────────────────────────────────

async def run_action(action: StepAction, ctx: StepContext) -> Any:
    """Run one attempt of ``action``."""
    if isinstance(action, CustomFunction):
        return await _run_function(action, ctx)
    if isinstance(action, ExecuteAIProvider):
        return await _run_ai(action, ctx)
    if isinstance(action, CreateSessionDir):
        return _create_session_dir(action, ctx)
    if isinstance(action, WriteAgentRequest):
        return _write_agent_request(action, ctx)
    if isinstance(action, ReadAgentResponse):
        return await _read_agent_response(action, ctx)
    if isinstance(action, CleanupSession):
        return _cleanup_sessions(action, ctx)
    raise UnhandledVariantError("StepAction", type(action).__name__)

async def _run_function(action: CustomFunction, ctx: StepContext) -> Any:
    registry = ctx.functions or default_registry()
    fn = registry.get(action.function_name)
    params = dict(action.parameters)
    if inspect.iscoroutinefunction(fn):
        return await fn(ctx, params)
    # Blocking functions run off the loop so the step timeout applies
    result = await asyncio.to_thread(fn, ctx, params)
    if inspect.isawaitable(result):
        result = await result
    return result

# ── AI Provider ──────────────────────────────────────────────────────────────

def build_context(kind: ContextKind, language: str, content: str) -> AIContext:
    if kind == ContextKind.CODE_FIX:
        return CodeFix(language=language, content=content)
    if kind == ContextKind.CODE_GENERATION:
        return CodeGeneration(language=language, specification=content)
    if kind == ContextKind.CODE_ANALYSIS:
        return CodeAnalysis(language=language, content=content)
    if kind == ContextKind.AI_LINTING:
        return AiLinting(language=language, content=content)
    if kind == ContextKind.GENERAL:
        return General()
    raise UnhandledVariantError("ContextKind", str(kind))

def render_prompt(template: str, ctx: StepContext, **extra: Any) -> str:
    values = {
        **ctx.data,
        "source": ctx.source,
        "file_path": ctx.file_path,
        "language": ctx.language,
        **extra,
    }
    try:
        return template.format_map(values)
    except KeyError as exc:
        raise ctx.fail(f"prompt template references unknown field {exc}") from exc

async def _run_ai(action: ExecuteAIProvider, ctx: StepContext) -> Any:
    client = ctx.ai_client
    if client is None:
        raise ctx.fail("no AI client configured for this workflow")

    if action.batch_key is not None:
        return await _run_ai_batched(action, ctx, client)

    prompt = render_prompt(action.prompt_template, ctx)
    request = AIRequest(
        prompt=prompt,
        session_id=ctx.run_id,
        file_path=ctx.file_path or None,
        context=build_context(action.context_kind, ctx.language, ctx.source),
        preferred_providers=action.preferred_providers,
    )
    response = await client.execute(request)
    ctx.data[action.output_key] = response.content
    ctx.data["ai_provider_used"] = response.provider_used
    return response.content

async def _run_ai_batched(action: ExecuteAIProvider, ctx: StepContext, client: AIClient) -> list[Any]:
    items = ctx.data.get(action.batch_key)
    if not isinstance(items, list):
        raise ctx.fail(f"shared data '{action.batch_key}' must be a list to batch over")

    providers_used: list[str] = []

    async def process(batch: list[Any]) -> list[dict[str, Any]]:
        content = "\n".join(str(item) for item in batch)
        request = AIRequest(
            prompt=render_prompt(action.prompt_template, ctx, batch=content),
            session_id=ctx.run_id,
            file_path=ctx.file_path or None,
            context=build_context(action.context_kind, ctx.language, content),
            preferred_providers=action.preferred_providers,
        )
        response = await client.dispatch(request)
        providers_used.append(response.provider_used)
        return [{"items": batch, "response": response.content}]

    results = await BatchProcessor(client.config, client.rate_limiter).run(items, process)
    ctx.data[action.output_key] = results
    if providers_used:
        ctx.data["ai_provider_used"] = providers_used[-1]
    return results

# ── Agent Sessions ───────────────────────────────────────────────────────────

def _session_dir(ctx: StepContext) -> Path:
    path = ctx.data.get("session_dir")
    if not path:
        raise ctx.fail("no session directory; run a CreateSessionDir step first")
    return Path(path)

def _create_session_dir(action: CreateSessionDir, ctx: StepContext) -> str:
    path = Path(action.base_path) / f"{action.session_prefix}-{ctx.run_id}"
    path.mkdir(parents=True, exist_ok=True)
    ctx.data["session_dir"] = str(path)
    logger.debug("session_dir_created", path=str(path))
    return str(path)

def _write_agent_request(action: WriteAgentRequest, ctx: StepContext) -> str:
    target = _session_dir(ctx) / f"{action.agent_type}-request.json"
    payload = {
        "agent_type": action.agent_type,
        "session_id": ctx.run_id,
        "file_path": ctx.file_path,
        "language": ctx.language,
        "source": ctx.source,
        "request_data": action.request_data,
        "created_at": datetime.now(UTC).isoformat(),
    }
    target.write_text(json.dumps(payload, indent=2, default=str), encoding="utf-8")
    ctx.data[f"{action.agent_type}_request_path"] = str(target)
    return str(target)

async def _read_agent_response(action: ReadAgentResponse, ctx: StepContext) -> Any:
    target = _session_dir(ctx) / f"{action.agent_type}-response.json"
    deadline = time.monotonic() + action.timeout_ms / 1000
    while not target.exists():
        if time.monotonic() >= deadline:
            raise ctx.fail(
                f"no {action.agent_type} response after {action.timeout_ms}ms",
                retryable=True,
            )
        await asyncio.sleep(0.05)
    try:
        response = json.loads(target.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ctx.fail(f"malformed {action.agent_type} response: {exc}", retryable=True) from exc
    ctx.data[f"{action.agent_type}_response"] = response
    return response

def _cleanup_sessions(action: CleanupSession, ctx: StepContext) -> int:
    base = Path(ctx.data["session_dir"]).parent if ctx.data.get("session_dir") else Path(
        ctx.config.session_base_path
    )
    if not base.is_dir():
        return 0
    cutoff = time.time() - action.max_age_hours * 3600
    removed = 0
    for entry in base.iterdir():
        if entry.is_dir() and entry.stat().st_mtime < cutoff:
            shutil.rmtree(entry, ignore_errors=True)
            removed += 1
    if removed:
        logger.info("sessions_cleaned", base=str(base), removed=removed)
    return removed
