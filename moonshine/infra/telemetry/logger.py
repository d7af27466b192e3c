"""
Structured Logger
==================

Structured logging for the orchestration core: every record is an event
name plus keyword fields, enriched with the current workflow run, step
and AI session taken from context variables.

Design:
  - JSON output for machine parsing, human-readable output for development
  - Context injection (run_id, step_id, session_id) across asyncio tasks
  - Lazy: fields are only rendered when the level is enabled

Usage:
    logger = get_logger(__name__)
    logger.info("provider_selected", provider="claude", score=0.87)
    with log_context(run_id="wf-1234"):
        logger.warning("step_retry", step_id="analysis", attempt=2)
"""

from __future__ import annotations

import json
import logging
import os
import sys
import traceback
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

# ── Context Variables ──────────────────────────────────────────────

_run_id: ContextVar[str | None] = ContextVar("run_id", default=None)
_step_id: ContextVar[str | None] = ContextVar("step_id", default=None)
_session_id: ContextVar[str | None] = ContextVar("session_id", default=None)

_CONTEXT_VARS: dict[str, ContextVar[str | None]] = {
    "run_id": _run_id,
    "step_id": _step_id,
    "session_id": _session_id,
}

@contextmanager
def log_context(**values: str | None) -> Generator[None, None, None]:
    """Bind run/step/session ids for the duration of the block."""
    tokens = []
    for key, value in values.items():
        var = _CONTEXT_VARS.get(key)
        if var is None:
            raise KeyError(f"unknown log context field '{key}'")
        tokens.append((var, var.set(value)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)

def current_context() -> dict[str, str]:
    return {k: v for k, var in _CONTEXT_VARS.items() if (v := var.get()) is not None}

# ── Structured Formatter ──────────────────────────────────────────

_RESERVED = frozenset({
    "name", "msg", "args", "created", "relativeCreated",
    "exc_info", "exc_text", "stack_info", "lineno", "funcName",
    "pathname", "filename", "module", "levelno", "levelname",
    "thread", "threadName", "process", "processName", "msecs",
    "taskName", "message",
})

_JSON_SAFE = (str, int, float, bool, type(None))

class StructuredFormatter(logging.Formatter):
    """Log formatter emitting JSON (or a compact human line) with context fields."""

    def __init__(self, *, json_output: bool = True, include_traceback: bool = True):
        super().__init__()
        self._json = json_output
        self._include_tb = include_traceback
        self._pid = os.getpid()

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
            "line": record.lineno,
            "pid": self._pid,
        }

        ctx = current_context()
        if ctx:
            entry["context"] = ctx

        extras: dict[str, Any] = {}
        for key, val in record.__dict__.items():
            if key.startswith("_") or key in _RESERVED:
                continue
            extras[key] = val if isinstance(val, _JSON_SAFE) else str(val)
        if extras:
            entry["data"] = extras

        if record.exc_info and self._include_tb:
            exc_type, exc_val, exc_tb = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_val) if exc_val else None,
                "traceback": traceback.format_exception(*record.exc_info) if exc_tb else None,
            }

        if self._json:
            return json.dumps(entry, default=str, ensure_ascii=False)

        run = ctx.get("run_id", "-")[:12]
        fields = " ".join(f"{k}={v}" for k, v in extras.items())
        line = (
            f"{entry['timestamp']} | {entry['level']:8s} | {run} | "
            f"{entry['logger']}:{entry['line']} | {entry['event']}"
        )
        return f"{line} {fields}" if fields else line

# ── Structured Logger ─────────────────────────────────────────────

class StructuredLogger:
    """
    Wrapper around stdlib logger providing structured logging helpers.

    Usage:
        log = StructuredLogger("moonshine.providers.router")
        log.info("provider_selected", provider="claude", candidates=3)
    """

    __slots__ = ("_logger", "_name")

    def __init__(self, name: str):
        self._name = name
        self._logger = logging.getLogger(name)

    @property
    def name(self) -> str:
        return self._name

    def _log(self, level: int, event: str, **kwargs: Any) -> None:
        if not self._logger.isEnabledFor(level):
            return
        self._logger.log(level, event, extra=kwargs, stacklevel=3)

    def debug(self, event: str, **kwargs: Any) -> None:
        self._log(logging.DEBUG, event, **kwargs)

    def info(self, event: str, **kwargs: Any) -> None:
        self._log(logging.INFO, event, **kwargs)

    def warning(self, event: str, **kwargs: Any) -> None:
        self._log(logging.WARNING, event, **kwargs)

    def error(self, event: str, exc: BaseException | None = None, **kwargs: Any) -> None:
        if exc:
            self._logger.error(event, extra=kwargs, exc_info=exc, stacklevel=2)
        else:
            self._log(logging.ERROR, event, **kwargs)

    def bind(self, **context: Any) -> BoundLogger:
        """Create a child logger with bound context fields."""
        return BoundLogger(self, context)

class BoundLogger:
    """Logger with pre-bound context fields."""

    __slots__ = ("_context", "_parent")

    def __init__(self, parent: StructuredLogger, context: dict[str, Any]):
        self._parent = parent
        self._context = context

    def _merged(self, kwargs: dict[str, Any]) -> dict[str, Any]:
        return {**self._context, **kwargs}

    def debug(self, event: str, **kwargs: Any) -> None:
        self._parent.debug(event, **self._merged(kwargs))

    def info(self, event: str, **kwargs: Any) -> None:
        self._parent.info(event, **self._merged(kwargs))

    def warning(self, event: str, **kwargs: Any) -> None:
        self._parent.warning(event, **self._merged(kwargs))

    def error(self, event: str, exc: BaseException | None = None, **kwargs: Any) -> None:
        self._parent.error(event, exc=exc, **self._merged(kwargs))

# ── Setup ──────────────────────────────────────────────────────────

_initialized = False

def setup_logging(*, level: str = "INFO", json_output: bool | None = None) -> None:
    """
    Initialize logging. Call once at process startup.

    Args:
        level: Root log level
        json_output: Force JSON output. Auto-detects if None (JSON unless
            MOONSHINE_ENV is "development")
    """
    global _initialized
    if _initialized:
        return
    _initialized = True

    if json_output is None:
        json_output = os.getenv("MOONSHINE_ENV", "development") != "development"

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    # stderr keeps stdout free for tool output
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(StructuredFormatter(json_output=json_output))
    root.addHandler(console)

    for noisy in ("asyncio", "opentelemetry"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

def get_logger(name: str) -> StructuredLogger:
    """Get a structured logger instance."""
    return StructuredLogger(name)
