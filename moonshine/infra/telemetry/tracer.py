"""
Tracing — OpenTelemetry Integration
=====================================

Span-based tracing for provider calls, batches and workflow steps.
Spans go to whatever TracerProvider is installed; without
``configure_tracing`` the OpenTelemetry API default (non-recording)
provider is used, so instrumentation is always safe to leave in place.

Usage:
    tracer = get_tracer(__name__)

    with tracer.span("workflow.step", attributes={"step.id": "analysis"}) as span:
        result = await run_step()
        span.set_attribute("step.attempts", result.attempts)
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace as otel_trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import Span, Status, StatusCode

from moonshine.infra.telemetry.logger import get_logger

logger = get_logger(__name__)

_SPAN_KINDS = {
    "internal": otel_trace.SpanKind.INTERNAL,
    "client": otel_trace.SpanKind.CLIENT,
    "producer": otel_trace.SpanKind.PRODUCER,
    "consumer": otel_trace.SpanKind.CONSUMER,
}

class Tracer:
    """Thin wrapper over an OpenTelemetry tracer with error recording."""

    def __init__(self, name: str):
        self._name = name
        self._tracer = otel_trace.get_tracer(name)

    @contextmanager
    def span(
        self,
        name: str,
        *,
        attributes: dict[str, Any] | None = None,
        kind: str = "internal",
    ) -> Generator[Span, None, None]:
        """
        Create a span as the current span.

        Args:
            name: Span name (e.g. "provider.invoke", "batch.run")
            attributes: Initial span attributes; None values are dropped
            kind: "internal", "client", "producer" or "consumer"
        """
        attrs = {k: v for k, v in (attributes or {}).items() if v is not None}
        with self._tracer.start_as_current_span(
            name,
            kind=_SPAN_KINDS.get(kind, otel_trace.SpanKind.INTERNAL),
            attributes=attrs,
            record_exception=False,
            set_status_on_exception=False,
        ) as span:
            try:
                yield span
            except Exception as exc:
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                raise

    def current_span(self) -> Span:
        return otel_trace.get_current_span()

# ── Registry ───────────────────────────────────────────────────────

_tracers: dict[str, Tracer] = {}

def configure_tracing(
    *,
    service_name: str = "moonshine",
    console: bool = False,
    exporter: SpanExporter | None = None,
) -> TracerProvider:
    """
    Install an SDK TracerProvider. Call once at process startup.

    Args:
        service_name: ``service.name`` resource attribute
        console: Export spans to stdout in batches
        exporter: Additional exporter, attached with a synchronous processor
    """
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    if console:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    if exporter is not None:
        provider.add_span_processor(SimpleSpanProcessor(exporter))
    otel_trace.set_tracer_provider(provider)
    _tracers.clear()
    logger.info("tracing_initialized", service=service_name, console=console)
    return provider

def get_tracer(name: str) -> Tracer:
    """Get or create a tracer for the given module."""
    if name not in _tracers:
        _tracers[name] = Tracer(name)
    return _tracers[name]
