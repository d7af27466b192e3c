"""
Telemetry Layer — Unified Observability
========================================

Provides:
  - Structured logging with run/step/session context
  - Tracing (OpenTelemetry)
  - Metrics collection (Prometheus)

Usage:
    from moonshine.infra.telemetry import get_logger, get_metrics, get_tracer

    logger = get_logger(__name__)
    tracer = get_tracer(__name__)
    with tracer.span("batch.run") as span:
        span.set_attribute("batch.size", 5)
        logger.info("batch_complete", batch_index=0)
"""

from moonshine.infra.telemetry.logger import (
    StructuredLogger,
    get_logger,
    log_context,
    setup_logging,
)
from moonshine.infra.telemetry.metrics import MetricsCollector, get_metrics
from moonshine.infra.telemetry.tracer import Tracer, configure_tracing, get_tracer

__all__ = [
    "MetricsCollector",
    "StructuredLogger",
    "Tracer",
    "configure_tracing",
    "get_logger",
    "get_metrics",
    "get_tracer",
    "log_context",
    "setup_logging",
]
