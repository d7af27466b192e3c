"""
Telemetry — Unit Tests
=======================

Structured log records, context propagation, span error recording and
Prometheus export.
"""

import asyncio
import io
import json
import logging

import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode
from prometheus_client import CollectorRegistry

from moonshine.core.types import StepStatus
from moonshine.infra.telemetry import configure_tracing, get_logger, get_tracer, log_context
from moonshine.infra.telemetry.logger import StructuredFormatter, current_context
from moonshine.infra.telemetry.metrics import MetricsCollector, PercentileTracker


@pytest.fixture
def captured():
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter(json_output=True))
    target = logging.getLogger("moonshine.tests.telemetry")
    target.addHandler(handler)
    target.setLevel(logging.DEBUG)
    target.propagate = False
    yield stream
    target.removeHandler(handler)


def _records(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


class TestStructuredLogger:

    def test_event_and_fields(self, captured):
        get_logger("moonshine.tests.telemetry").info("provider_selected", provider="claude", score=0.9)
        (entry,) = _records(captured)
        assert entry["event"] == "provider_selected"
        assert entry["level"] == "INFO"
        assert entry["data"] == {"provider": "claude", "score": 0.9}

    def test_context_injected(self, captured):
        logger = get_logger("moonshine.tests.telemetry")
        with log_context(run_id="wf-1", step_id="lint"):
            logger.warning("step_retry", attempt=2)
        logger.info("after")

        first, second = _records(captured)
        assert first["context"] == {"run_id": "wf-1", "step_id": "lint"}
        assert "context" not in second

    def test_bound_fields_merge(self, captured):
        logger = get_logger("moonshine.tests.telemetry").bind(provider="google")
        logger.error("invoke_failed", exit_code=2)
        (entry,) = _records(captured)
        assert entry["data"] == {"provider": "google", "exit_code": 2}

    def test_exception_details(self, captured):
        logger = get_logger("moonshine.tests.telemetry")
        try:
            raise ValueError("bad output")
        except ValueError as exc:
            logger.error("parse_failed", exc=exc)
        (entry,) = _records(captured)
        assert entry["exception"]["type"] == "ValueError"
        assert entry["exception"]["message"] == "bad output"

    def test_unknown_context_field(self):
        with pytest.raises(KeyError):
            with log_context(tenant="x"):
                pass

    @pytest.mark.asyncio
    async def test_context_isolated_between_tasks(self):
        async def worker(step_id):
            with log_context(step_id=step_id):
                await asyncio.sleep(0.01)
                return current_context()["step_id"]

        assert await asyncio.gather(worker("a"), worker("b")) == ["a", "b"]

    def test_setup_logging_installs_formatter(self, monkeypatch):
        from moonshine.infra.telemetry import logger as logger_module

        root = logging.getLogger()
        monkeypatch.setattr(logger_module, "_initialized", False)
        monkeypatch.setattr(root, "handlers", list(root.handlers))
        monkeypatch.setattr(root, "level", root.level)

        logger_module.setup_logging(level="debug", json_output=True)

        assert root.level == logging.DEBUG
        (handler,) = root.handlers
        assert isinstance(handler.formatter, StructuredFormatter)


class TestTracer:

    def test_span_records_errors(self):
        exporter = InMemorySpanExporter()
        configure_tracing(service_name="moonshine-tests", exporter=exporter)
        tracer = get_tracer("moonshine.tests")

        with tracer.span("batch.run", attributes={"batch.size": 5, "skipped": None}):
            pass
        with pytest.raises(RuntimeError):
            with tracer.span("provider.invoke", kind="client"):
                raise RuntimeError("cli crashed")

        ok, failed = exporter.get_finished_spans()
        assert ok.name == "batch.run"
        assert dict(ok.attributes) == {"batch.size": 5}
        assert failed.status.status_code == StatusCode.ERROR
        assert failed.events[0].name == "exception"


class TestMetrics:

    def test_export_contains_recorded_series(self):
        metrics = MetricsCollector(CollectorRegistry())
        metrics.record_selection(provider="claude", context_kind="code_fix", preferred=False)
        metrics.record_admission(False)
        metrics.record_step(step_id="lint", status=StepStatus.COMPLETED, duration_s=0.2, retries=1)

        sample = metrics.registry.get_sample_value
        assert sample(
            "moonshine_router_selections_total",
            {"provider": "claude", "context_kind": "code_fix", "via": "ranked"},
        ) == 1.0

        text = metrics.export().decode()
        assert "moonshine_rate_limit_rejected_total 1.0" in text
        assert 'moonshine_workflow_steps_total{status="completed"} 1.0' in text
        assert "moonshine_workflow_step_retries_total 1.0" in text

    def test_collectors_do_not_share_state(self):
        first = MetricsCollector()
        second = MetricsCollector()
        first.record_admission(True)
        assert "moonshine_rate_limit_admitted_total 0.0" in second.export().decode()

    def test_step_percentiles(self):
        metrics = MetricsCollector()
        for ms in range(1, 101):
            metrics.record_step(step_id="fix", status="completed", duration_s=ms / 1000, retries=0)
        summary = metrics.get_step_percentiles("fix")
        assert summary["count"] == 100
        assert summary["p50"] == pytest.approx(0.051)

    def test_unknown_step_lookup_has_no_side_effect(self):
        metrics = MetricsCollector()
        assert metrics.get_step_percentiles("never-ran") == {"p50": 0.0, "p95": 0.0, "count": 0}
        assert metrics.get_summary() == {"steps": {}}

    def test_empty_tracker(self):
        assert PercentileTracker().percentile(95) == 0.0
