"""Tests for infrastructure/telemetry.py: no-op shim and real OTEL integration.

Tests that exercise real OTEL spans use InMemorySpanExporter so no OTLP
endpoint is required.  The module's _tracer global is reset between tests
via reset_for_testing().
"""
from __future__ import annotations

import asyncio

import pytest

from agentic_coder.application.task import Task
from agentic_coder.config import CoderConfig
from agentic_coder.config.schema import ModelConfig, TelemetryConfig
from agentic_coder.infrastructure import telemetry as tel_mod
from agentic_coder.infrastructure.telemetry import (
    _NOOP_TRACER,
    _NoOpSpan,
    _NoOpTracer,
    get_tracer,
    reset_for_testing,
    setup_telemetry,
)

from conftest import AutoResponder, ScriptedApi, completion


def _minimal_config(telemetry: TelemetryConfig | None = None) -> CoderConfig:
    return CoderConfig(
        model=ModelConfig(base_url="http://localhost:11434/v1", model="test"),
        telemetry=telemetry,
    )


@pytest.fixture(autouse=True)
def _reset_tracer():
    reset_for_testing()
    yield
    reset_for_testing()


# ---------------------------------------------------------------------------
# No-op shim
# ---------------------------------------------------------------------------

def test_noop_span_swallows_attributes_and_exceptions():
    span = _NoOpSpan()
    span.set_attribute("key", "value")
    span.record_exception(RuntimeError("boom"))
    with span as s:
        assert s is span


def test_noop_tracer_returns_noop_span():
    with _NoOpTracer().start_as_current_span("test") as span:
        assert isinstance(span, _NoOpSpan)


@pytest.mark.parametrize("settings", [None, TelemetryConfig(enabled=False)])
def test_get_tracer_is_noop_when_disabled(settings):
    setup_telemetry(_minimal_config(telemetry=settings))
    assert get_tracer() is _NOOP_TRACER


def test_setup_telemetry_is_idempotent():
    config = _minimal_config()
    setup_telemetry(config)
    setup_telemetry(config)
    assert get_tracer() is _NOOP_TRACER


def test_telemetry_config_defaults():
    cfg = TelemetryConfig()
    assert cfg.enabled is False
    assert cfg.service_name == "agentic-coder"
    assert cfg.exporter == "none"
    assert cfg.otlp_endpoint == ""
    assert _minimal_config().telemetry is None


# ---------------------------------------------------------------------------
# Real OTEL with InMemorySpanExporter (requires opentelemetry-sdk)
# ---------------------------------------------------------------------------

try:
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import SimpleSpanProcessor
    from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
    _OTEL_AVAILABLE = True
except ImportError:
    _OTEL_AVAILABLE = False

otel_only = pytest.mark.skipif(not _OTEL_AVAILABLE, reason="opentelemetry-sdk not installed")


def _in_memory_tracer() -> "InMemorySpanExporter":
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    # a local provider avoids fighting over the global one
    tel_mod._tracer = provider.get_tracer("test")
    return exporter


@otel_only
def test_setup_telemetry_console_exporter_installs_real_tracer():
    setup_telemetry(_minimal_config(
        telemetry=TelemetryConfig(enabled=True, exporter="console", service_name="test-svc"),
    ))
    assert get_tracer() is not _NOOP_TRACER


@otel_only
@pytest.mark.asyncio
async def test_task_emits_request_and_tool_spans(make_services):
    exporter = _in_memory_tracer()
    task = Task(make_services(ScriptedApi([completion("All done")])))
    responder = AutoResponder(lambda: [task]).start()
    try:
        await asyncio.wait_for(task.start_task("Finish up"), 5)
    finally:
        await responder.stop()

    spans = exporter.get_finished_spans()
    requests = [s for s in spans if s.name == "coder.api_request"]
    assert len(requests) == 1
    assert requests[0].attributes["task.id"] == task.task_id

    tools = [s for s in spans if s.name == "coder.tool" and not s.attributes["tool.partial"]]
    assert [s.attributes["tool.name"] for s in tools] == ["attempt_completion"]
    assert tools[0].attributes["tool.rejected"] is False
