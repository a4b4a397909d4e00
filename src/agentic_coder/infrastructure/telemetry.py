"""Optional OpenTelemetry tracing for agentic-coder.

The engine opens a span around every LLM request (``coder.api_request``) and
every tool dispatch (``coder.tool``).  With the ``otel`` extra installed and
``telemetry.enabled`` set, those spans go to the configured exporter; otherwise
:func:`get_tracer` hands out a tracer whose spans do nothing, so callers never
check whether tracing is on.

Configuration (``CoderConfig.telemetry``)::

    "telemetry": {"enabled": true, "exporter": "console", "service_name": "agentic-coder"}
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from agentic_coder.config import CoderConfig

logger = logging.getLogger(__name__)


class _NoOpSpan:
    def set_attribute(self, key: str, value: Any) -> None:  # noqa: ARG002
        pass

    def record_exception(self, exc: BaseException) -> None:  # noqa: ARG002
        pass

    def __enter__(self) -> "_NoOpSpan":
        return self

    def __exit__(self, *args: Any) -> None:
        pass


class _NoOpTracer:
    def start_as_current_span(self, name: str, **kwargs: Any) -> _NoOpSpan:  # noqa: ARG002
        return _NoOpSpan()


_NOOP_TRACER = _NoOpTracer()
_tracer: Any = None

try:
    import opentelemetry  # noqa: F401
    _otel_available = True
except ImportError:
    _otel_available = False


def setup_telemetry(config: "CoderConfig") -> None:
    """Install a tracer provider for ``config.telemetry``. Idempotent."""
    global _tracer  # noqa: PLW0603

    if _tracer is not None:
        return
    settings = config.telemetry
    if settings is None or not settings.enabled:
        logger.debug("Telemetry disabled; spans are no-ops")
        return
    if not _otel_available:
        logger.warning(
            "telemetry.enabled is set but opentelemetry-sdk is not installed. "
            "Install with: pip install 'agentic-coder[otel]'"
        )
        return

    from opentelemetry import trace
    from opentelemetry.sdk.resources import SERVICE_NAME, Resource
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import BatchSpanProcessor

    provider = TracerProvider(resource=Resource(attributes={SERVICE_NAME: settings.service_name}))
    if settings.exporter == "console":
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter

        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))
    elif settings.exporter == "otlp":
        if not settings.otlp_endpoint:
            logger.warning("telemetry.exporter='otlp' without otlp_endpoint; spans are dropped")
        else:
            try:
                from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
            except ImportError:
                logger.warning(
                    "OTLP exporter requested but opentelemetry-exporter-otlp-proto-grpc is not installed"
                )
            else:
                provider.add_span_processor(
                    BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otlp_endpoint))
                )
    elif settings.exporter != "none":
        logger.warning("Unknown telemetry exporter %r; spans are dropped", settings.exporter)

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer("agentic_coder")
    logger.info("Telemetry on: exporter=%s service=%s", settings.exporter, settings.service_name)


def get_tracer() -> Any:
    return _tracer if _tracer is not None else _NOOP_TRACER


def reset_for_testing() -> None:
    global _tracer  # noqa: PLW0603
    _tracer = None
