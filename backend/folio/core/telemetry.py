"""OpenTelemetry wiring plus ledger re-projection instrumentation.

``setup_telemetry`` installs OTLP exporters for traces, metrics and logs when
enabled. ``projections`` wraps every ledger replay in a ``ledger.reproject``
span and records how many entries and symbols it touched; with telemetry off
the global proxies make those calls no-ops.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Any, Iterable, Iterator
from uuid import UUID

from fastapi import FastAPI
from opentelemetry import metrics, trace
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.instrumentation.logging import LoggingInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.instrumentation.system_metrics import SystemMetricsInstrumentor
from opentelemetry.sdk._logs import LoggerProvider
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.semconv.resource import ResourceAttributes
from opentelemetry.trace import Status, StatusCode
from sqlalchemy.ext.asyncio import AsyncEngine

from folio.config import AppSettings

logger = logging.getLogger(__name__)

_TELEMETRY_INITIALISED = False
_METRIC_EXPORT_INTERVAL_MS = 10000

tracer = trace.get_tracer("folio")


class ProjectionTelemetry:
    """Span and metrics around one replay of a portfolio's ledger."""

    def __init__(self, tracer: trace.Tracer, meter: metrics.Meter) -> None:
        self._tracer = tracer
        self._runs = meter.create_counter(
            "folio.ledger.projections",
            unit="1",
            description="Ledger re-projections by outcome",
        )
        self._entries = meter.create_histogram(
            "folio.ledger.projection.entries",
            unit="1",
            description="Ledger entries replayed per re-projection",
        )
        self._duration = meter.create_histogram(
            "folio.ledger.projection.duration",
            unit="s",
            description="Wall time of a re-projection including row sync",
        )

    @contextmanager
    def track(self, portfolio_id: UUID, symbols: Iterable[str]) -> Iterator[trace.Span]:
        """Time the block as a ``ledger.reproject`` span.

        An error raised inside marks the span failed and is
        counted under its class name before propagating.
        """

        started = time.monotonic()
        outcome = "ok"
        with self._tracer.start_as_current_span("ledger.reproject", record_exception=False) as span:
            span.set_attribute("folio.portfolio_id", str(portfolio_id))
            span.set_attribute("folio.symbols", sorted(symbols))
            try:
                yield span
            except Exception as exc:
                outcome = type(exc).__name__
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                raise
            finally:
                self._runs.add(1, {"outcome": outcome})
                self._duration.record(time.monotonic() - started, {"outcome": outcome})

    def record_entries(self, span: trace.Span, count: int) -> None:
        span.set_attribute("folio.entries", count)
        self._entries.record(count)


projections = ProjectionTelemetry(tracer, metrics.get_meter("folio"))


def setup_telemetry(app: FastAPI, settings: AppSettings, engine: AsyncEngine | None = None) -> bool:
    """Configure exporters and instrument FastAPI, SQLAlchemy and httpx.

    Returns ``True`` when instrumentation is active after the call.
    """

    global _TELEMETRY_INITIALISED  # noqa: PLW0603 - single initialisation guard

    if _TELEMETRY_INITIALISED:
        return True

    if not settings.telemetry_enabled:
        logger.info("Telemetry disabled via configuration")
        return False

    resource = Resource.create(
        {
            ResourceAttributes.SERVICE_NAME: settings.telemetry_service_name or settings.app_name,
            ResourceAttributes.SERVICE_NAMESPACE: "folio",
        }
    )
    options: dict[str, Any] = {"insecure": settings.telemetry_otlp_insecure}
    if settings.telemetry_otlp_endpoint:
        options["endpoint"] = settings.telemetry_otlp_endpoint

    tracer_provider = TracerProvider(
        resource=resource, sampler=ParentBased(TraceIdRatioBased(settings.telemetry_sample_ratio))
    )
    tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(**options)))
    trace.set_tracer_provider(tracer_provider)

    reader = PeriodicExportingMetricReader(
        OTLPMetricExporter(**options), export_interval_millis=_METRIC_EXPORT_INTERVAL_MS
    )
    meter_provider = MeterProvider(resource=resource, metric_readers=[reader])
    # The module-level projection instruments were created on the proxy meter and bind here
    metrics.set_meter_provider(meter_provider)

    logger_provider = LoggerProvider(resource=resource)
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(OTLPLogExporter(**options)))
    set_logger_provider(logger_provider)
    LoggingInstrumentor().instrument(set_logging_format=False)

    FastAPIInstrumentor.instrument_app(app, tracer_provider=tracer_provider, meter_provider=meter_provider)
    # Outbound market-data calls get spans and propagate context
    HTTPXClientInstrumentor().instrument()
    SystemMetricsInstrumentor().instrument(meter_provider=meter_provider)
    if engine is not None:
        SQLAlchemyInstrumentor().instrument(engine=engine.sync_engine, tracer_provider=tracer_provider)

    _TELEMETRY_INITIALISED = True
    logger.info("Telemetry initialised and instrumentation enabled")
    return True


__all__ = ["ProjectionTelemetry", "projections", "setup_telemetry", "tracer"]
