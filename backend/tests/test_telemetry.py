"""Re-projection spans and metrics recorded against local SDK providers."""

from __future__ import annotations

from uuid import uuid4

import pytest
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from folio.core.errors import ValidationFailed
from folio.core.telemetry import ProjectionTelemetry


@pytest.fixture
def recorded():
    exporter = InMemorySpanExporter()
    tracer_provider = TracerProvider()
    tracer_provider.add_span_processor(SimpleSpanProcessor(exporter))
    reader = InMemoryMetricReader()
    meter_provider = MeterProvider(metric_readers=[reader])
    telemetry = ProjectionTelemetry(tracer_provider.get_tracer("test"), meter_provider.get_meter("test"))
    yield telemetry, exporter, reader
    meter_provider.shutdown()
    tracer_provider.shutdown()


def _points(reader: InMemoryMetricReader) -> dict[str, list]:
    points: dict[str, list] = {}
    for resource_metrics in reader.get_metrics_data().resource_metrics:
        for scope_metrics in resource_metrics.scope_metrics:
            for metric in scope_metrics.metrics:
                points[metric.name] = list(metric.data.data_points)
    return points


def test_successful_projection_is_traced_and_counted(recorded):
    telemetry, exporter, reader = recorded
    portfolio_id = uuid4()

    with telemetry.track(portfolio_id, {"MSFT", "AAPL"}) as span:
        telemetry.record_entries(span, 7)

    [finished] = exporter.get_finished_spans()
    assert finished.name == "ledger.reproject"
    assert finished.attributes["folio.portfolio_id"] == str(portfolio_id)
    assert tuple(finished.attributes["folio.symbols"]) == ("AAPL", "MSFT")
    assert finished.attributes["folio.entries"] == 7
    assert finished.status.status_code != StatusCode.ERROR

    points = _points(reader)
    [runs] = points["folio.ledger.projections"]
    assert runs.value == 1
    assert dict(runs.attributes) == {"outcome": "ok"}
    [entries] = points["folio.ledger.projection.entries"]
    assert entries.count == 1
    assert entries.sum == 7
    [duration] = points["folio.ledger.projection.duration"]
    assert duration.count == 1


def test_failed_projection_marks_the_span_and_propagates(recorded):
    telemetry, exporter, reader = recorded

    with pytest.raises(ValidationFailed):
        with telemetry.track(uuid4(), ["XYZ"]):
            raise ValidationFailed("quantity must be greater than zero", code="INVALID_QUANTITY")

    [finished] = exporter.get_finished_spans()
    assert finished.status.status_code == StatusCode.ERROR
    assert [event.name for event in finished.events] == ["exception"]

    [runs] = _points(reader)["folio.ledger.projections"]
    assert dict(runs.attributes) == {"outcome": "ValidationFailed"}
