import pytest

from ticketbox.metrics import MetricsRegistry, register_default_metrics
from ticketbox.metrics.base import CounterMetric, DistributionMetric
from ticketbox.metrics.definitions import DEFAULT_METRIC_DEFINITIONS, TRANSITION_DURATION, TRANSITIONS_TOTAL
from ticketbox.metrics.exporters import PrometheusExporter


def test_default_metrics_are_registered():
    registry = register_default_metrics(MetricsRegistry())

    names = {metric.name for metric in registry.metrics()}
    assert names == {definition.name for definition in DEFAULT_METRIC_DEFINITIONS}
    assert isinstance(registry.counter(TRANSITIONS_TOTAL), CounterMetric)


def test_counter_requires_declared_labels():
    registry = MetricsRegistry()
    counter = registry.counter("events_total", label_names=("outcome",))

    counter.inc(labels={"outcome": "ok"})
    counter.inc(2, labels={"outcome": "ok"})

    assert counter.value(labels={"outcome": "ok"}) == 3
    with pytest.raises(ValueError):
        counter.inc()
    with pytest.raises(ValueError):
        counter.inc(-1, labels={"outcome": "ok"})


def test_metric_types_cannot_be_mixed():
    registry = MetricsRegistry()
    registry.counter("shared")

    with pytest.raises(TypeError):
        registry.distribution("shared")


def test_time_distribution_records_labelled_duration():
    registry = MetricsRegistry()

    with registry.time_distribution(TRANSITION_DURATION, labels={"action": "CLOSE"}):
        pass

    metric = registry.distribution(TRANSITION_DURATION)
    assert isinstance(metric, DistributionMetric)
    assert metric.snapshot()[("CLOSE",)]["count"] == 1.0


def test_prometheus_payload():
    registry = MetricsRegistry()
    counter = registry.counter("tickets_total", description="Tickets.", label_names=("state",))
    counter.inc(labels={"state": 'weird"value'})
    counter.inc(labels={"state": "OPEN"})
    registry.distribution("latency_seconds").observe(0.5)

    payload = PrometheusExporter(registry).export()

    assert "# TYPE tickets_total counter" in payload
    assert 'tickets_total{state="OPEN"} 1.0' in payload
    assert 'tickets_total{state="weird\\"value"} 1.0' in payload
    assert "latency_seconds_count 1.0" in payload
    assert "latency_seconds_sum 0.5" in payload
    assert payload.endswith("\n")
