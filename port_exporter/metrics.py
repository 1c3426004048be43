"""Prometheus exposition of probe cycles."""

from typing import Iterator

from prometheus_client import CollectorRegistry, Counter
from prometheus_client.core import GaugeMetricFamily, Metric
from prometheus_client.registry import Collector

from .engine import ProbeCycle

ITEM_LABELS = ["resource", "group", "alias", "network"]
ADDRESS_LABELS = ITEM_LABELS + ["ip", "port"]
RESOLUTION_LABELS = ITEM_LABELS


class ProbeCycleCollector(Collector):
    """Renders the most recent probe cycle as gauges.

    Only the latest cycle is exported; label sets from earlier cycles
    disappear as soon as a new cycle is recorded.
    """

    def __init__(self) -> None:
        self._cycle = ProbeCycle()

    def update(self, cycle: ProbeCycle) -> None:
        """Replace the exported cycle."""
        self._cycle = cycle

    def collect(self) -> Iterator[Metric]:
        cycle = self._cycle

        available = GaugeMetricFamily(
            "tcp_port_available",
            "Whether a TCP connection to the address could be established (1) or not (0)",
            labels=ADDRESS_LABELS,
        )
        duration = GaugeMetricFamily(
            "tcp_port_probe_duration_seconds",
            "Time spent on the TCP connection attempt",
            labels=ADDRESS_LABELS,
        )
        for result in cycle.results:
            labels = result.item.labels
            values = [labels[name] for name in ITEM_LABELS]
            values += [result.ip, str(result.item.port)]
            available.add_metric(values, 1.0 if result.available else 0.0)
            duration.add_metric(values, result.duration_seconds)

        resolved = GaugeMetricFamily(
            "tcp_port_resolved_addresses",
            "Number of IP addresses the resource host resolved to",
            labels=RESOLUTION_LABELS,
        )
        resolution_error = GaugeMetricFamily(
            "tcp_port_resolution_error",
            "Whether resolving the resource host failed (1) or not (0)",
            labels=RESOLUTION_LABELS,
        )
        for item, addresses in cycle.addresses.items():
            values = [item.labels[name] for name in RESOLUTION_LABELS]
            resolved.add_metric(values, float(len(addresses)))
            resolution_error.add_metric(values, 0.0)
        for item in cycle.errors:
            values = [item.labels[name] for name in RESOLUTION_LABELS]
            resolved.add_metric(values, 0.0)
            resolution_error.add_metric(values, 1.0)

        scrape = GaugeMetricFamily(
            "tcp_port_scrape_duration_seconds",
            "Duration of the last probe cycle",
        )
        scrape.add_metric([], cycle.duration_seconds)

        yield available
        yield duration
        yield resolved
        yield resolution_error
        yield scrape


class ExporterMetrics:
    """Registry holding everything the exporter serves."""

    def __init__(self, registry: CollectorRegistry | None = None):
        self.registry = registry or CollectorRegistry()
        self.collector = ProbeCycleCollector()
        self.registry.register(self.collector)

        self.probes_total = Counter(
            "tcp_port_probes",
            "Probes performed since start, by outcome",
            ["result"],
            registry=self.registry,
        )
        self.resolution_failures_total = Counter(
            "tcp_port_resolution_failures",
            "Failed host resolutions since start",
            registry=self.registry,
        )

    def record(self, cycle: ProbeCycle) -> None:
        """Export a finished cycle and bump the lifetime counters."""
        self.collector.update(cycle)
        available = cycle.available_count
        unavailable = len(cycle.results) - available
        if available:
            self.probes_total.labels(result="available").inc(available)
        if unavailable:
            self.probes_total.labels(result="unavailable").inc(unavailable)
        if cycle.errors:
            self.resolution_failures_total.inc(len(cycle.errors))
