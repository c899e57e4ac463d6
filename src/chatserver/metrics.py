"""In-process metrics for the chat server, exported in Prometheus text format.

Tracked:
- inbound events handled and dropped (labeled by event and drop reason)
- event handling latency
- open connections and joined users
- messages, outbox overflows and upload outcomes

Metric series live in memory for the lifetime of the process and are served
on ``/metrics`` by the health endpoints.
"""

import logging
import threading
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Handlers only touch memory: 10µs .. 1s covers every realistic case
EVENT_LATENCY_BUCKETS = (0.00001, 0.0001, 0.0005, 0.001, 0.005, 0.010, 0.050, 0.100, 1.000)

LabelKey = tuple[tuple[str, str], ...]


@dataclass
class HistogramBucket:
    le: float
    count: int = 0  # cumulative: observations <= le


def _default_buckets() -> list[HistogramBucket]:
    return [HistogramBucket(le=b) for b in EVENT_LATENCY_BUCKETS] + [
        HistogramBucket(le=float("inf"))
    ]


@dataclass
class Histogram:
    """Fixed-bucket histogram."""

    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    buckets: list[HistogramBucket] = field(default_factory=_default_buckets)
    sum: float = 0.0
    count: int = 0

    def observe(self, value: float) -> None:
        self.sum += value
        self.count += 1
        for bucket in self.buckets:
            if value <= bucket.le:
                bucket.count += 1

    def quantile(self, q: float) -> float | None:
        """Upper bound of the bucket holding the ``q`` quantile (None if empty)."""
        if not self.count:
            return None
        rank = max(1, int(q * self.count))
        return next((b.le for b in self.buckets if b.count >= rank), self.buckets[-1].le)


@dataclass
class Counter:
    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount


@dataclass
class Gauge:
    name: str
    help: str
    labels: dict[str, str] = field(default_factory=dict)
    value: float = 0.0

    def set(self, value: float) -> None:
        self.value = value

    def inc(self, amount: float = 1.0) -> None:
        self.value += amount

    def dec(self, amount: float = 1.0) -> None:
        self.value -= amount


# Metric family name -> help text
COUNTERS = {
    "events_handled_total": "Inbound events applied by the coordinator",
    "events_dropped_total": "Inbound events discarded by the coordinator",
    "messages_total": "User messages appended to the log",
    "outbound_dropped_total": "Outbound events dropped because a connection outbox was full",
    "uploads_accepted_total": "Uploads stored",
    "uploads_rejected_total": "Uploads refused",
}
GAUGES = {
    "connections_active": "Open client connections",
    "users_joined": "Joined users",
}


class MetricsCollector:
    """Thread-safe registry of counters, gauges and the latency histogram.

    Series are keyed by family name and label set; labeled series appear on
    first use, unlabeled ones exist from the start so they always export.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._counters: dict[str, dict[LabelKey, Counter]] = {name: {} for name in COUNTERS}
        self._gauges: dict[str, dict[LabelKey, Gauge]] = {name: {} for name in GAUGES}
        self.event_latency = Histogram(
            name="event_handling_seconds", help="Time spent handling one inbound event"
        )

        for name in ("messages_total", "outbound_dropped_total", "uploads_accepted_total"):
            self._counter(name)
        for name in GAUGES:
            self._gauge(name)

    def _counter(self, name: str, **labels: str) -> Counter:
        key = tuple(sorted(labels.items()))
        series = self._counters[name]
        if key not in series:
            series[key] = Counter(name=name, help=COUNTERS[name], labels=labels)
        return series[key]

    def _gauge(self, name: str) -> Gauge:
        series = self._gauges[name]
        if () not in series:
            series[()] = Gauge(name=name, help=GAUGES[name])
        return series[()]

    def _total(self, name: str) -> float:
        return sum(c.value for c in self._counters[name].values())

    # === Events ===

    def record_event(self, event: str, duration_seconds: float) -> None:
        with self._lock:
            self._counter("events_handled_total", event=event).inc()
            self.event_latency.observe(duration_seconds)

    def record_event_dropped(self, event: str, reason: str) -> None:
        with self._lock:
            self._counter("events_dropped_total", event=event, reason=reason).inc()

    def record_message(self) -> None:
        with self._lock:
            self._counter("messages_total").inc()

    def record_outbound_dropped(self) -> None:
        with self._lock:
            self._counter("outbound_dropped_total").inc()

    # === Presence ===

    def record_connection_open(self) -> None:
        with self._lock:
            self._gauge("connections_active").inc()

    def record_connection_closed(self) -> None:
        with self._lock:
            self._gauge("connections_active").dec()

    def set_users_joined(self, count: int) -> None:
        with self._lock:
            self._gauge("users_joined").set(float(count))

    # === Uploads ===

    def record_upload(self, accepted: bool, reason: str | None = None) -> None:
        with self._lock:
            if accepted:
                self._counter("uploads_accepted_total").inc()
            else:
                self._counter("uploads_rejected_total", reason=reason or "unknown").inc()

    # === Export ===

    def export_prometheus(self) -> str:
        """Render every series in Prometheus exposition format."""
        with self._lock:
            lines: list[str] = []

            for kind, families, helps in (
                ("counter", self._counters, COUNTERS),
                ("gauge", self._gauges, GAUGES),
            ):
                for name, series in families.items():
                    if not series:
                        continue
                    lines.append(f"# HELP {name} {helps[name]}")
                    lines.append(f"# TYPE {name} {kind}")
                    for metric in series.values():
                        lines.append(f"{name}{_format_labels(metric.labels)} {metric.value}")

            hist = self.event_latency
            lines.append(f"# HELP {hist.name} {hist.help}")
            lines.append(f"# TYPE {hist.name} histogram")
            for bucket in hist.buckets:
                labels = _format_labels({**hist.labels, "le": str(bucket.le)})
                lines.append(f"{hist.name}_bucket{labels} {bucket.count}")
            lines.append(f"{hist.name}_sum{_format_labels(hist.labels)} {hist.sum}")
            lines.append(f"{hist.name}_count{_format_labels(hist.labels)} {hist.count}")

            return "\n".join(lines) + "\n"

    def get_summary(self) -> dict[str, float | None]:
        """Headline numbers for ``/metrics/summary`` and logs."""
        with self._lock:
            p95 = self.event_latency.quantile(0.95)
            return {
                "events_handled": self._total("events_handled_total"),
                "events_dropped": self._total("events_dropped_total"),
                "event_handling_p95_ms": p95 * 1000 if p95 is not None else None,
                "messages_total": self._total("messages_total"),
                "outbound_dropped": self._total("outbound_dropped_total"),
                "connections_active": self._gauge("connections_active").value,
                "users_joined": self._gauge("users_joined").value,
                "uploads_accepted": self._total("uploads_accepted_total"),
            }


def _format_labels(labels: dict[str, str]) -> str:
    """'{a="1",b="2"}' with keys sorted, or '' without labels."""
    if not labels:
        return ""
    return "{" + ",".join(f'{k}="{v}"' for k, v in sorted(labels.items())) + "}"


_metrics_collector: MetricsCollector | None = None
_collector_lock = threading.Lock()


def get_metrics_collector() -> MetricsCollector:
    """Process-wide collector, created on first use."""
    global _metrics_collector

    if _metrics_collector is None:
        with _collector_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()
                logger.debug("Metrics collector created")

    return _metrics_collector


def reset_metrics_collector() -> None:
    """Discard the process-wide collector (tests start from zero)."""
    global _metrics_collector

    with _collector_lock:
        _metrics_collector = None
