"""
Prometheus metrics and the injectable sink used by the orchestrator.

The orchestrator talks to a ``MetricsSink`` (``timing`` / ``increment``);
production uses ``PrometheusMetricsSink``, tests use ``RecordingMetricsSink``.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Mapping, Protocol

from prometheus_client import Counter, Histogram

logger = logging.getLogger(__name__)

ROUTE_DECISION_MS = "route_decision_ms"
END_TO_END_MS = "end_to_end_ms"
RICH_INPUT_TIMEOUT_COUNT = "rich_input_timeout_count"
RICH_INPUT_FAILURE_COUNT = "rich_input_failure_count"
SLO_VIOLATION_COUNT = "slo_violation_count"

SLA_TAGS = ("input_class", "message_type", "pathway")

# Latency budgets in milliseconds
ROUTE_DECISION_BUDGET_MS = 20
TEXT_END_TO_END_BUDGET_MS = 2000
TOOL_INTENT_END_TO_END_BUDGET_MS = 4000
RICH_INPUT_END_TO_END_BUDGET_MS = 9000

_MS_BUCKETS = (5, 10, 20, 50, 100, 250, 500, 1000, 2000, 4000, 9000, 15000, 30000, 60000)

SLA_ROUTE_DECISION_MS = Histogram(
    "sla_route_decision_ms",
    "Time spent classifying an inbound message, in milliseconds",
    list(SLA_TAGS),
    buckets=_MS_BUCKETS,
)
SLA_END_TO_END_MS = Histogram(
    "sla_end_to_end_ms",
    "Time from orchestration start to pathway completion, in milliseconds",
    list(SLA_TAGS),
    buckets=_MS_BUCKETS,
)
SLA_RICH_INPUT_TIMEOUT_TOTAL = Counter(
    "sla_rich_input_timeout_total",
    "Rich input handlers abandoned after their timeout",
    ["pathway", "message_type"],
)
SLA_RICH_INPUT_FAILURE_TOTAL = Counter(
    "sla_rich_input_failure_total",
    "Rich input handlers that raised before completing",
    ["pathway", "message_type"],
)
SLA_SLO_VIOLATION_TOTAL = Counter(
    "sla_slo_violation_total",
    "Latency measurements that exceeded their budget",
    ["metric", "input_class", "message_type", "pathway"],
)
AGENT_EVENTS_PROCESSED_TOTAL = Counter(
    "agent_events_processed_total",
    "Agent events processed by the ledger drain",
    ["outcome"],
)
WEBHOOK_REQUESTS_TOTAL = Counter(
    "webhook_requests_total",
    "WhatsApp webhook requests by outcome",
    ["outcome"],
)

_TIMINGS = {
    ROUTE_DECISION_MS: SLA_ROUTE_DECISION_MS,
    END_TO_END_MS: SLA_END_TO_END_MS,
}
_COUNTERS = {
    RICH_INPUT_TIMEOUT_COUNT: (SLA_RICH_INPUT_TIMEOUT_TOTAL, ("pathway", "message_type")),
    RICH_INPUT_FAILURE_COUNT: (SLA_RICH_INPUT_FAILURE_TOTAL, ("pathway", "message_type")),
    SLO_VIOLATION_COUNT: (
        SLA_SLO_VIOLATION_TOTAL,
        ("metric", "input_class", "message_type", "pathway"),
    ),
}


class MetricsSink(Protocol):
    def timing(self, name: str, value_ms: float, tags: Mapping[str, str]) -> None: ...

    def increment(self, name: str, tags: Mapping[str, str]) -> None: ...


class PrometheusMetricsSink:
    """Forward SLA measurements to the module-level Prometheus collectors."""

    def timing(self, name: str, value_ms: float, tags: Mapping[str, str]) -> None:
        histogram = _TIMINGS.get(name)
        if histogram is None:
            logger.debug("Unknown timing metric %s", name)
            return
        histogram.labels(**{k: tags.get(k, "unknown") for k in SLA_TAGS}).observe(value_ms)

    def increment(self, name: str, tags: Mapping[str, str]) -> None:
        entry = _COUNTERS.get(name)
        if entry is None:
            logger.debug("Unknown counter metric %s", name)
            return
        counter, label_names = entry
        counter.labels(**{k: tags.get(k, "unknown") for k in label_names}).inc()


@dataclass
class RecordedMetric:
    name: str
    value: float
    tags: dict[str, str] = field(default_factory=dict)


class RecordingMetricsSink:
    """Keeps every measurement in memory."""

    def __init__(self) -> None:
        self.timings: list[RecordedMetric] = []
        self.counters: list[RecordedMetric] = []
        self._lock = threading.Lock()

    def timing(self, name: str, value_ms: float, tags: Mapping[str, str]) -> None:
        with self._lock:
            self.timings.append(RecordedMetric(name, value_ms, dict(tags)))

    def increment(self, name: str, tags: Mapping[str, str]) -> None:
        with self._lock:
            self.counters.append(RecordedMetric(name, 1, dict(tags)))

    def timings_named(self, name: str) -> list[RecordedMetric]:
        return [m for m in self.timings if m.name == name]

    def count(self, name: str) -> int:
        return sum(1 for m in self.counters if m.name == name)


def end_to_end_budget_ms(input_class: str) -> int:
    if input_class in ("RICH_INPUT", "RICH_INPUT_TOOL_INTENT"):
        return RICH_INPUT_END_TO_END_BUDGET_MS
    if input_class == "TEXT_TOOL_INTENT":
        return TOOL_INTENT_END_TO_END_BUDGET_MS
    return TEXT_END_TO_END_BUDGET_MS


def emit_sla_timing(
    sink: MetricsSink,
    name: str,
    value_ms: float,
    tags: Mapping[str, str],
    budget_ms: float,
) -> None:
    """Record a latency and count a violation when it exceeds ``budget_ms``."""
    sink.timing(name, value_ms, tags)
    if value_ms > budget_ms:
        sink.increment(SLO_VIOLATION_COUNT, {"metric": name, **tags})
        logger.warning(
            "SLO violation: %s=%.1fms exceeds budget %dms",
            name,
            value_ms,
            budget_ms,
            extra={"metric": name, **tags},
        )
