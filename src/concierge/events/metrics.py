"""Prometheus metrics for concierge observability.

Metrics Defined:
- concierge_invocations_total: Counter of invocations by outcome
- concierge_guardrail_decisions_total: Counter of guardrail decisions
- concierge_stage_score: Histogram of quality gate scores per stage
- concierge_stage_refinements_total: Counter of single refinements per stage
- concierge_invocation_duration_seconds: Histogram of invocation time

The MetricsEventEmitter updates the metrics from emitted events. Metrics
are exposed in Prometheus text format at ``/metrics``.

Source:
- src/concierge/events/models.py (ConciergeEvent, EventType)
"""

import logging
from typing import Optional

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

from src.concierge.events.emitter import EventEmitter
from src.concierge.events.models import ConciergeEvent, EventType


logger = logging.getLogger(__name__)


# Invocations are dominated by completion calls; seconds to a few minutes
DEFAULT_DURATION_BUCKETS = (0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0)

# Quality gate scores live on a 0-10 scale
SCORE_BUCKETS = (1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0, 8.0, 9.0, 10.0)


class ConciergeMetrics:
    """Container for all concierge Prometheus metrics.

    Attributes:
        registry: The Prometheus registry for these metrics.
        invocations_total: Labels repository, outcome.
        guardrail_decisions_total: Labels decision.
        stage_score: Labels stage.
        stage_refinements_total: Labels stage.
        invocation_duration_seconds: Labels repository.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        """Initialize concierge metrics.

        Args:
            registry: Optional Prometheus registry. Pass a custom registry
                      for testing; defaults to the global REGISTRY.
        """
        self.registry = registry or REGISTRY

        self.invocations_total = Counter(
            "concierge_invocations_total",
            "Total number of invocations by outcome",
            labelnames=["repository", "outcome"],
            registry=self.registry,
        )

        self.guardrail_decisions_total = Counter(
            "concierge_guardrail_decisions_total",
            "Total number of guardrail decisions",
            labelnames=["decision"],
            registry=self.registry,
        )

        self.stage_score = Histogram(
            "concierge_stage_score",
            "Quality gate score per stage on a 0-10 scale",
            labelnames=["stage"],
            buckets=SCORE_BUCKETS,
            registry=self.registry,
        )

        self.stage_refinements_total = Counter(
            "concierge_stage_refinements_total",
            "Total number of stage outputs refined after failing the gate",
            labelnames=["stage"],
            registry=self.registry,
        )

        self.invocation_duration_seconds = Histogram(
            "concierge_invocation_duration_seconds",
            "Time spent per invocation in seconds",
            labelnames=["repository"],
            buckets=DEFAULT_DURATION_BUCKETS,
            registry=self.registry,
        )

    def record_invocation(self, repository: str, outcome: str, duration_seconds: Optional[float] = None) -> None:
        self.invocations_total.labels(repository=repository, outcome=outcome).inc()
        if duration_seconds is not None:
            self.invocation_duration_seconds.labels(repository=repository).observe(duration_seconds)

    def record_guardrail_decision(self, decision: str) -> None:
        self.guardrail_decisions_total.labels(decision=decision).inc()

    def record_stage_score(self, stage: str, score: float, refined: bool) -> None:
        self.stage_score.labels(stage=stage).observe(score)
        if refined:
            self.stage_refinements_total.labels(stage=stage).inc()


_default_metrics: Optional[ConciergeMetrics] = None


def get_metrics(registry: Optional[CollectorRegistry] = None) -> ConciergeMetrics:
    """Get the global metrics instance, or a new one for a custom registry."""
    global _default_metrics

    if registry is not None:
        return ConciergeMetrics(registry=registry)

    if _default_metrics is None:
        _default_metrics = ConciergeMetrics()
    return _default_metrics


def generate_metrics_output(registry: Optional[CollectorRegistry] = None) -> bytes:
    """Render metrics in Prometheus text format for the /metrics endpoint."""
    return generate_latest(registry or REGISTRY)


class MetricsEventEmitter(EventEmitter):
    """Event emitter that updates Prometheus metrics.

    - INVOCATION_COMPLETED: invocation counter and duration
    - GUARDRAIL_DECISION: guardrail decision counter
    - STAGE_CRITIQUE: stage score histogram and refinement counter
    - ERROR / TIMEOUT: invocation counter with outcome "error" / "timeout"
    """

    def __init__(
        self,
        metrics: Optional[ConciergeMetrics] = None,
        registry: Optional[CollectorRegistry] = None,
    ):
        self._metrics = metrics if metrics is not None else get_metrics(registry)

    @property
    def metrics(self) -> ConciergeMetrics:
        return self._metrics

    async def emit(self, event: ConciergeEvent) -> None:
        details = event.details
        try:
            if event.event_type == EventType.INVOCATION_COMPLETED:
                self._metrics.record_invocation(
                    event.repository,
                    str(details.get("outcome", "unknown")),
                    details.get("duration_seconds"),
                )
            elif event.event_type == EventType.GUARDRAIL_DECISION:
                self._metrics.record_guardrail_decision(str(details.get("decision", "unknown")))
            elif event.event_type == EventType.STAGE_CRITIQUE:
                self._metrics.record_stage_score(
                    str(details.get("stage", "unknown")),
                    float(details.get("score", 0.0)),
                    bool(details.get("refined", False)),
                )
            elif event.event_type == EventType.ERROR:
                self._metrics.record_invocation(event.repository, "error")
            elif event.event_type == EventType.TIMEOUT:
                self._metrics.record_invocation(event.repository, "timeout")
        except Exception as e:
            logger.error(
                "Failed to update metrics for event %s: %s",
                event.event_type.value,
                str(e),
                extra={"event_type": event.event_type.value, "thread_key": event.thread_key},
            )
