"""Concierge event emission and metrics.

Event Emitters:
- EventEmitter: Abstract base class for event emission
- LoggingEventEmitter: Emits events as structured log entries
- CompositeEventEmitter: Emits to multiple sinks simultaneously
- MetricsEventEmitter: Updates Prometheus metrics
- NullEventEmitter: Discards events (for testing)

Metrics:
- ConciergeMetrics: Container for all Prometheus metrics
- get_metrics / generate_metrics_output
"""

from src.concierge.events.emitter import (
    CompositeEventEmitter,
    EventEmitter,
    EventSinkType,
    LoggingEventEmitter,
    NullEventEmitter,
    create_event_emitter,
)
from src.concierge.events.metrics import (
    ConciergeMetrics,
    MetricsEventEmitter,
    generate_metrics_output,
    get_metrics,
)
from src.concierge.events.models import ConciergeEvent, EventType

__all__ = [
    # Event models
    "ConciergeEvent",
    "EventType",
    # Event emitters
    "CompositeEventEmitter",
    "EventEmitter",
    "LoggingEventEmitter",
    "MetricsEventEmitter",
    "NullEventEmitter",
    # Metrics
    "ConciergeMetrics",
    "generate_metrics_output",
    "get_metrics",
    # Factory
    "EventSinkType",
    "create_event_emitter",
]
