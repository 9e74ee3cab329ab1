"""Event emitter implementations for concierge observability.

- EventEmitter: abstract sink interface
- LoggingEventEmitter: structured log entries
- CompositeEventEmitter: fan-out to several sinks
- NullEventEmitter: discards events

Emitters never raise into the workflow; a failing sink is logged and
skipped.

Source:
- src/concierge/events/models.py (ConciergeEvent, EventType)
"""

import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional

from prometheus_client import CollectorRegistry

from src.concierge.events.models import ConciergeEvent, EventType


logger = logging.getLogger(__name__)


class EventSinkType(str, Enum):
    """Event sinks the concierge can emit to.

    Attributes:
        LOGGING: Structured log entries.
        METRICS: Prometheus metrics.
    """

    LOGGING = "logging"
    METRICS = "metrics"


class EventEmitter(ABC):
    """Abstract base class for concierge event emitters."""

    @abstractmethod
    async def emit(self, event: ConciergeEvent) -> None:
        """Publish an event to the sink."""
        pass

    async def close(self) -> None:
        """Release sink resources. The default does nothing."""
        pass


class LoggingEventEmitter(EventEmitter):
    """Writes events as structured log entries.

    ERROR events log at ERROR, TIMEOUT at WARNING, everything else at INFO.
    """

    def __init__(self, logger_name: Optional[str] = None):
        self._logger = logging.getLogger(logger_name) if logger_name else logger
        self._log_level_map = {
            EventType.INVOCATION_COMPLETED: logging.INFO,
            EventType.GUARDRAIL_DECISION: logging.INFO,
            EventType.STAGE_CRITIQUE: logging.INFO,
            EventType.ERROR: logging.ERROR,
            EventType.TIMEOUT: logging.WARNING,
        }

    async def emit(self, event: ConciergeEvent) -> None:
        self._logger.log(
            self._log_level_map.get(event.event_type, logging.INFO),
            "Concierge event: %s for %s",
            event.event_type.value,
            event.thread_key,
            extra=event.to_log_dict(),
        )


class CompositeEventEmitter(EventEmitter):
    """Delegates to several child emitters independently.

    A failure in one child is logged and does not stop the others.
    """

    def __init__(self, emitters: Optional[List[EventEmitter]] = None):
        self._emitters: List[EventEmitter] = emitters or []

    def add_emitter(self, emitter: EventEmitter) -> None:
        self._emitters.append(emitter)

    @property
    def emitters(self) -> List[EventEmitter]:
        return list(self._emitters)

    async def emit(self, event: ConciergeEvent) -> None:
        for emitter in self._emitters:
            try:
                await emitter.emit(event)
            except Exception as e:
                logger.error(
                    "Failed to emit event to %s: %s",
                    type(emitter).__name__,
                    str(e),
                    extra={
                        "emitter_type": type(emitter).__name__,
                        "event_type": event.event_type.value,
                        "thread_key": event.thread_key,
                    },
                )

    async def close(self) -> None:
        for emitter in self._emitters:
            try:
                await emitter.close()
            except Exception as e:
                logger.error("Failed to close emitter %s: %s", type(emitter).__name__, str(e))


class NullEventEmitter(EventEmitter):
    """Discards every event."""

    async def emit(self, event: ConciergeEvent) -> None:
        pass


def create_event_emitter(
    sink_types: Optional[List[EventSinkType]] = None,
    logger_name: Optional[str] = None,
    registry: Optional[CollectorRegistry] = None,
) -> EventEmitter:
    """Create an emitter for the requested sinks.

    Args:
        sink_types: Sinks to enable; defaults to logging only.
        logger_name: Logger name for the logging sink.
        registry: Prometheus registry for the metrics sink.

    Returns:
        A single emitter, or a CompositeEventEmitter for several sinks.
    """
    if not sink_types:
        return LoggingEventEmitter(logger_name=logger_name)

    # metrics.py imports this module
    from src.concierge.events.metrics import MetricsEventEmitter

    emitters: List[EventEmitter] = []
    for sink_type in sink_types:
        if sink_type == EventSinkType.LOGGING:
            emitters.append(LoggingEventEmitter(logger_name=logger_name))
        elif sink_type == EventSinkType.METRICS:
            emitters.append(MetricsEventEmitter(registry=registry))
        else:
            logger.warning("Unknown event sink type: %s, skipping", sink_type)

    if not emitters:
        return NullEventEmitter()
    if len(emitters) == 1:
        return emitters[0]
    return CompositeEventEmitter(emitters)
