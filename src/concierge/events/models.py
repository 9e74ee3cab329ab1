"""Concierge event models for observability.

This module defines the events emitted by the workflow:
- EventType: what happened
- ConciergeEvent: the structured event with thread context

Requirements:
- Emit events for: completed invocations, guardrail decisions, stage
  critiques, errors and timeouts
- Events include: event_type, thread_key, repository, timestamp, details
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Types of events emitted by the concierge.

    Attributes:
        INVOCATION_COMPLETED: An invocation produced its outcome.
            Details: outcome, action, participant, duration_seconds,
            comment_posted.
        GUARDRAIL_DECISION: The guardrail engine routed an event.
            Details: decision, participant, reason.
        STAGE_CRITIQUE: A stage output was scored by the quality gate.
            Details: stage, score, threshold, passed, refined, judge_failed.
        ERROR: The invocation failed at its boundary.
            Details: error_message, error_type.
        TIMEOUT: An external call exceeded its time limit.
            Details: operation, timeout_seconds.
    """

    INVOCATION_COMPLETED = "invocation_completed"
    GUARDRAIL_DECISION = "guardrail_decision"
    STAGE_CRITIQUE = "stage_critique"
    ERROR = "error"
    TIMEOUT = "timeout"


class ConciergeEvent(BaseModel):
    """Structured event emitted by the concierge.

    Attributes:
        event_type: The category of event.
        thread_key: Canonical thread identifier "{owner}/{repo}#{number}".
        repository: Full repository path "{owner}/{repo}".
        timestamp: When the event occurred (UTC).
        details: Event-specific context.
    """

    event_type: EventType = Field(..., description="The category of event being emitted")

    thread_key: str = Field(
        ...,
        min_length=1,
        description='Canonical thread identifier in format "{owner}/{repo}#{number}"',
    )

    repository: str = Field(
        ...,
        min_length=1,
        description='Full repository path in format "{owner}/{repo}"',
    )

    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event occurred (UTC timezone)",
    )

    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Additional context specific to the event type",
    )

    def to_log_dict(self) -> Dict[str, Any]:
        """Flatten the event for structured logging."""
        return {
            "event_type": self.event_type.value,
            "thread_key": self.thread_key,
            "repository": self.repository,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
        }
