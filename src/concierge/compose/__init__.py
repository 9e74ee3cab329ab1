"""Comment composition for the concierge."""

from src.concierge.compose.formatting import (
    ResponseComposer,
    format_brief,
    format_escalation,
    format_off_topic,
    format_questions,
    format_self_resolution,
    format_stop_acknowledgement,
    shared_finding_texts,
)

__all__ = [
    "ResponseComposer",
    "format_brief",
    "format_escalation",
    "format_off_topic",
    "format_questions",
    "format_self_resolution",
    "format_stop_acknowledgement",
    "shared_finding_texts",
]
