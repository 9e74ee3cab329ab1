"""Conversation state persistence and per-user tracking.

This module provides:
- ConversationState, UserConversation, SharedFinding: persisted models
- StateStore: embeds and extracts state markers in comment text
- StateLoader: picks the latest bot-authored marker in a thread
- ConversationTracker: per-user conversation creation and migration
"""

from src.concierge.state.loader import StateLoader
from src.concierge.state.models import (
    STATE_SCHEMA_VERSION,
    ConversationState,
    SharedFinding,
    UserConversation,
    create_initial_state,
)
from src.concierge.state.store import (
    COMPRESSED_TAG,
    STATE_MARKER_PREFIX,
    STATE_MARKER_SUFFIX,
    StateDecodeError,
    StateStore,
)
from src.concierge.state.tracker import ConversationTracker, TrackedConversation

__all__ = [
    "COMPRESSED_TAG",
    "ConversationState",
    "ConversationTracker",
    "create_initial_state",
    "SharedFinding",
    "STATE_MARKER_PREFIX",
    "STATE_MARKER_SUFFIX",
    "STATE_SCHEMA_VERSION",
    "StateDecodeError",
    "StateLoader",
    "StateStore",
    "TrackedConversation",
    "UserConversation",
]
