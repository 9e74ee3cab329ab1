"""Per-user conversation tracking for one thread.

The tracker owns the user map inside ConversationState:
- returns the existing conversation for a known participant
- creates a fresh conversation for the thread owner or for anyone who
  used /diagnose (the only re-entry mechanism for other users)
- migrates records written before per-user tracking existed

All operations return new objects; the input state is never mutated.

Source:
- src/concierge/state/models.py (ConversationState, UserConversation)
"""

import logging
from typing import Callable, NamedTuple, Optional

from src.concierge.state.models import ConversationState, UserConversation, utc_now


logger = logging.getLogger(__name__)


class TrackedConversation(NamedTuple):
    """Result of ConversationTracker.get_or_create.

    Attributes:
        state: The state after the lookup (unchanged when no entry exists).
        conversation: The user's conversation, or None if not authorized.
        created: True when a new or reset conversation was created.
    """

    state: ConversationState
    conversation: Optional[UserConversation]
    created: bool


class ConversationTracker:
    """Creates, resets and migrates user conversations.

    Attributes:
        clock: Callable returning the current UTC time.
    """

    def __init__(self, clock: Callable = utc_now):
        self.clock = clock

    def migrate_legacy(self, state: ConversationState) -> ConversationState:
        """Move legacy single-user fields into the thread owner's record.

        A legacy record has a non-empty legacy counter, asked fields or
        finalized flag but an empty user map. Migrating an already
        migrated state returns it unchanged.

        Args:
            state: The loaded state.

        Returns:
            The migrated state with the legacy fields cleared.
        """
        if not state.has_legacy_fields:
            return state

        if not state.issue_author:
            logger.warning(
                "Cannot migrate legacy state without an issue author",
                extra={"thread_key": state.thread_key},
            )
            return state

        now = self.clock()
        conversation = UserConversation(
            username=state.issue_author,
            loop_count=state.loop_count,
            is_finalized=state.is_finalized,
            finalized_at=state.finalized_at,
            asked_fields=list(state.asked_fields),
            first_interaction=state.last_updated,
            last_interaction=now,
        )

        logger.info(
            "Migrated legacy single-user state",
            extra={
                "thread_key": state.thread_key,
                "username": state.issue_author,
                "loop_count": state.loop_count,
            },
        )

        return state.model_copy(
            update={
                "user_conversations": {conversation.username: conversation},
                "loop_count": 0,
                "asked_fields": [],
                "is_finalized": False,
                "finalized_at": None,
            }
        )

    def get_or_create(
        self,
        state: ConversationState,
        username: str,
        is_thread_owner: bool,
        used_diagnose_command: bool,
    ) -> TrackedConversation:
        """Look up or create the conversation for a participant.

        Args:
            state: The current thread state.
            username: Login of the active participant.
            is_thread_owner: True if the participant opened the issue.
            used_diagnose_command: True if the new text contains /diagnose.

        Returns:
            TrackedConversation with the updated state. ``conversation`` is
            None when the participant is not authorized to interact.
        """
        now = self.clock()
        existing = state.get_conversation(username)

        if used_diagnose_command:
            first_seen = existing.first_interaction if existing is not None else now
            fresh = UserConversation(
                username=existing.username if existing is not None else username,
                first_interaction=first_seen,
                last_interaction=now,
            )
            logger.info(
                "Starting fresh conversation via /diagnose",
                extra={
                    "thread_key": state.thread_key,
                    "username": username,
                    "had_previous": existing is not None,
                },
            )
            return TrackedConversation(state.with_conversation(fresh), fresh, True)

        if existing is not None:
            touched = existing.model_copy(update={"last_interaction": now})
            return TrackedConversation(state.with_conversation(touched), touched, False)

        if is_thread_owner:
            created = UserConversation(
                username=username,
                first_interaction=now,
                last_interaction=now,
            )
            logger.info(
                "Created conversation for thread owner",
                extra={"thread_key": state.thread_key, "username": username},
            )
            return TrackedConversation(state.with_conversation(created), created, True)

        return TrackedConversation(state, None, False)
