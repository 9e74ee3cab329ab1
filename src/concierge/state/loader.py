"""Recover a thread's authoritative state from its comment history.

Only comments authored by the bot account are trusted. Among those, the
most recent comment carrying a decodable marker wins; states are never
averaged or merged. Comments from other users that quote or forge a
marker are ignored.

Source:
- src/concierge/state/store.py (StateStore)
- src/concierge/github/models.py (IssueComment)
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Sequence

from src.concierge.config import OrchestrationConfig
from src.concierge.github.models import IssueComment
from src.concierge.state.models import ConversationState
from src.concierge.state.store import StateStore


logger = logging.getLogger(__name__)


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _sort_key(indexed: tuple) -> tuple:
    index, comment = indexed
    created_at = comment.created_at
    if created_at is None:
        created_at = _EPOCH
    elif created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return (created_at, index)


class StateLoader:
    """Selects and decodes the latest bot-authored state marker.

    Attributes:
        store: StateStore used to decode markers.
        config: Orchestration configuration naming the bot account.
    """

    def __init__(self, store: StateStore, config: OrchestrationConfig):
        self.store = store
        self.config = config

    def load(
        self,
        comments: Sequence[IssueComment],
        thread_key: str = "",
    ) -> Optional[ConversationState]:
        """Load the authoritative state for a thread.

        Args:
            comments: The thread's comments in any order.
            thread_key: Thread identifier used for logging.

        Returns:
            The state decoded from the newest bot comment with a readable
            marker, or None when the thread has no usable state.
        """
        candidates = [
            (index, comment)
            for index, comment in enumerate(comments)
            if self.config.is_bot(comment.author) and self.store.contains_state(comment.body)
        ]
        if not candidates:
            logger.info(
                "No prior state found for thread",
                extra={"thread_key": thread_key, "comment_count": len(comments)},
            )
            return None

        for _, comment in sorted(candidates, key=_sort_key, reverse=True):
            state = self.store.extract(comment.body)
            if state is not None:
                logger.info(
                    "Loaded thread state",
                    extra={
                        "thread_key": thread_key,
                        "comment_id": comment.id,
                        "user_count": len(state.user_conversations),
                    },
                )
                return state
            logger.warning(
                "Skipping bot comment with unreadable state",
                extra={"thread_key": thread_key, "comment_id": comment.id},
            )

        return None
