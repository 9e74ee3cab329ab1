"""Conversation state models.

This module defines the persisted data model for one support thread:
- SharedFinding: append-only finding visible to every participant
- UserConversation: per-user loop counter, asked fields and flags
- ConversationState: the root record embedded in the bot's comments

The state is reconstructed from the single most recent bot-authored
marker in the thread, never merged from several. Unknown JSON fields are
ignored on read so older and newer writers can coexist.

Requirements:
- loop_count is non-decreasing and incremented at most once per invocation
- asked_fields only grows (pruning and the /diagnose reset excepted)
- decode(encode(s)) == s for every reachable state

The models use Pydantic for validation, consistent with config.py.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Version written into every new marker. Markers with a higher version
# were produced by a newer writer and are treated as unreadable.
STATE_SCHEMA_VERSION = 2


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _dedupe_preserving_order(values: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


class SharedFinding(BaseModel):
    """A finding discovered by one participant and visible to all.

    Attributes:
        discovered_by: Username whose conversation produced the finding.
        category: Category the thread was classified as at the time.
        content: Short free-text description of the finding.
    """

    model_config = ConfigDict(extra="ignore")

    discovered_by: str = Field(..., description="Username that surfaced the finding")
    category: str = Field(default="", description="Thread category at discovery")
    content: str = Field(..., description="Finding text")


class UserConversation(BaseModel):
    """Per-user conversation record within a thread.

    Created the first time a username is authorized to interact and
    never deleted afterwards; only marked finalized or exhausted.

    Attributes:
        username: GitHub login of the participant.
        loop_count: Question rounds consumed so far.
        is_exhausted: True once loop_count exceeds the configured bound.
        is_finalized: True once the conversation reached a final answer
            or the user opted out with /stop.
        finalized_at: When the conversation was finalized (UTC).
        asked_fields: Fields already asked of this user, oldest first.
            Behaves as an ordered set; a field is never asked twice.
        off_topic_strike_count: Number of comments judged off-topic.
        is_off_topic_blocked: True once the strike limit was reached.
        first_interaction: First time the user was seen (UTC).
        last_interaction: Most recent time the user was seen (UTC).
        case_packet: Field values collected from this user.
    """

    model_config = ConfigDict(extra="ignore")

    username: str = Field(..., min_length=1)
    loop_count: int = Field(default=0, ge=0)
    is_exhausted: bool = False
    is_finalized: bool = False
    finalized_at: Optional[datetime] = None
    asked_fields: List[str] = Field(default_factory=list)
    off_topic_strike_count: int = Field(default=0, ge=0)
    is_off_topic_blocked: bool = False
    first_interaction: datetime = Field(default_factory=utc_now)
    last_interaction: datetime = Field(default_factory=utc_now)
    case_packet: Dict[str, str] = Field(default_factory=dict)

    @field_validator("asked_fields")
    @classmethod
    def validate_asked_fields(cls, v: List[str]) -> List[str]:
        """Keep asked_fields free of duplicates."""
        return _dedupe_preserving_order(v)

    def with_asked_fields(self, field_names: Iterable[str]) -> "UserConversation":
        """Return a copy with the given fields appended to asked_fields."""
        merged = _dedupe_preserving_order([*self.asked_fields, *field_names])
        return self.model_copy(update={"asked_fields": merged})


class ConversationState(BaseModel):
    """Root state for one thread, persisted inside the bot's comments.

    Attributes:
        schema_version: Marker format version.
        thread_key: Canonical thread identifier "{owner}/{repo}#{number}".
        category: Triage category; empty until triage completes.
        completeness_score: Deterministic completeness score (0-100).
        shared_findings: Append-only findings visible to all users.
        user_conversations: Per-user conversation records keyed by login.
        last_updated: When the state was last written (UTC).
        issue_author: Login of the thread owner.
        loop_count: Legacy single-user loop counter. Zero once migrated.
        asked_fields: Legacy single-user asked fields. Empty once migrated.
        is_finalized: Legacy single-user finalized flag.
        finalized_at: Legacy single-user finalization time.
    """

    model_config = ConfigDict(extra="ignore")

    schema_version: int = STATE_SCHEMA_VERSION
    thread_key: str = Field(default="", description="{owner}/{repo}#{number}")
    category: str = ""
    completeness_score: int = Field(default=0, ge=0, le=100)
    shared_findings: List[SharedFinding] = Field(default_factory=list)
    user_conversations: Dict[str, UserConversation] = Field(default_factory=dict)
    last_updated: datetime = Field(default_factory=utc_now)
    issue_author: str = ""

    # -------------------------------------------------------------------------
    # Legacy single-user fields, migrated by ConversationTracker
    # -------------------------------------------------------------------------
    loop_count: int = Field(default=0, ge=0)
    asked_fields: List[str] = Field(default_factory=list)
    is_finalized: bool = False
    finalized_at: Optional[datetime] = None

    @property
    def has_legacy_fields(self) -> bool:
        """True when the record predates per-user tracking."""
        return not self.user_conversations and (
            self.loop_count > 0 or bool(self.asked_fields) or self.is_finalized
        )

    def get_conversation(self, username: str) -> Optional[UserConversation]:
        """Look up a user's conversation, ignoring login case."""
        if username in self.user_conversations:
            return self.user_conversations[username]
        lowered = username.lower()
        for key, conversation in self.user_conversations.items():
            if key.lower() == lowered:
                return conversation
        return None

    def with_conversation(self, conversation: UserConversation) -> "ConversationState":
        """Return a copy with the given user conversation stored."""
        conversations = dict(self.user_conversations)
        for key in list(conversations):
            if key.lower() == conversation.username.lower():
                del conversations[key]
        conversations[conversation.username] = conversation
        return self.model_copy(update={"user_conversations": conversations})

    def with_finding(self, finding: SharedFinding) -> "ConversationState":
        """Return a copy with the finding appended, skipping exact repeats."""
        for existing in self.shared_findings:
            if existing.content.strip().lower() == finding.content.strip().lower():
                return self
        return self.model_copy(
            update={"shared_findings": [*self.shared_findings, finding]}
        )


def create_initial_state(
    thread_key: str,
    issue_author: str,
    category: str = "",
) -> ConversationState:
    """Create the state for a thread that has never been processed.

    Args:
        thread_key: Canonical thread identifier.
        issue_author: Login of the thread owner.
        category: Initial category, usually empty.

    Returns:
        A ConversationState with no user conversations.
    """
    return ConversationState(
        thread_key=thread_key,
        issue_author=issue_author,
        category=category,
    )
