"""GitHub data models for the concierge.

This module defines the inbound event and comment history records:
- EventName: the webhook event kinds the concierge processes
- IssueData: the issue anchoring a thread
- IssueComment: one comment in the thread's history
- IssueEvent: a parsed inbound event (issue opened or comment created)

The event and its optional comment are the only sources of user-authored
text for an invocation.

The models use Pydantic for validation, consistent with config.py.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class EventName(str, Enum):
    """GitHub webhook event names handled by the concierge.

    Attributes:
        ISSUES: An issue lifecycle event (opened, edited, reopened).
        ISSUE_COMMENT: A comment was created on an issue.
    """

    ISSUES = "issues"
    ISSUE_COMMENT = "issue_comment"


class IssueData(BaseModel):
    """The issue that anchors a conversation thread."""

    number: int = Field(..., gt=0)
    title: str = Field(default="")
    body: str = Field(default="")
    author: str = Field(..., min_length=1)
    labels: List[str] = Field(default_factory=list)


class IssueComment(BaseModel):
    """A single issue comment.

    Attributes:
        id: Comment identifier (0 when unknown, e.g. synthesized comments).
        body: Markdown body of the comment.
        author: Login of the comment author.
        created_at: When the comment was created.
    """

    id: int = 0
    body: str = ""
    author: str = Field(..., min_length=1)
    created_at: Optional[datetime] = None


class IssueEvent(BaseModel):
    """Parsed inbound event.

    Attributes:
        event_name: The webhook event kind.
        action: The webhook action (opened, created, ...).
        owner: Repository owner login.
        repository: Repository name without owner prefix.
        issue: The issue the event belongs to.
        comment: The newly created comment for issue_comment events.
    """

    event_name: EventName
    action: str = ""
    owner: str = Field(..., min_length=1)
    repository: str = Field(..., min_length=1)
    issue: IssueData
    comment: Optional[IssueComment] = None

    @property
    def thread_key(self) -> str:
        """Canonical thread identifier "{owner}/{repository}#{number}"."""
        return f"{self.owner}/{self.repository}#{self.issue.number}"

    @property
    def full_repository(self) -> str:
        """Repository path in format "{owner}/{repository}"."""
        return f"{self.owner}/{self.repository}"

    @property
    def is_comment_event(self) -> bool:
        """True when the event carries a newly created comment."""
        return self.event_name == EventName.ISSUE_COMMENT and self.comment is not None

    @property
    def is_new_issue(self) -> bool:
        """True for an issue that was just opened, with no thread history yet."""
        return self.event_name == EventName.ISSUES and self.action == "opened"

    @property
    def actor(self) -> str:
        """Login of the participant who produced the new text."""
        if self.is_comment_event:
            return self.comment.author
        return self.issue.author

    @property
    def new_text(self) -> str:
        """Only the newly arrived text.

        That is the comment body, or the issue body when the issue was just
        opened. A reopened issue brings no new text; its body is history.
        """
        if self.is_comment_event:
            return self.comment.body or ""
        if self.is_new_issue:
            return self.issue.body or ""
        return ""

    @property
    def is_thread_owner_actor(self) -> bool:
        """True when the actor opened the issue."""
        return self.actor.lower() == self.issue.author.lower()


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def comment_from_github_response(data: dict) -> IssueComment:
    """Build an IssueComment from a GitHub REST comment payload."""
    user = data.get("user") or {}
    return IssueComment(
        id=int(data.get("id") or 0),
        body=data.get("body") or "",
        author=user.get("login") or "ghost",
        created_at=_parse_timestamp(data.get("created_at")),
    )


class IssueSearchHit(BaseModel):
    """One issue returned by the GitHub issue search API."""

    number: int
    title: str = ""
    url: str = ""
    state: str = ""
    body: str = ""

    @classmethod
    def from_github_response(cls, data: dict) -> "IssueSearchHit":
        return cls(
            number=int(data.get("number") or 0),
            title=data.get("title") or "",
            url=data.get("html_url") or "",
            state=data.get("state") or "",
            body=(data.get("body") or "")[:1000],
        )
