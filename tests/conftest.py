"""Pytest configuration and shared fixtures for the concierge tests."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from src.concierge.config import OrchestrationConfig
from src.concierge.github.models import EventName, IssueComment, IssueData, IssueEvent


BOT = "support-concierge[bot]"
FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock advancing one minute per call."""

    def __init__(self, start: datetime = FIXED_NOW):
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + timedelta(minutes=1)
        return value


def make_issue_event(
    body: str = "The app crashes on startup.",
    title: str = "App crashes",
    author: str = "alice",
    number: int = 42,
    action: str = "opened",
) -> IssueEvent:
    return IssueEvent(
        event_name=EventName.ISSUES,
        action=action,
        owner="acme",
        repository="widgets",
        issue=IssueData(number=number, title=title, body=body, author=author),
    )


def make_comment_event(
    body: str,
    commenter: str = "alice",
    author: str = "alice",
    issue_body: str = "The app crashes on startup.",
    title: str = "App crashes",
    number: int = 42,
    comment_id: int = 1001,
    created_at: Optional[datetime] = None,
) -> IssueEvent:
    return IssueEvent(
        event_name=EventName.ISSUE_COMMENT,
        action="created",
        owner="acme",
        repository="widgets",
        issue=IssueData(number=number, title=title, body=issue_body, author=author),
        comment=IssueComment(
            id=comment_id,
            body=body,
            author=commenter,
            created_at=created_at or FIXED_NOW,
        ),
    )


@pytest.fixture
def config() -> OrchestrationConfig:
    """Default orchestration config with the test bot identity."""
    return OrchestrationConfig(bot_username=BOT)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
