"""GitHub API access and event models for the concierge."""

from src.concierge.github.client import GitHubAPIError, GitHubClient, RateLimitError
from src.concierge.github.models import (
    EventName,
    IssueComment,
    IssueData,
    IssueEvent,
    IssueSearchHit,
    comment_from_github_response,
)

__all__ = [
    "EventName",
    "GitHubAPIError",
    "GitHubClient",
    "IssueComment",
    "IssueData",
    "IssueEvent",
    "IssueSearchHit",
    "RateLimitError",
    "comment_from_github_response",
]
