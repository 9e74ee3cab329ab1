"""GitHub webhook handler for the concierge.

Parses raw webhook payloads into IssueEvent objects. Only two kinds of
events start an invocation:

- ``issues`` with action ``opened`` or ``reopened``
- ``issue_comment`` with action ``created`` on an issue (not a pull request)

Signature validation is expected to happen in front of this service.

GitHub Webhook Payload Structure (issue_comment event):
{
  "action": "created",
  "issue": {
    "number": 123,
    "title": "Build fails",
    "body": "Issue body",
    "labels": [{"name": "bug"}],
    "user": {"login": "alice"}
  },
  "comment": {
    "id": 456,
    "body": "Here is the log",
    "user": {"login": "bob"},
    "created_at": "2024-01-01T00:00:00Z"
  },
  "repository": {
    "name": "repo-name",
    "owner": {"login": "owner-name"}
  }
}
"""

import logging
from typing import Any, Dict, List, Optional

from src.concierge.github.models import (
    EventName,
    IssueData,
    IssueEvent,
    comment_from_github_response,
)

logger = logging.getLogger(__name__)


SUPPORTED_ACTIONS = {
    EventName.ISSUES: {"opened", "reopened"},
    EventName.ISSUE_COMMENT: {"created"},
}


class WebhookHandler:
    """Parses GitHub webhook payloads into IssueEvent objects."""

    def parse_event(self, event_name: str, payload: Dict[str, Any]) -> Optional[IssueEvent]:
        """Parse a webhook payload.

        Args:
            event_name: Value of the X-GitHub-Event header.
            payload: The raw webhook payload.

        Returns:
            IssueEvent if the payload is a supported event, None otherwise.
            Returns None for:
            - Unsupported event names or actions
            - Comments on pull requests
            - Missing required fields
        """
        if not isinstance(payload, dict):
            logger.warning("Invalid payload: expected dict, got %s", type(payload))
            return None

        try:
            name = EventName(event_name)
        except ValueError:
            logger.debug("Ignoring unsupported event: %s", event_name)
            return None

        action = payload.get("action")
        if action not in SUPPORTED_ACTIONS[name]:
            logger.debug("Ignoring unsupported action: %s.%s", event_name, action)
            return None

        try:
            issue_data = payload.get("issue")
            if not isinstance(issue_data, dict):
                logger.warning("Missing or invalid 'issue' field in payload")
                return None

            if issue_data.get("pull_request") is not None:
                logger.debug("Ignoring pull request comment")
                return None

            repo_data = payload.get("repository")
            if not isinstance(repo_data, dict):
                logger.warning("Missing or invalid 'repository' field in payload")
                return None

            issue_number = issue_data.get("number")
            if not isinstance(issue_number, int) or issue_number <= 0:
                logger.warning("Invalid issue number: %s", issue_number)
                return None

            author = self._extract_user_login(issue_data.get("user"), "issue author")
            owner = self._extract_user_login(repo_data.get("owner"), "repository owner")
            repo_name = repo_data.get("name")
            if author is None or owner is None:
                return None
            if not isinstance(repo_name, str) or not repo_name.strip():
                logger.warning("Invalid or empty repository name: %s", repo_name)
                return None

            body = issue_data.get("body")
            issue = IssueData(
                number=issue_number,
                title=(issue_data.get("title") or "").strip(),
                body=body if isinstance(body, str) else "",
                author=author,
                labels=self._extract_labels(issue_data.get("labels", [])),
            )

            comment = None
            if name == EventName.ISSUE_COMMENT:
                comment_data = payload.get("comment")
                if not isinstance(comment_data, dict):
                    logger.warning("Missing or invalid 'comment' field in payload")
                    return None
                if self._extract_user_login(comment_data.get("user"), "comment author") is None:
                    return None
                comment = comment_from_github_response(comment_data)

            event = IssueEvent(
                event_name=name,
                action=action,
                owner=owner,
                repository=repo_name.strip(),
                issue=issue,
                comment=comment,
            )

            logger.info(
                "Parsed webhook event: event=%s, action=%s, thread=%s, actor=%s",
                name.value,
                action,
                event.thread_key,
                event.actor,
            )
            return event

        except Exception as e:
            logger.exception("Unexpected error parsing webhook payload: %s", e)
            return None

    def _extract_labels(self, labels_data: Any) -> List[str]:
        if not isinstance(labels_data, list):
            return []

        labels = []
        for label in labels_data:
            if isinstance(label, dict):
                name = label.get("name")
                if isinstance(name, str) and name.strip():
                    labels.append(name.strip())
            elif isinstance(label, str) and label.strip():
                labels.append(label.strip())
        return labels

    def _extract_user_login(self, user_data: Any, context: str) -> Optional[str]:
        if not isinstance(user_data, dict):
            logger.warning("Missing or invalid %s data: %s", context, type(user_data))
            return None

        login = user_data.get("login")
        if not isinstance(login, str) or not login.strip():
            logger.warning("Invalid or empty %s login: %s", context, login)
            return None
        return login.strip()
