"""Property-based tests for GitHub webhook event parsing.

**Validates: only opened issues and created issue comments start an
invocation; malformed payloads are ignored**

Feature: support-concierge

Testing Configuration:
- Library: Hypothesis (Python)
- Minimum iterations: 100 per property test
- Tag format: Feature: support-concierge, Property N: <property_text>
"""

from hypothesis import given, settings, strategies as st

from src.concierge.github.models import EventName
from src.concierge.webhook.handler import WebhookHandler


# =============================================================================
# Hypothesis Strategies for Generating Valid GitHub Payloads
# =============================================================================


@st.composite
def valid_github_username(draw: st.DrawFn) -> str:
    """Generate a valid GitHub username.

    Alphanumeric characters and single inner hyphens, 1-39 characters.
    """
    return draw(
        st.text(
            alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789-"),
            min_size=1,
            max_size=39,
        ).filter(lambda x: not x.startswith("-") and not x.endswith("-") and "--" not in x)
    )


@st.composite
def valid_repo_name(draw: st.DrawFn) -> str:
    return draw(
        st.text(
            alphabet=st.sampled_from("abcdefghijklmnopqrstuvwxyz0123456789-_."),
            min_size=1,
            max_size=100,
        ).filter(lambda x: not x.startswith("."))
    )


@st.composite
def issue_payload(draw: st.DrawFn, action: str = "opened") -> dict:
    return {
        "action": action,
        "issue": {
            "number": draw(st.integers(min_value=1, max_value=10**6)),
            "title": draw(st.text(max_size=100)),
            "body": draw(st.one_of(st.none(), st.text(max_size=500))),
            "labels": [{"name": n} for n in draw(st.lists(st.sampled_from(["bug", "docs", "help wanted"]), max_size=3))],
            "user": {"login": draw(valid_github_username())},
        },
        "repository": {
            "name": draw(valid_repo_name()),
            "owner": {"login": draw(valid_github_username())},
        },
    }


@st.composite
def comment_payload(draw: st.DrawFn) -> dict:
    payload = draw(issue_payload(action="created"))
    payload["comment"] = {
        "id": draw(st.integers(min_value=1, max_value=10**9)),
        "body": draw(st.text(max_size=500)),
        "user": {"login": draw(valid_github_username())},
        "created_at": "2024-05-01T12:00:00Z",
    }
    return payload


# =============================================================================
# Property 1: Supported events parse into IssueEvent
# =============================================================================


class TestSupportedEvents:
    """Property 1: Supported events parse with all fields preserved.

    *For any* valid issues.opened or issue_comment.created payload, the
    parsed event carries the thread key, actor and only the new text.
    """

    @settings(max_examples=100)
    @given(payload=issue_payload())
    def test_issue_opened_parses(self, payload):
        event = WebhookHandler().parse_event("issues", payload)

        assert event is not None
        assert event.event_name == EventName.ISSUES
        assert event.comment is None
        issue = payload["issue"]
        repo = payload["repository"]
        assert event.thread_key == f"{repo['owner']['login']}/{repo['name']}#{issue['number']}"
        assert event.actor == issue["user"]["login"]
        assert event.new_text == (issue["body"] or "")
        assert event.is_thread_owner_actor

    @settings(max_examples=100)
    @given(payload=comment_payload())
    def test_comment_created_parses(self, payload):
        event = WebhookHandler().parse_event("issue_comment", payload)

        assert event is not None
        assert event.is_comment_event
        assert event.actor == payload["comment"]["user"]["login"]
        assert event.new_text == payload["comment"]["body"]
        assert event.comment.id == payload["comment"]["id"]
        assert event.comment.created_at is not None

    def test_reopened_issue_is_supported(self):
        payload = {
            "action": "reopened",
            "issue": {"number": 3, "title": "t", "body": "b", "user": {"login": "alice"}},
            "repository": {"name": "widgets", "owner": {"login": "acme"}},
        }
        assert WebhookHandler().parse_event("issues", payload) is not None


# =============================================================================
# Property 2: Everything else is ignored
# =============================================================================


class TestIgnoredEvents:
    """Property 2: Unsupported or malformed payloads parse to None."""

    @settings(max_examples=100)
    @given(
        payload=issue_payload(),
        action=st.sampled_from(["closed", "edited", "labeled", "deleted", "assigned"]),
    )
    def test_unsupported_issue_actions_are_ignored(self, payload, action):
        payload["action"] = action
        assert WebhookHandler().parse_event("issues", payload) is None

    @settings(max_examples=100)
    @given(payload=comment_payload())
    def test_pull_request_comments_are_ignored(self, payload):
        payload["issue"]["pull_request"] = {"url": "https://api.github.com/repos/acme/widgets/pulls/1"}
        assert WebhookHandler().parse_event("issue_comment", payload) is None

    @settings(max_examples=100)
    @given(payload=comment_payload())
    def test_edited_comments_are_ignored(self, payload):
        payload["action"] = "edited"
        assert WebhookHandler().parse_event("issue_comment", payload) is None

    def test_unknown_event_name(self):
        assert WebhookHandler().parse_event("push", {"action": "opened"}) is None

    def test_non_dict_payload(self):
        assert WebhookHandler().parse_event("issues", ["not", "a", "dict"]) is None

    def test_missing_comment_author(self):
        payload = {
            "action": "created",
            "issue": {"number": 1, "user": {"login": "alice"}},
            "repository": {"name": "widgets", "owner": {"login": "acme"}},
            "comment": {"id": 5, "body": "hi", "user": {"login": "  "}},
        }
        assert WebhookHandler().parse_event("issue_comment", payload) is None

    def test_missing_comment_object(self):
        payload = {
            "action": "created",
            "issue": {"number": 1, "user": {"login": "alice"}},
            "repository": {"name": "widgets", "owner": {"login": "acme"}},
        }
        assert WebhookHandler().parse_event("issue_comment", payload) is None

    def test_invalid_issue_number(self):
        payload = {
            "action": "opened",
            "issue": {"number": 0, "user": {"login": "alice"}},
            "repository": {"name": "widgets", "owner": {"login": "acme"}},
        }
        assert WebhookHandler().parse_event("issues", payload) is None

    def test_missing_repository(self):
        payload = {"action": "opened", "issue": {"number": 1, "user": {"login": "alice"}}}
        assert WebhookHandler().parse_event("issues", payload) is None

    def test_labels_are_extracted_from_objects_and_strings(self):
        payload = {
            "action": "opened",
            "issue": {
                "number": 1,
                "user": {"login": "alice"},
                "labels": [{"name": " bug "}, "docs", {"name": ""}, 7],
            },
            "repository": {"name": "widgets", "owner": {"login": "acme"}},
        }
        event = WebhookHandler().parse_event("issues", payload)
        assert event.issue.labels == ["bug", "docs"]
