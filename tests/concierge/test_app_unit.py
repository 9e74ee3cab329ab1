"""Tests for the FastAPI webhook service."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from src.concierge import main
from src.concierge.events.models import EventType
from src.concierge.github.client import GitHubAPIError
from src.concierge.webhook.handler import WebhookHandler
from tests.conftest import make_comment_event


ISSUE_PAYLOAD = {
    "action": "opened",
    "issue": {"number": 42, "title": "Crash", "body": "It crashes", "user": {"login": "alice"}},
    "repository": {"name": "widgets", "owner": {"login": "acme"}},
}


@pytest.fixture
def wired(monkeypatch):
    """Wire the module globals without running the lifespan."""
    workflow = AsyncMock()
    emitter = AsyncMock()
    monkeypatch.setattr(main, "workflow", workflow)
    monkeypatch.setattr(main, "webhook_handler", WebhookHandler())
    monkeypatch.setattr(main, "event_emitter", emitter)
    return workflow, emitter


@pytest.fixture
def client() -> TestClient:
    return TestClient(main.app)


class TestProbes:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy"}

    def test_not_ready_until_wired(self, client, monkeypatch):
        monkeypatch.setattr(main, "workflow", None)
        response = client.get("/ready")
        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"

    def test_ready_when_wired(self, client, wired):
        assert client.get("/ready").json()["status"] == "ready"

    def test_ready_reports_github_health(self, client, wired, monkeypatch):
        github = AsyncMock()
        github.health_check.return_value = True
        monkeypatch.setattr(main, "github_client", github)
        assert client.get("/ready").json()["dependencies"]["github"] == "healthy"

    def test_not_ready_when_github_unreachable(self, client, wired, monkeypatch):
        github = AsyncMock()
        github.health_check.return_value = False
        monkeypatch.setattr(main, "github_client", github)

        response = client.get("/ready")

        assert response.status_code == 503
        assert response.json()["dependencies"]["github"] == "unreachable"

    def test_metrics_endpoint(self, client):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")


class TestWebhook:
    def test_accepts_and_processes_issue(self, client, wired):
        workflow, _ = wired
        response = client.post("/webhooks/github", json=ISSUE_PAYLOAD, headers={"X-GitHub-Event": "issues"})

        assert response.json() == {"status": "accepted", "thread_key": "acme/widgets#42"}
        workflow.run.assert_awaited_once()
        assert workflow.run.await_args.args[0].thread_key == "acme/widgets#42"

    def test_ignores_unsupported_events(self, client, wired):
        workflow, _ = wired
        response = client.post("/webhooks/github", json=ISSUE_PAYLOAD, headers={"X-GitHub-Event": "push"})
        assert response.json()["status"] == "ignored"
        workflow.run.assert_not_called()

    def test_invalid_json(self, client, wired):
        response = client.post(
            "/webhooks/github",
            content=b"{not json",
            headers={"X-GitHub-Event": "issues", "Content-Type": "application/json"},
        )
        assert response.json()["status"] == "error"

    def test_not_initialized(self, client, monkeypatch):
        monkeypatch.setattr(main, "workflow", None)
        response = client.post("/webhooks/github", json=ISSUE_PAYLOAD, headers={"X-GitHub-Event": "issues"})
        assert response.json()["message"] == "Concierge not initialized"


class TestProcessEvent:
    def test_history_failure_is_logged_and_emitted(self, wired):
        workflow, emitter = wired
        workflow.run.side_effect = GitHubAPIError("Not found", status_code=404)

        asyncio.run(main.process_event(make_comment_event("hello")))

        event = emitter.emit.await_args.args[0]
        assert event.event_type == EventType.ERROR
        assert event.details["error_type"] == "GitHubAPIError"

    def test_unexpected_failure_does_not_propagate(self, wired):
        workflow, emitter = wired
        workflow.run.side_effect = RuntimeError("boom")

        asyncio.run(main.process_event(make_comment_event("hello")))

        assert emitter.emit.await_count == 1


class TestRedactSecret:
    @pytest.mark.parametrize(
        "value,expected",
        [("ghp_abcdef", "ghp_******"), ("abc", "***"), ("", "")],
    )
    def test_redact(self, value, expected):
        assert main._redact_secret(value) == expected
