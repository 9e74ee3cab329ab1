"""Unit tests for the async GitHub client and the completion client."""

import asyncio
import json
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from src.concierge.github.client import GitHubAPIError, GitHubClient, RateLimitError
from src.concierge.llm.client import ChatCompletionClient, LLMError, LLMTimeoutError, parse_json_response


def run_async(coro):
    return asyncio.run(coro)


def _client(handler, **kwargs) -> GitHubClient:
    """GitHubClient whose HTTP layer is served by ``handler``."""
    kwargs.setdefault("base_delay", 0.0)
    client = GitHubClient(token="ghp_test", base_url="https://api.github.test", **kwargs)
    client._client = httpx.AsyncClient(
        base_url=client.base_url,
        headers=client._default_headers(),
        transport=httpx.MockTransport(handler),
    )
    return client


def _comment(comment_id, login="alice", body="hi"):
    return {
        "id": comment_id,
        "body": body,
        "user": {"login": login},
        "created_at": "2024-05-01T12:00:00Z",
    }


# =============================================================================
# GitHubClient
# =============================================================================


class TestListIssueComments:
    def test_follows_pagination(self):
        pages = {
            "1": [_comment(i) for i in range(GitHubClient.PAGE_SIZE)],
            "2": [_comment(1000, login="support-concierge[bot]")],
        }
        requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json=pages[request.url.params["page"]])

        comments = run_async(_client(handler).list_issue_comments("acme", "widgets", 42))

        assert len(comments) == GitHubClient.PAGE_SIZE + 1
        assert comments[-1].author == "support-concierge[bot]"
        assert comments[0].created_at is not None
        assert requests[0].url.path == "/repos/acme/widgets/issues/42/comments"
        assert requests[0].headers["Authorization"] == "Bearer ghp_test"

    def test_missing_user_becomes_ghost(self):
        def handler(request):
            return httpx.Response(200, json=[{"id": 1, "body": "x", "user": None}])

        comments = run_async(_client(handler).list_issue_comments("acme", "widgets", 1))
        assert comments[0].author == "ghost"
        assert comments[0].created_at is None

    def test_not_found_raises(self):
        def handler(request):
            return httpx.Response(404, json={"message": "Not Found"})

        with pytest.raises(GitHubAPIError) as exc_info:
            run_async(_client(handler).list_issue_comments("acme", "widgets", 1))
        assert exc_info.value.status_code == 404


class TestWrites:
    def test_create_comment_posts_body(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["json"] = json.loads(request.content)
            return httpx.Response(201, json={"id": 77})

        result = run_async(_client(handler).create_comment("acme", "widgets", 42, "Hello"))
        assert result == {"id": 77}
        assert seen == {"method": "POST", "json": {"body": "Hello"}}

    def test_add_labels(self):
        def handler(request):
            assert request.url.path == "/repos/acme/widgets/issues/42/labels"
            return httpx.Response(200, json=[{"name": n} for n in json.loads(request.content)["labels"]])

        result = run_async(_client(handler).add_labels("acme", "widgets", 42, ["bug"]))
        assert result == [{"name": "bug"}]

    def test_search_issues_builds_repo_query(self):
        def handler(request):
            assert request.url.params["q"] == "repo:acme/widgets is:issue crash startup"
            return httpx.Response(
                200,
                json={"items": [{"number": 5, "title": "Crash", "html_url": "u", "state": "closed"}]},
            )

        hits = run_async(_client(handler).search_issues("acme", "widgets", "crash startup"))
        assert [h.number for h in hits] == [5]


class TestRetries:
    def test_transient_errors_are_retried(self):
        calls = {"count": 0}

        def handler(request):
            calls["count"] += 1
            if calls["count"] < 3:
                return httpx.Response(502, text="bad gateway")
            return httpx.Response(200, json=[])

        assert run_async(_client(handler).list_issue_comments("acme", "widgets", 1)) == []
        assert calls["count"] == 3

    def test_gives_up_after_max_retries(self):
        def handler(request):
            return httpx.Response(503, text="unavailable")

        with pytest.raises(GitHubAPIError) as exc_info:
            run_async(_client(handler, max_retries=1).create_comment("acme", "widgets", 1, "x"))
        assert exc_info.value.status_code == 503

    def test_connection_errors_are_retried_then_raised(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(GitHubAPIError) as exc_info:
            run_async(_client(handler, max_retries=2).create_comment("acme", "widgets", 1, "x"))
        assert "after 2 retries" in exc_info.value.message

    def test_rate_limit_is_not_retried(self):
        calls = {"count": 0}

        def handler(request):
            calls["count"] += 1
            return httpx.Response(
                403,
                headers={"x-ratelimit-remaining": "0", "retry-after": "30"},
                text="rate limited",
            )

        with pytest.raises(RateLimitError) as exc_info:
            run_async(_client(handler).list_issue_comments("acme", "widgets", 1))
        assert exc_info.value.retry_after == 30
        assert calls["count"] == 1

    def test_backoff_is_capped(self):
        client = GitHubClient(token="t", base_delay=1.0, max_delay=4.0)
        for attempt in range(10):
            assert 0 <= client._backoff_delay(attempt) <= 4.0


class TestHealthCheck:
    def test_healthy_when_rate_limit_endpoint_answers(self):
        def handler(request):
            assert request.url.path == "/rate_limit"
            return httpx.Response(200, json={"resources": {}})

        assert run_async(_client(handler).health_check()) is True

    def test_unhealthy_on_connection_failure(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert run_async(_client(handler).health_check()) is False

    def test_unhealthy_on_error_status(self):
        def handler(request):
            return httpx.Response(401, json={"message": "Bad credentials"})

        assert run_async(_client(handler).health_check()) is False


# =============================================================================
# Completion client
# =============================================================================


class TestParseJsonResponse:
    def test_plain_object(self):
        assert parse_json_response('{"a": 1}') == {"a": 1}

    def test_markdown_fence(self):
        assert parse_json_response('```json\n{"a": 1}\n```') == {"a": 1}

    def test_prose_around_object(self):
        assert parse_json_response('Sure! {"off_topic": false} Hope that helps.') == {"off_topic": False}

    def test_non_object_raises(self):
        with pytest.raises(ValueError):
            parse_json_response("[1, 2]")


class TestChatCompletionClient:
    def _client(self, llm, timeout=5.0) -> ChatCompletionClient:
        client = ChatCompletionClient(llm_url="http://llm.test/v1", model_name="test-model", timeout=timeout)
        client._llm = llm
        return client

    def test_complete_json_parses_answer(self):
        llm = Mock()
        llm.ainvoke = AsyncMock(return_value=Mock(content='{"has_enough_info": true}'))
        assert run_async(self._client(llm).complete_json("sys", "user")) == {"has_enough_info": True}

    def test_invalid_json_raises_llm_error(self):
        llm = Mock()
        llm.ainvoke = AsyncMock(return_value=Mock(content="no json here"))
        with pytest.raises(LLMError):
            run_async(self._client(llm).complete_json("sys", "user"))

    def test_transport_failure_raises_llm_error(self):
        llm = Mock()
        llm.ainvoke = AsyncMock(side_effect=ConnectionError("refused"))
        with pytest.raises(LLMError) as exc_info:
            run_async(self._client(llm).complete("sys", "user"))
        assert isinstance(exc_info.value.cause, ConnectionError)

    def test_timeout_raises_timeout_error(self):
        async def slow(messages):
            await asyncio.sleep(5)

        llm = Mock()
        llm.ainvoke = slow
        with pytest.raises(LLMTimeoutError):
            run_async(self._client(llm, timeout=0.01).complete("sys", "user"))
