"""GitHub API client for issue thread interactions.

The concierge talks to GitHub for four things only:
- reading an issue's comment history (persisted state lives there)
- posting the composed reply
- adding routing labels
- searching the repository's issues for research evidence

Transient failures (5xx, timeouts, dropped connections) are retried with
jittered exponential backoff. Rate limiting is surfaced immediately as
RateLimitError; the caller decides whether to wait.

Source:
- src/concierge/github/models.py (IssueComment, IssueSearchHit)
- src/concierge/config.py (github_token, github_base_url)
"""

import asyncio
import logging
import random
import time
from typing import Any, Dict, List, Optional

import httpx

from src.concierge.github.models import (
    IssueComment,
    IssueSearchHit,
    comment_from_github_response,
)


logger = logging.getLogger(__name__)


class GitHubAPIError(Exception):
    """A GitHub request that could not be completed.

    Attributes:
        message: What went wrong.
        status_code: HTTP status, or None when no response arrived.
        response_body: Raw body returned by GitHub, if any.
        request_url: URL of the failed request.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_body: Optional[str] = None,
        request_url: Optional[str] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_body = response_body
        self.request_url = request_url
        super().__init__(message)


class RateLimitError(GitHubAPIError):
    """GitHub refused the request because the token ran out of quota.

    Attributes:
        reset_at: Epoch seconds at which the quota refills.
        retry_after: Seconds to wait, from Retry-After or the reset time.
    """

    def __init__(
        self,
        message: str,
        reset_at: Optional[int] = None,
        retry_after: Optional[int] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.reset_at = reset_at
        self.retry_after = retry_after


def _int_header(headers: httpx.Headers, name: str) -> Optional[int]:
    raw = headers.get(name)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _is_rate_limited(response: httpx.Response) -> bool:
    """True for 429, or a 403 that reports an exhausted quota."""
    if response.status_code == 429:
        return True
    return response.status_code == 403 and _int_header(response.headers, "x-ratelimit-remaining") == 0


class GitHubClient:
    """Async client for the issue endpoints the concierge needs.

    Works against github.com and GitHub Enterprise Server (set base_url to
    the Enterprise API root).

    Attributes:
        token: Token sent as a bearer credential.
        base_url: API root without trailing slash.
        max_retries: Extra attempts after the first for transient failures.
        base_delay: First backoff window in seconds.
        max_delay: Cap on any single backoff window.
        timeout: Per-request timeout in seconds.

    Example:
        >>> async with GitHubClient(token="ghp_xxx") as gh:
        ...     comments = await gh.list_issue_comments("acme", "widgets", 42)
    """

    TRANSIENT_STATUS_CODES = frozenset({408, 500, 502, 503, 504})

    PAGE_SIZE = 100
    MAX_COMMENT_PAGES = 10

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        timeout: float = 30.0,
    ):
        self.token = token
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazily created HTTP client; recreated after close()."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self._default_headers(),
                timeout=self.timeout,
            )
        return self._client

    def _default_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "SupportConcierge/1.0",
        }

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def _backoff_delay(self, attempt: int) -> float:
        """Full-jitter delay for a 0-indexed retry attempt."""
        window = min(self.base_delay * (2 ** attempt), self.max_delay)
        return random.uniform(0, window)

    def _rate_limit_error(self, response: httpx.Response) -> RateLimitError:
        headers = response.headers
        reset_at = _int_header(headers, "x-ratelimit-reset")
        retry_after = _int_header(headers, "retry-after")
        if retry_after is None and reset_at is not None:
            retry_after = max(0, reset_at - int(time.time()))

        logger.warning(
            "GitHub rate limit hit",
            extra={
                "status_code": response.status_code,
                "reset_at": reset_at,
                "retry_after": retry_after,
                "quota": _int_header(headers, "x-ratelimit-limit"),
            },
        )
        return RateLimitError(
            message="GitHub API rate limit exceeded",
            status_code=response.status_code,
            reset_at=reset_at,
            retry_after=retry_after,
        )

    async def _wait_before_retry(self, attempt: int, path: str, reason: str) -> None:
        delay = self._backoff_delay(attempt)
        logger.warning(
            "Retrying GitHub request",
            extra={
                "path": path,
                "reason": reason,
                "attempt": attempt + 1,
                "max_retries": self.max_retries,
                "delay": round(delay, 3),
            },
        )
        await asyncio.sleep(delay)

    async def _request(
        self,
        method: str,
        path: str,
        json_data: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """Send one API request, retrying transient failures.

        Raises:
            RateLimitError: On quota exhaustion; never retried here.
            GitHubAPIError: On any other error status, or once retries run out.
        """
        last_error: Optional[Exception] = None

        for attempt in range(self.max_retries + 1):
            can_retry = attempt < self.max_retries
            try:
                response = await self.client.request(method, path, json=json_data, params=params)
            except httpx.RequestError as e:
                last_error = e
                if can_retry:
                    await self._wait_before_retry(attempt, path, type(e).__name__)
                    continue
                break

            if _is_rate_limited(response):
                raise self._rate_limit_error(response)

            if response.status_code in self.TRANSIENT_STATUS_CODES and can_retry:
                await self._wait_before_retry(attempt, path, f"HTTP {response.status_code}")
                continue

            if response.is_error:
                body = response.text
                logger.error(
                    "GitHub request failed",
                    extra={
                        "method": method,
                        "path": path,
                        "status_code": response.status_code,
                        "response_body": body[:500],
                    },
                )
                raise GitHubAPIError(
                    message=f"GitHub API error: {response.status_code}",
                    status_code=response.status_code,
                    response_body=body,
                    request_url=str(response.url),
                )
            return response

        logger.error(
            "GitHub request gave up",
            extra={"method": method, "path": path, "last_error": str(last_error)},
        )
        raise GitHubAPIError(
            message=f"Request failed after {self.max_retries} retries: {last_error}",
            request_url=f"{self.base_url}{path}",
        )

    async def list_issue_comments(
        self,
        owner: str,
        repo: str,
        issue_number: int,
    ) -> List[IssueComment]:
        """List the comments of an issue in creation order.

        Follows pagination up to MAX_COMMENT_PAGES pages.

        Raises:
            GitHubAPIError: If a request fails.
        """
        path = f"/repos/{owner}/{repo}/issues/{issue_number}/comments"
        comments: List[IssueComment] = []

        for page in range(1, self.MAX_COMMENT_PAGES + 1):
            response = await self._request(
                method="GET",
                path=path,
                params={"per_page": self.PAGE_SIZE, "page": page},
            )
            batch = response.json()
            if not isinstance(batch, list):
                break
            comments.extend(comment_from_github_response(item) for item in batch)
            if len(batch) < self.PAGE_SIZE:
                break
        else:
            logger.warning(
                "Comment history truncated at page limit",
                extra={"owner": owner, "repo": repo, "issue_number": issue_number},
            )

        logger.debug(
            "Fetched issue comments",
            extra={"owner": owner, "repo": repo, "issue_number": issue_number, "count": len(comments)},
        )
        return comments

    async def create_comment(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        body: str,
    ) -> Dict[str, Any]:
        """Post a markdown comment and return GitHub's record of it."""
        path = f"/repos/{owner}/{repo}/issues/{issue_number}/comments"

        response = await self._request(method="POST", path=path, json_data={"body": body})

        result = response.json()
        logger.info(
            "Posted issue comment",
            extra={"thread": f"{owner}/{repo}#{issue_number}", "comment_id": result.get("id"), "chars": len(body)},
        )
        return result

    async def add_labels(
        self,
        owner: str,
        repo: str,
        issue_number: int,
        labels: List[str],
    ) -> List[Dict[str, Any]]:
        """Add labels to an issue.

        Returns:
            List of all labels on the issue after adding.

        Raises:
            GitHubAPIError: If the request fails.
        """
        path = f"/repos/{owner}/{repo}/issues/{issue_number}/labels"

        logger.info(
            "Adding labels to issue",
            extra={"owner": owner, "repo": repo, "issue_number": issue_number, "labels": labels},
        )

        response = await self._request(method="POST", path=path, json_data={"labels": labels})
        return response.json()

    async def search_issues(
        self,
        owner: str,
        repo: str,
        query: str,
        limit: int = 5,
    ) -> List[IssueSearchHit]:
        """Search issues in a repository.

        Args:
            owner: Repository owner.
            repo: Repository name.
            query: Free-text search terms.
            limit: Maximum number of hits.

        Raises:
            GitHubAPIError: If the request fails.
        """
        q = f"repo:{owner}/{repo} is:issue {query}".strip()
        response = await self._request(
            method="GET",
            path="/search/issues",
            params={"q": q, "per_page": limit},
        )
        items = response.json().get("items") or []
        return [IssueSearchHit.from_github_response(item) for item in items[:limit]]

    async def health_check(self) -> bool:
        """True when the API answers the rate limit probe."""
        try:
            response = await self.client.get("/rate_limit")
        except httpx.HTTPError as e:
            logger.warning("GitHub health check failed", extra={"error": str(e)})
            return False
        return response.status_code == 200
