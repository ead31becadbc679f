"""GitHub HTTP clients.

`GitHubHTTP` holds the connection policy shared by the REST client below and the
GraphQL client:
- only https://api.github.com, redirects are never followed
- network failures and 5xx are retried with capped exponential backoff
- finite timeouts
- failed responses become a `SafeError` with an `ErrorKind` and the HTTP status
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from .auth import TokenProvider
from .config import LimitsConfig
from .errors import ErrorKind, SafeError, github_auth_forbidden, kind_for_status

logger = logging.getLogger(__name__)

API_BASE_URL = "https://api.github.com"


def backoff_delay_s(retry_index: int, *, cap_s: float) -> float:
    """Delay before retry number `retry_index` (1s, 2s, 4s, ...), capped at `cap_s`."""
    return min(cap_s, float(2 ** (retry_index - 1)))


def remote_message(resp: httpx.Response) -> str | None:
    """GitHub's error `message` with any `errors[].message` details appended."""
    try:
        payload = resp.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(payload, dict) or not isinstance(payload.get("message"), str):
        return None
    errors = payload.get("errors")
    details = [
        e["message"]
        for e in (errors if isinstance(errors, list) else [])
        if isinstance(e, dict) and isinstance(e.get("message"), str)
    ]
    if details:
        return f"{payload['message']}: {'; '.join(details)}"
    return payload["message"]


def error_for_response(resp: httpx.Response, *, message: str) -> SafeError:
    """Translate a failed GitHub response.

    A 403 with an exhausted quota header is rate limiting, not a permission failure.
    """
    hint = remote_message(resp)
    kind = kind_for_status(resp.status_code, quota_exhausted=resp.headers.get("x-ratelimit-remaining") == "0")
    if kind is ErrorKind.FORBIDDEN:
        return github_auth_forbidden(status_code=resp.status_code, hint=hint)
    if kind is ErrorKind.RATE_LIMITED:
        message = "GitHub API rate limit reached"
    return SafeError(kind=kind, message=message, hint=hint, status_code=resp.status_code)


class GitHubHTTP:
    """Authenticated, retrying access to api.github.com."""

    def __init__(
        self,
        *,
        token_provider: TokenProvider,
        limits: LimitsConfig,
        api_base_url: str = API_BASE_URL,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Create a client.

        Args:
            token_provider: Async callable that returns a GitHub token.
            limits: Timeouts/retry limits.
            api_base_url: Must be https://api.github.com (enforced).
            transport: Optional httpx transport for tests.
            sleep: Backoff sleep, replaceable in tests.
        """
        self._token_provider = token_provider
        self._limits = limits
        self._api_base_url = api_base_url.rstrip("/")
        self._transport = transport
        self._sleep = sleep

        if self._api_base_url != API_BASE_URL:
            raise SafeError(kind=ErrorKind.CONFIG, message=f"Only {API_BASE_URL} is allowed")

    def _headers(self, token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "github-write-mcp",
            "Cache-Control": "no-cache",
        }

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(
            timeout=self._limits.total_timeout_s,
            connect=self._limits.connect_timeout_s,
            read=self._limits.read_timeout_s,
        )

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send a request, retrying network errors and 5xx.

        Returns the final response, which may still carry an error status.
        """
        token = await self._token_provider()
        attempts = self._limits.max_attempts
        async with httpx.AsyncClient(
            follow_redirects=False,
            timeout=self._timeout(),
            transport=self._transport,
        ) as client:
            for attempt in range(1, attempts + 1):
                try:
                    resp = await client.request(method, url, headers=self._headers(token), **kwargs)
                except (httpx.TimeoutException, httpx.TransportError) as exc:
                    if attempt == attempts:
                        raise SafeError(kind=ErrorKind.NETWORK, message="Network request to GitHub failed") from exc
                    logger.warning(
                        "Retrying %s %s after %s (attempt %s/%s)",
                        method,
                        url,
                        exc.__class__.__name__,
                        attempt,
                        attempts,
                    )
                else:
                    if not 500 <= resp.status_code <= 599 or attempt == attempts:
                        return resp
                    logger.warning(
                        "Retrying %s %s after status %s (attempt %s/%s)",
                        method,
                        url,
                        resp.status_code,
                        attempt,
                        attempts,
                    )
                await self._sleep(backoff_delay_s(attempt, cap_s=self._limits.max_backoff_s))

        raise SafeError(kind=ErrorKind.NETWORK, message="GitHub request was not attempted")


class GitHubClient(GitHubHTTP):
    """Minimal GitHub REST client."""

    async def request_json(
        self,
        *,
        method: str,
        path: str,
        json_body: dict | None = None,
        params: dict[str, str] | None = None,
    ) -> object:
        """Make a request and return decoded JSON.

        GitHub APIs may return an object (dict), an array (list), or no content (None).
        """
        resp = await self._send(method, f"{self._api_base_url}{path}", json=json_body, params=params)
        if resp.status_code >= 400:
            raise error_for_response(resp, message=f"GitHub request failed ({resp.status_code})")
        if resp.status_code == 204 or not resp.content:
            return None
        try:
            return resp.json()
        except json.JSONDecodeError as exc:
            raise SafeError(kind=ErrorKind.GITHUB, message="GitHub returned invalid JSON") from exc
