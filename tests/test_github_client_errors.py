"""GitHub REST client: error translation and request shape."""

from __future__ import annotations

import json

import httpx
import pytest
from github_write_mcp.config import LimitsConfig
from github_write_mcp.errors import ErrorKind, SafeError, classify
from github_write_mcp.github_client import GitHubClient


async def _token() -> str:
    return "tok"


async def _no_sleep(delay: float) -> None:
    return None


def _client(handler) -> GitHubClient:
    return GitHubClient(
        token_provider=_token,
        limits=LimitsConfig(max_attempts=2),
        transport=httpx.MockTransport(handler),
        sleep=_no_sleep,
    )


@pytest.mark.asyncio
async def test_422_becomes_remote_validation_with_github_detail() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            422,
            json={"message": "Validation Failed", "errors": [{"message": "A pull request already exists"}]},
        )

    with pytest.raises(SafeError) as exc:
        await _client(handler).request_json(method="POST", path="/repos/acme/proj/pulls", json_body={})

    err = exc.value
    assert err.kind is ErrorKind.REMOTE_VALIDATION
    assert err.status_code == 422
    assert err.hint == "Validation Failed: A pull request already exists"
    assert classify(err)["code"] == -32003


@pytest.mark.asyncio
async def test_403_with_exhausted_quota_is_rate_limited() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            403,
            headers={"x-ratelimit-remaining": "0"},
            json={"message": "API rate limit exceeded"},
        )

    with pytest.raises(SafeError) as exc:
        await _client(handler).request_json(method="GET", path="/repos/acme/proj")

    assert exc.value.kind is ErrorKind.RATE_LIMITED
    assert classify(exc.value)["code"] == -32004


@pytest.mark.parametrize("status", [401, 403])
@pytest.mark.asyncio
async def test_auth_failures_are_forbidden(status: int) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, json={"message": "Resource not accessible by integration"})

    with pytest.raises(SafeError) as exc:
        await _client(handler).request_json(method="GET", path="/repos/acme/proj")

    assert exc.value.kind is ErrorKind.FORBIDDEN
    assert exc.value.hint == "Resource not accessible by integration"


@pytest.mark.asyncio
async def test_404_is_not_found_even_without_json_body() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="nope")

    with pytest.raises(SafeError) as exc:
        await _client(handler).request_json(method="GET", path="/repos/acme/proj/git/ref/heads/x")

    assert exc.value.kind is ErrorKind.NOT_FOUND
    assert exc.value.hint is None


@pytest.mark.asyncio
async def test_no_content_returns_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(204)

    out = await _client(handler).request_json(method="DELETE", path="/repos/acme/proj/git/refs/heads/x")
    assert out is None


@pytest.mark.asyncio
async def test_request_carries_auth_headers_params_and_body() -> None:
    seen: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["accept"] = request.headers["Accept"]
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"number": 1})

    out = await _client(handler).request_json(
        method="POST",
        path="/repos/acme/proj/pulls",
        json_body={"title": "t"},
        params={"state": "open"},
    )

    assert out == {"number": 1}
    assert seen["auth"] == "Bearer tok"
    assert seen["accept"] == "application/vnd.github+json"
    assert seen["url"] == "https://api.github.com/repos/acme/proj/pulls?state=open"
    assert seen["body"] == {"title": "t"}


def test_only_api_github_com_is_allowed() -> None:
    with pytest.raises(SafeError) as exc:
        GitHubClient(token_provider=_token, limits=LimitsConfig(), api_base_url="https://evil.example")
    assert exc.value.kind is ErrorKind.CONFIG
