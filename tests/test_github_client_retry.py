"""Foundational tests: retry/backoff behavior."""

from __future__ import annotations

import httpx
import pytest
from github_write_mcp.config import LimitsConfig
from github_write_mcp.errors import ErrorKind, SafeError
from github_write_mcp.github_client import GitHubClient


async def _token() -> str:
    return "tok"


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.mark.asyncio
async def test_github_client_retries_on_503_then_succeeds() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] < 3:
            return httpx.Response(503, json={"message": "unavailable"})
        return httpx.Response(200, json={"ok": True})

    sleep = SleepRecorder()
    client = GitHubClient(
        token_provider=_token,
        limits=LimitsConfig(max_attempts=4, max_backoff_s=4.0),
        transport=httpx.MockTransport(handler),
        sleep=sleep,
    )

    out = await client.request_json(method="GET", path="/repos/acme/proj")

    assert out == {"ok": True}
    assert calls["n"] == 3
    assert sleep.delays == [1.0, 2.0]


@pytest.mark.asyncio
async def test_backoff_is_capped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, json={"message": "bad gateway"})

    sleep = SleepRecorder()
    client = GitHubClient(
        token_provider=_token,
        limits=LimitsConfig(max_attempts=5, max_backoff_s=3.0),
        transport=httpx.MockTransport(handler),
        sleep=sleep,
    )

    with pytest.raises(SafeError) as exc:
        await client.request_json(method="GET", path="/repos/acme/proj")

    assert exc.value.kind is ErrorKind.GITHUB
    assert exc.value.status_code == 502
    assert sleep.delays == [1.0, 2.0, 3.0, 3.0]


@pytest.mark.asyncio
async def test_network_errors_are_retried_then_reported() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        raise httpx.ConnectError("boom", request=request)

    client = GitHubClient(
        token_provider=_token,
        limits=LimitsConfig(max_attempts=3),
        transport=httpx.MockTransport(handler),
        sleep=SleepRecorder(),
    )

    with pytest.raises(SafeError) as exc:
        await client.request_json(method="GET", path="/repos/acme/proj")

    assert exc.value.kind is ErrorKind.NETWORK
    assert calls["n"] == 3


@pytest.mark.asyncio
async def test_client_errors_are_not_retried() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(422, json={"message": "Validation Failed"})

    client = GitHubClient(
        token_provider=_token,
        limits=LimitsConfig(max_attempts=4),
        transport=httpx.MockTransport(handler),
        sleep=SleepRecorder(),
    )

    with pytest.raises(SafeError):
        await client.request_json(method="POST", path="/repos/acme/proj/pulls", json_body={"title": "t"})

    assert calls["n"] == 1
