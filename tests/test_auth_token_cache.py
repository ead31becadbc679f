"""Auth token caching tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import httpx
import jwt
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from github_write_mcp.auth import GitHubAppAuth, build_token_provider
from github_write_mcp.config import AppConfig, GitHubAppCredentials, PolicyConfig, RateLimitConfig
from github_write_mcp.errors import ErrorKind, SafeError


def _write_test_key(tmp_path: Path) -> Path:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    path = tmp_path / "key.pem"
    path.write_bytes(pem)
    return path


def _creds(tmp_path: Path) -> GitHubAppCredentials:
    return GitHubAppCredentials(app_id=1, installation_id=2, private_key_path=_write_test_key(tmp_path))


def _cfg(*, token: str | None, app: GitHubAppCredentials | None) -> AppConfig:
    return AppConfig(
        github_token=token,
        github_app=app,
        policy=PolicyConfig(whitelist=(), write_secret=None, auth_token=None),
        create_rate_limit=RateLimitConfig(max_count=5, window_s=3600.0),
        merge_rate_limit=RateLimitConfig(max_count=5, window_s=3600.0),
        audit_log_path=None,
    )


def _expiry(minutes: int) -> str:
    return (datetime.now(timezone.utc) + timedelta(minutes=minutes)).isoformat().replace("+00:00", "Z")


@pytest.mark.asyncio
async def test_installation_token_is_cached_when_not_near_expiry(tmp_path: Path) -> None:
    calls = {"n": 0}
    seen: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        seen["path"] = request.url.path
        seen["jwt"] = request.headers["Authorization"].removeprefix("Bearer ")
        return httpx.Response(201, json={"token": f"t{calls['n']}", "expires_at": _expiry(5)})

    auth = GitHubAppAuth(credentials=_creds(tmp_path), transport=httpx.MockTransport(handler))

    t1 = await auth.get_token()
    t2 = await auth.get_token()

    assert t1 == t2 == "t1"
    assert calls["n"] == 1
    assert seen["path"] == "/app/installations/2/access_tokens"
    claims = jwt.decode(seen["jwt"], options={"verify_signature": False})
    assert claims["iss"] == "1"


@pytest.mark.asyncio
async def test_installation_token_is_refreshed_near_expiry(tmp_path: Path) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        # Expires in the refresh margin.
        expires = (datetime.now(timezone.utc) + timedelta(seconds=10)).isoformat().replace("+00:00", "Z")
        return httpx.Response(201, json={"token": f"t{calls['n']}", "expires_at": expires})

    auth = GitHubAppAuth(credentials=_creds(tmp_path), transport=httpx.MockTransport(handler))

    assert await auth.get_token() == "t1"
    assert await auth.get_token() == "t2"


@pytest.mark.asyncio
async def test_revoked_installation_is_forbidden(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "Bad credentials"})

    auth = GitHubAppAuth(credentials=_creds(tmp_path), transport=httpx.MockTransport(handler))

    with pytest.raises(SafeError) as exc:
        await auth.get_token()
    assert exc.value.kind is ErrorKind.FORBIDDEN


@pytest.mark.asyncio
async def test_incomplete_token_response_is_rejected(tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(201, json={"token": "t"})

    auth = GitHubAppAuth(credentials=_creds(tmp_path), transport=httpx.MockTransport(handler))

    with pytest.raises(SafeError) as exc:
        await auth.get_token()
    assert exc.value.kind is ErrorKind.GITHUB


@pytest.mark.asyncio
async def test_personal_token_wins_over_app_credentials(tmp_path: Path) -> None:
    provider = build_token_provider(_cfg(token="pat", app=_creds(tmp_path)))
    assert await provider() == "pat"


def test_missing_credentials_are_a_config_error() -> None:
    with pytest.raises(SafeError) as exc:
        build_token_provider(_cfg(token=None, app=None))
    assert exc.value.kind is ErrorKind.CONFIG
