"""GitHub credentials.

Two token sources: a static personal access token, or a GitHub App installation
(App JWT signing, then an installation token exchange cached until shortly before it
expires). Tokens and private key content must never be exposed.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import httpx
import jwt

from .config import AppConfig, GitHubAppCredentials
from .errors import ErrorKind, SafeError

TokenProvider = Callable[[], Awaitable[str]]

# Refresh an installation token this long before GitHub expires it.
REFRESH_MARGIN = timedelta(seconds=30)


@dataclass(frozen=True, slots=True)
class InstallationToken:
    token: str
    expires_at: datetime

    def fresh(self, now: datetime) -> bool:
        return self.expires_at - now > REFRESH_MARGIN


def _parse_token_response(resp: httpx.Response) -> InstallationToken:
    if resp.status_code in (401, 403):
        raise SafeError(kind=ErrorKind.FORBIDDEN, message="GitHub App authentication failed")
    if resp.status_code >= 400:
        raise SafeError(kind=ErrorKind.GITHUB, message="Failed to obtain installation token")

    data = resp.json()
    token = data.get("token") if isinstance(data, dict) else None
    expires_raw = data.get("expires_at") if isinstance(data, dict) else None
    if not token or not expires_raw:
        raise SafeError(kind=ErrorKind.GITHUB, message="GitHub token response missing required fields")
    # RFC3339, e.g. 2025-01-01T00:00:00Z
    expires_at = datetime.fromisoformat(expires_raw.replace("Z", "+00:00")).astimezone(timezone.utc)
    return InstallationToken(token=token, expires_at=expires_at)


class StaticToken:
    """Token provider for a personal access token."""

    def __init__(self, token: str) -> None:
        self._token = token

    async def get_token(self) -> str:
        return self._token


class GitHubAppAuth:
    """GitHub App installation token provider with caching."""

    def __init__(self, *, credentials: GitHubAppCredentials, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._credentials = credentials
        self._transport = transport
        self._lock = asyncio.Lock()
        self._cached: InstallationToken | None = None

    def _app_jwt(self) -> str:
        # Backdated to tolerate clock drift; GitHub caps the lifetime at 10 minutes.
        now = datetime.now(timezone.utc)
        claims = {
            "iat": int((now - timedelta(seconds=60)).timestamp()),
            "exp": int((now + timedelta(minutes=9)).timestamp()),
            "iss": str(self._credentials.app_id),
        }
        pem = self._credentials.private_key_path.read_text(encoding="utf-8")
        return jwt.encode(claims, pem, algorithm="RS256")

    async def _exchange(self) -> InstallationToken:
        url = f"https://api.github.com/app/installations/{self._credentials.installation_id}/access_tokens"
        headers = {
            "Authorization": f"Bearer {self._app_jwt()}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        async with httpx.AsyncClient(follow_redirects=False, timeout=30.0, transport=self._transport) as client:
            resp = await client.post(url, headers=headers, json={})
        return _parse_token_response(resp)

    async def get_token(self) -> str:
        """Return a valid installation token, exchanging a new one when needed."""
        async with self._lock:
            if self._cached is None or not self._cached.fresh(datetime.now(timezone.utc)):
                self._cached = await self._exchange()
            return self._cached.token


def build_token_provider(config: AppConfig) -> TokenProvider:
    """Pick the token source; a personal access token wins over App credentials."""
    if config.github_token:
        return StaticToken(config.github_token).get_token
    if config.github_app is not None:
        return GitHubAppAuth(credentials=config.github_app).get_token
    raise SafeError(kind=ErrorKind.CONFIG, message="Missing GitHub credentials")
