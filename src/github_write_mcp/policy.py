"""Policy evaluation (the capability gate).

This module enforces:
- write/read tool classification
- the path-embedded write secret
- the optional bearer credential
- the repository whitelist (`owner/name` or `owner/*`)
"""

from __future__ import annotations

import hmac
from dataclasses import dataclass

from .errors import ErrorKind, SafeError

WRITE_TOOLS: frozenset[str] = frozenset(
    {
        "create_branch",
        "commit_files",
        "create_pull_request",
        "update_pull_request",
        "merge_pull_request",
    }
)


@dataclass(frozen=True, slots=True)
class PolicyDecision:
    """Policy decision result."""

    allowed: bool
    reason: str | None = None


def is_write_tool(tool_name: str) -> bool:
    """Return True if the tool performs remote writes."""
    return tool_name in WRITE_TOOLS


def _secrets_equal(supplied: str, expected: str) -> bool:
    return hmac.compare_digest(supplied.encode("utf-8"), expected.encode("utf-8"))


class Policy:
    """Policy engine."""

    def __init__(
        self,
        *,
        whitelist: tuple[str, ...],
        write_secret: str | None,
        auth_token: str | None = None,
    ) -> None:
        """Create a policy evaluator."""
        self._whitelist = whitelist
        self._write_secret = write_secret
        self._auth_token = auth_token

    @property
    def writes_configured(self) -> bool:
        """Return whether a write secret is configured at all."""
        return self._write_secret is not None

    def check_bearer(self, authorization: str | None) -> PolicyDecision:
        """Validate an optional `Authorization` header.

        A missing header is accepted; a present one must carry the configured token.
        """
        if self._auth_token is None or not authorization:
            return PolicyDecision(True)
        if not authorization.startswith("Bearer "):
            return PolicyDecision(False, "Invalid bearer token")
        if not _secrets_equal(authorization[len("Bearer ") :].strip(), self._auth_token):
            return PolicyDecision(False, "Invalid bearer token")
        return PolicyDecision(True)

    def check_write_access(self, tool_name: str, path_secret: str | None) -> None:
        """Gate a tool call on the write secret.

        Raises:
            SafeError: WRITES_DISABLED when no secret is configured, FORBIDDEN when the
                supplied path secret does not match.
        """
        if not is_write_tool(tool_name):
            return
        if self._write_secret is None:
            raise SafeError(
                kind=ErrorKind.WRITES_DISABLED,
                message="Write operations are disabled (MCP_WRITE_SECRET not configured)",
            )
        if not path_secret or not _secrets_equal(path_secret, self._write_secret):
            raise SafeError(
                kind=ErrorKind.FORBIDDEN,
                message=f"Write operation '{tool_name}' requires the secret path",
                hint="Use the /mcp/<SECRET> endpoint for write operations",
            )

    def check_repo_allowed(self, owner: str, name: str) -> PolicyDecision:
        """Return whether `owner/name` matches a whitelist pattern.

        An empty whitelist allows nothing.
        """
        full_name = f"{owner}/{name}"
        for pattern in self._whitelist:
            if pattern.endswith("/*"):
                if owner == pattern[:-2]:
                    return PolicyDecision(True)
            elif pattern == full_name:
                return PolicyDecision(True)
        return PolicyDecision(False, f"Repository {full_name} is not whitelisted")

    def require_repo_allowed(self, owner: str, name: str, *, action: str) -> None:
        """Raise FORBIDDEN unless the repository is whitelisted for `action`."""
        decision = self.check_repo_allowed(owner, name)
        if not decision.allowed:
            raise SafeError(
                kind=ErrorKind.FORBIDDEN,
                message=f"Repository {owner}/{name} is not whitelisted for {action}",
                hint=f'Add "{owner}/{name}" or "{owner}/*" to PR_WHITELIST',
            )
