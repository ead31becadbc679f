"""Per-server runtime dependencies shared across tool calls and write components."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .audit import AuditLogger, build_entry
from .config import AppConfig
from .github_client import GitHubClient
from .github_graphql_client import GitHubGraphQLClient
from .models import RepositoryReference
from .policy import Policy
from .ratelimit import RateLimiter


@dataclass(frozen=True, slots=True)
class Runtime:
    """Per-server runtime dependencies shared across tool calls."""

    config: AppConfig
    audit: AuditLogger
    policy: Policy
    github: GitHubClient
    graphql: GitHubGraphQLClient
    create_limiter: RateLimiter
    merge_limiter: RateLimiter
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep)

    def record(self, *, correlation_id: str, action: str, repo: RepositoryReference, **fields: Any) -> None:
        """Append one audit entry for a write component run."""
        self.audit.write_entry(
            build_entry(correlation_id=correlation_id, action=action, repository=repo.key, **fields)
        )
