"""Configuration loading for github-write-mcp.

Configuration is supplied by the host environment, not by the agent. Sensitive values
(GitHub token, private key path, write secret, bearer token) must never be emitted to
agents, logs or audit entries.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ErrorKind, SafeError


@dataclass(frozen=True, slots=True)
class PolicyConfig:
    """Capability guardrails."""

    whitelist: tuple[str, ...]
    write_secret: str | None
    auth_token: str | None
    pr_enabled: bool = True
    pr_merge_enabled: bool = True
    pr_update_enabled: bool = True


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    """One fixed-window budget."""

    max_count: int
    window_s: float


@dataclass(frozen=True, slots=True)
class LimitsConfig:
    """Non-functional safety limits."""

    # Network
    total_timeout_s: float = 45.0
    connect_timeout_s: float = 5.0
    read_timeout_s: float = 30.0

    # Retries
    max_attempts: int = 4
    max_backoff_s: float = 4.0

    # Payload limits
    commit_max_files: int = 20
    commit_max_file_bytes: int = 1024 * 1024
    read_file_max_bytes: int = 1024 * 1024

    # Mergeability polling
    mergeable_poll_attempts: int = 5
    mergeable_poll_delay_s: float = 0.8


@dataclass(frozen=True, slots=True)
class GitHubAppCredentials:
    """GitHub App installation binding (alternative to a personal access token)."""

    app_id: int
    installation_id: int
    private_key_path: Path


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Complete service configuration."""

    github_token: str | None
    github_app: GitHubAppCredentials | None
    policy: PolicyConfig
    create_rate_limit: RateLimitConfig
    merge_rate_limit: RateLimitConfig
    audit_log_path: Path | None
    limits: LimitsConfig = field(default_factory=LimitsConfig)
    host: str = "localhost"
    port: int = 8788


def _parse_bool(value: str | None, *, default: bool = False) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    return normalized in {"1", "true", "yes", "on"}


def _parse_patterns(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    parts = [p.strip() for p in value.split(",")]
    return tuple(p for p in parts if p)


def _parse_int(name: str, default: int, *, minimum: int = 1) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise SafeError(kind=ErrorKind.CONFIG, message=f"{name} must be an integer") from exc
    if value < minimum:
        raise SafeError(kind=ErrorKind.CONFIG, message=f"{name} must be >= {minimum}")
    return value


def _validate_whitelist(patterns: tuple[str, ...]) -> tuple[str, ...]:
    for pattern in patterns:
        owner, sep, name = pattern.partition("/")
        if not sep or not owner or not name or "/" in name:
            raise SafeError(
                kind=ErrorKind.CONFIG,
                message="PR_WHITELIST entries must be 'owner/name' or 'owner/*'",
            )
    return patterns


def _load_github_app() -> GitHubAppCredentials | None:
    app_id_raw = os.getenv("GITHUB_APP_ID")
    installation_id_raw = os.getenv("GITHUB_APP_INSTALLATION_ID")
    private_key_path_raw = os.getenv("GITHUB_APP_PRIVATE_KEY_PATH")
    if not (app_id_raw or installation_id_raw or private_key_path_raw):
        return None
    if not app_id_raw or not installation_id_raw or not private_key_path_raw:
        raise SafeError(
            kind=ErrorKind.CONFIG,
            message="GitHub App configuration is incomplete "
            "(GITHUB_APP_ID, GITHUB_APP_INSTALLATION_ID, GITHUB_APP_PRIVATE_KEY_PATH)",
        )

    try:
        app_id = int(app_id_raw)
        installation_id = int(installation_id_raw)
    except ValueError as exc:
        raise SafeError(
            kind=ErrorKind.CONFIG, message="GITHUB_APP_ID and GITHUB_APP_INSTALLATION_ID must be integers"
        ) from exc

    key_path = Path(private_key_path_raw)
    if not key_path.is_absolute():
        raise SafeError(kind=ErrorKind.CONFIG, message="GITHUB_APP_PRIVATE_KEY_PATH must be an absolute path")
    # Fail fast if unreadable; never echo the path.
    if not key_path.is_file():
        raise SafeError(kind=ErrorKind.CONFIG, message="GitHub App private key file is missing or not a file")

    return GitHubAppCredentials(app_id=app_id, installation_id=installation_id, private_key_path=key_path)


def load_config_from_env() -> AppConfig:
    """Load and validate configuration from environment variables.

    Raises:
        SafeError: If configuration is missing/invalid.
    """
    github_token = os.getenv("GITHUB_PAT") or os.getenv("GITHUB_TOKEN") or None
    github_app = _load_github_app()
    if github_token is None and github_app is None:
        raise SafeError(
            kind=ErrorKind.CONFIG,
            message="Missing GitHub credentials (GITHUB_PAT or GITHUB_APP_* variables)",
        )

    policy = PolicyConfig(
        whitelist=_validate_whitelist(_parse_patterns(os.getenv("PR_WHITELIST"))),
        write_secret=os.getenv("MCP_WRITE_SECRET") or None,
        auth_token=os.getenv("MCP_AUTH_TOKEN") or None,
        pr_enabled=_parse_bool(os.getenv("PR_ENABLED"), default=True),
        pr_merge_enabled=_parse_bool(os.getenv("PR_MERGE_ENABLED"), default=True),
        pr_update_enabled=_parse_bool(os.getenv("PR_UPDATE_ENABLED"), default=True),
    )

    # Windows are given in milliseconds.
    create_rate_limit = RateLimitConfig(
        max_count=_parse_int("PR_RATE_LIMIT_MAX", 5),
        window_s=_parse_int("PR_RATE_LIMIT_WINDOW", 60 * 60 * 1000) / 1000.0,
    )
    merge_rate_limit = RateLimitConfig(
        max_count=_parse_int("PR_MERGE_RATE_LIMIT_MAX", 5),
        window_s=_parse_int("PR_MERGE_RATE_LIMIT_WINDOW", 60 * 60 * 1000) / 1000.0,
    )

    audit_path: Path | None = None
    audit_path_raw = os.getenv("PR_AUDIT_LOG", "./pr_audit.log")
    if audit_path_raw:
        audit_path = Path(audit_path_raw)

    limits = LimitsConfig(
        total_timeout_s=_parse_int("GITHUB_API_TIMEOUT", 45000) / 1000.0,
        # GITHUB_RETRY_ATTEMPTS counts retries, not attempts.
        max_attempts=_parse_int("GITHUB_RETRY_ATTEMPTS", 3, minimum=0) + 1,
    )

    return AppConfig(
        github_token=github_token,
        github_app=github_app,
        policy=policy,
        create_rate_limit=create_rate_limit,
        merge_rate_limit=merge_rate_limit,
        audit_log_path=audit_path,
        limits=limits,
        host=os.getenv("HOST", "localhost"),
        port=_parse_int("PORT", 8788),
    )
