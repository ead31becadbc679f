"""Mergeability resolution and check aggregation.

GitHub computes `mergeable` asynchronously after every push; `null` means "still
computing". The resolver polls for a bounded number of attempts and hands back the
last observation, leaving the still-null case to the caller.
"""

from __future__ import annotations

import logging
from typing import Any

from .errors import ErrorKind, SafeError
from .models import ChecksSummary, RepositoryReference
from .polling import poll_until
from .runtime import Runtime

logger = logging.getLogger(__name__)

FAILING_CHECK_CONCLUSIONS = frozenset({"failure", "timed_out", "cancelled", "action_required"})


async def get_pull_request(runtime: Runtime, repo: RepositoryReference, pr_number: int) -> dict[str, Any]:
    """Single read of a pull request."""
    data = await runtime.github.request_json(method="GET", path=f"{repo.api_path}/pulls/{pr_number}")
    if not isinstance(data, dict):
        raise SafeError(kind=ErrorKind.GITHUB, message="Unexpected pull request response")
    return data


async def resolve(runtime: Runtime, repo: RepositoryReference, pr_number: int) -> dict[str, Any]:
    """Poll the pull request until `mergeable` is known or attempts run out."""
    limits = runtime.config.limits
    return await poll_until(
        lambda: get_pull_request(runtime, repo, pr_number),
        lambda pr: pr.get("mergeable") is not None,
        attempts=limits.mergeable_poll_attempts,
        delay_s=limits.mergeable_poll_delay_s,
        sleep=runtime.sleep,
    )


async def _read_surface(runtime: Runtime, repo: RepositoryReference, path: str, key: str) -> tuple[list[Any], Any]:
    payload = await runtime.github.request_json(method="GET", path=f"{repo.api_path}/{path}")
    items = payload.get(key) if isinstance(payload, dict) else None
    return (items if isinstance(items, list) else []), payload


async def checks_summary(runtime: Runtime, repo: RepositoryReference, sha: str) -> ChecksSummary:
    """Union the failing legacy statuses and check runs for `sha`.

    Each surface is read on its own: when one fails the other is still reported and
    the failed one is listed as unavailable. Only when both fail is the error raised.
    """
    unavailable: list[str] = []
    status_error: SafeError | None = None
    status: Any = None
    statuses: list[Any] = []
    check_runs: list[Any] = []

    try:
        statuses, status = await _read_surface(runtime, repo, f"commits/{sha}/status", "statuses")
    except SafeError as exc:
        logger.warning("Commit statuses unavailable for %s@%s (%s)", repo, sha, exc.kind.value)
        status_error = exc
        unavailable.append("statuses")

    try:
        check_runs, _ = await _read_surface(runtime, repo, f"commits/{sha}/check-runs", "check_runs")
    except SafeError as exc:
        logger.warning("Check runs unavailable for %s@%s (%s)", repo, sha, exc.kind.value)
        if status_error is not None:
            raise status_error from exc
        unavailable.append("check runs")

    failing_statuses = tuple(
        str(s.get("context"))
        for s in statuses
        if isinstance(s, dict) and s.get("state") != "success"
    )
    failing_checks = tuple(
        str(c.get("name"))
        for c in check_runs
        if isinstance(c, dict) and c.get("conclusion") in FAILING_CHECK_CONCLUSIONS
    )
    state = status.get("state") if isinstance(status, dict) else None
    return ChecksSummary(
        failing_statuses=failing_statuses,
        failing_checks=failing_checks,
        state=state if isinstance(state, str) else None,
        total_statuses=len(statuses),
        total_checks=len(check_runs),
        unavailable=tuple(unavailable),
    )
