"""Guarded pull request merge.

Order matters: whitelist, merge budget, mergeability resolution, head-SHA guard,
mergeable gate, then the merge itself. The merge endpoint is never called unless every
guard passed. Head branch deletion afterwards is best effort.
"""

from __future__ import annotations

import logging
from typing import Any

from .branches import get_default_branch
from .errors import ErrorKind, SafeError, as_safe_error
from .mergeability import checks_summary, resolve
from .models import ChecksSummary, MergeIntent, RepositoryReference
from .runtime import Runtime

logger = logging.getLogger(__name__)

# Failures raised by a guard (as opposed to a failed remote call).
_BLOCKING_KINDS = frozenset(
    {
        ErrorKind.USER_INPUT,
        ErrorKind.FORBIDDEN,
        ErrorKind.RATE_LIMITED,
        ErrorKind.SHA_MISMATCH,
        ErrorKind.MERGEABILITY_PENDING,
        ErrorKind.NOT_MERGEABLE,
    }
)


def _ref_of(pr: dict[str, Any], side: str) -> dict[str, Any]:
    ref = pr.get(side)
    if not isinstance(ref, dict) or not isinstance(ref.get("sha"), str) or not isinstance(ref.get("ref"), str):
        raise SafeError(kind=ErrorKind.GITHUB, message="Unexpected pull request response")
    return ref


async def _delete_head_branch(
    runtime: Runtime, repo: RepositoryReference, *, head: dict[str, Any], base_ref: str
) -> tuple[bool, str | None]:
    """Delete the merged head branch; returns (deleted, reason_not_deleted)."""
    head_ref = head["ref"]
    if head_ref == base_ref:
        return False, f"Refusing to delete base branch '{head_ref}'"

    head_repo = head.get("repo")
    if isinstance(head_repo, dict) and head_repo.get("full_name") not in (None, repo.key):
        return False, "Head branch belongs to another repository"

    try:
        default_branch = await get_default_branch(runtime, repo)
    except SafeError:
        logger.warning("Could not read default branch of %s; keeping head branch", repo)
        return False, "Default branch could not be determined"
    if head_ref == default_branch:
        return False, f"Refusing to delete default branch '{head_ref}'"

    try:
        await runtime.github.request_json(method="DELETE", path=f"{repo.api_path}/git/refs/heads/{head_ref}")
    except SafeError as exc:
        logger.warning("Head branch deletion failed for %s: %s", repo, exc.message)
        return False, "Branch deletion failed"
    return True, None


async def merge_pull_request(
    runtime: Runtime,
    repo: RepositoryReference,
    intent: MergeIntent,
    *,
    correlation_id: str,
) -> dict[str, Any]:
    """Merge a pull request after every safety guard passed."""
    pr_number = intent.pr_number
    try:
        runtime.policy.require_repo_allowed(repo.owner, repo.name, action="PR merge")
        if not runtime.merge_limiter.allow(repo.key):
            raise SafeError(kind=ErrorKind.RATE_LIMITED, message=f"Merge rate limit exceeded for {repo}")

        pr = await resolve(runtime, repo, pr_number)
        head = _ref_of(pr, "head")
        base = _ref_of(pr, "base")

        if intent.head_sha_guard != head["sha"]:
            raise SafeError(
                kind=ErrorKind.SHA_MISMATCH,
                message=(
                    f"Head SHA mismatch: expected {intent.head_sha_guard} but PR head is {head['sha']}. "
                    "Fetch latest and retry."
                ),
                data={"expected_sha": intent.head_sha_guard, "actual_sha": head["sha"]},
            )

        mergeable = pr.get("mergeable")
        if mergeable is None:
            raise SafeError(
                kind=ErrorKind.MERGEABILITY_PENDING,
                message="PR mergeable status is still being computed by GitHub. Please try again in a few moments.",
                data={"mergeable_state": pr.get("mergeable_state")},
            )

        if mergeable is not True:
            try:
                summary = await checks_summary(runtime, repo, head["sha"])
            except SafeError:
                summary = ChecksSummary(unavailable=("statuses", "check runs"))
            data: dict[str, Any] = {"mergeable_state": pr.get("mergeable_state"), "failing": summary.failing}
            if summary.unavailable:
                data["checks_unavailable"] = list(summary.unavailable)
            raise SafeError(
                kind=ErrorKind.NOT_MERGEABLE,
                message=f"PR not mergeable: {pr.get('mergeable_state')}. {summary.message}",
                data=data,
            )
    except Exception as exc:
        err = as_safe_error(exc)
        runtime.record(
            correlation_id=correlation_id,
            action="PR_MERGE_BLOCKED" if err.kind in _BLOCKING_KINDS else "PR_MERGE_FAILED",
            repo=repo,
            pr_number=pr_number,
            error=err.message,
            reason=err.kind.value,
        )
        raise

    body: dict[str, Any] = {"merge_method": intent.merge_method, "sha": intent.head_sha_guard}
    if intent.commit_title:
        body["commit_title"] = intent.commit_title
    if intent.commit_message:
        body["commit_message"] = intent.commit_message

    try:
        merge_resp = await runtime.github.request_json(
            method="PUT",
            path=f"{repo.api_path}/pulls/{pr_number}/merge",
            json_body=body,
        )
        if not isinstance(merge_resp, dict):
            raise SafeError(kind=ErrorKind.GITHUB, message="Unexpected merge response")
    except Exception as exc:
        err = as_safe_error(exc)
        runtime.record(
            correlation_id=correlation_id,
            action="PR_MERGE_FAILED",
            repo=repo,
            pr_number=pr_number,
            error=err.message,
            reason=err.kind.value,
        )
        raise

    branch_deleted = False
    delete_note = None
    if intent.delete_branch_after_merge:
        branch_deleted, delete_note = await _delete_head_branch(runtime, repo, head=head, base_ref=base["ref"])

    runtime.record(
        correlation_id=correlation_id,
        action="PR_MERGED",
        repo=repo,
        pr_number=pr_number,
        method=intent.merge_method,
        sha=merge_resp.get("sha"),
        head_sha=head["sha"],
        branch_deleted=branch_deleted,
    )

    result: dict[str, Any] = {
        "success": True,
        "merged": bool(merge_resp.get("merged", True)),
        "message": merge_resp.get("message"),
        "sha": merge_resp.get("sha"),
        "branch_deleted": branch_deleted,
    }
    if delete_note is not None:
        result["branch_delete_note"] = delete_note
    return result
