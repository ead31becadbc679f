"""Idempotent branch creation.

Creating a branch that already exists is a success, not an error; this also covers
the race where another caller creates the ref between our lookup and our POST.
"""

from __future__ import annotations

import logging

from .errors import ErrorKind, SafeError, as_safe_error
from .models import BranchResult, RepositoryReference
from .runtime import Runtime

logger = logging.getLogger(__name__)


async def get_branch_sha(runtime: Runtime, repo: RepositoryReference, branch: str) -> str | None:
    """Return the commit sha of `refs/heads/<branch>`, or None when it does not exist."""
    try:
        ref_data = await runtime.github.request_json(
            method="GET",
            path=f"{repo.api_path}/git/ref/heads/{branch}",
        )
    except SafeError as exc:
        if exc.kind is ErrorKind.NOT_FOUND:
            return None
        raise
    if not isinstance(ref_data, dict):
        raise SafeError(kind=ErrorKind.GITHUB, message="Unexpected ref response")
    obj = ref_data.get("object")
    if isinstance(obj, dict) and isinstance(obj.get("sha"), str):
        return obj["sha"]
    raise SafeError(kind=ErrorKind.GITHUB, message="Unexpected ref response")


async def get_default_branch(runtime: Runtime, repo: RepositoryReference) -> str:
    """Read the repository's actual default branch."""
    data = await runtime.github.request_json(method="GET", path=repo.api_path)
    if not isinstance(data, dict) or not isinstance(data.get("default_branch"), str):
        raise SafeError(kind=ErrorKind.GITHUB, message="Unexpected repository response")
    return data["default_branch"]


async def _branch_summary_sha(runtime: Runtime, repo: RepositoryReference, branch: str) -> str | None:
    try:
        data = await runtime.github.request_json(method="GET", path=f"{repo.api_path}/branches/{branch}")
    except SafeError as exc:
        if exc.kind is ErrorKind.NOT_FOUND:
            return None
        raise
    commit = data.get("commit") if isinstance(data, dict) else None
    if isinstance(commit, dict) and isinstance(commit.get("sha"), str):
        return commit["sha"]
    return None


async def resolve_base_commit(
    runtime: Runtime, repo: RepositoryReference, from_ref: str | None
) -> tuple[str, str]:
    """Resolve `(base_branch, sha)` for a new branch.

    Tries `from_ref` first, then the repository's default branch through the ref
    lookup and the branch summary endpoint.
    """
    tried: list[str] = []
    if from_ref:
        tried.append(from_ref)
        sha = await get_branch_sha(runtime, repo, from_ref)
        if sha is not None:
            return from_ref, sha
        logger.info("Base ref %s not found in %s; falling back to default branch", from_ref, repo)

    default_branch = await get_default_branch(runtime, repo)
    if default_branch not in tried:
        tried.append(default_branch)
        sha = await get_branch_sha(runtime, repo, default_branch)
        if sha is not None:
            return default_branch, sha

    sha = await _branch_summary_sha(runtime, repo, default_branch)
    if sha is not None:
        return default_branch, sha

    raise SafeError(
        kind=ErrorKind.NOT_FOUND,
        message=f"No base commit found (tried: {', '.join(tried)})",
    )


async def create_branch(
    runtime: Runtime,
    repo: RepositoryReference,
    branch: str,
    *,
    from_ref: str | None = None,
    correlation_id: str,
) -> BranchResult:
    """Create `branch`, or report it as existing; exactly one audit entry either way."""
    try:
        runtime.policy.require_repo_allowed(repo.owner, repo.name, action="branch creation")

        existing_sha = await get_branch_sha(runtime, repo, branch)
        if existing_sha is not None:
            result = BranchResult(branch=branch, sha=existing_sha, created=False)
            runtime.record(
                correlation_id=correlation_id, action="BRANCH_EXISTS", repo=repo, branch=branch, sha=existing_sha
            )
            return result

        base_branch, base_sha = await resolve_base_commit(runtime, repo, from_ref)

        try:
            await runtime.github.request_json(
                method="POST",
                path=f"{repo.api_path}/git/refs",
                json_body={"ref": f"refs/heads/{branch}", "sha": base_sha},
            )
        except SafeError as exc:
            if exc.status_code == 422 and exc.hint and "reference already exists" in exc.hint.lower():
                raced_sha = await get_branch_sha(runtime, repo, branch)
                if raced_sha is None:
                    raise
                runtime.record(
                    correlation_id=correlation_id, action="BRANCH_EXISTS", repo=repo, branch=branch, sha=raced_sha
                )
                return BranchResult(branch=branch, sha=raced_sha, created=False)
            raise

    except Exception as exc:
        err = as_safe_error(exc)
        runtime.record(
            correlation_id=correlation_id,
            action="BRANCH_CREATE_FAILED",
            repo=repo,
            branch=branch,
            error=err.message,
            reason=err.kind.value,
        )
        raise

    runtime.record(
        correlation_id=correlation_id,
        action="BRANCH_CREATED",
        repo=repo,
        branch=branch,
        base=base_branch,
        sha=base_sha,
    )
    return BranchResult(branch=branch, sha=base_sha, created=True, base=base_branch)
