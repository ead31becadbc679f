"""Multi-file commits through the Git data API.

Sequence: ref -> commit -> blobs -> tree -> commit -> ref update. The branch ref is
moved only as the final step, so a failure earlier never leaves the branch pointing at
a partially built tree (orphaned blobs/trees are unreachable and harmless).
"""

from __future__ import annotations

import base64
from collections.abc import Sequence
from typing import Any

from .errors import ErrorKind, SafeError, as_safe_error
from .models import CommitResult, FileChange, RepositoryReference
from .runtime import Runtime
from .safety import decode_file_content, enforce_max_bytes


def _prepare_files(runtime: Runtime, files: Sequence[FileChange]) -> list[tuple[str, bytes]]:
    limits = runtime.config.limits
    if not files:
        raise SafeError(kind=ErrorKind.USER_INPUT, message="At least one file is required")
    if len(files) > limits.commit_max_files:
        raise SafeError(
            kind=ErrorKind.USER_INPUT,
            message=f"Too many files ({len(files)}); at most {limits.commit_max_files} per commit",
        )

    prepared: list[tuple[str, bytes]] = []
    for change in files:
        raw = decode_file_content(content=change.content, encoding=change.encoding)
        enforce_max_bytes(data=raw, max_bytes=limits.commit_max_file_bytes, what=f"File '{change.path}'")
        prepared.append((change.path, raw))
    return prepared


def _sha_of(data: object, *, what: str) -> str:
    if isinstance(data, dict) and isinstance(data.get("sha"), str):
        return data["sha"]
    raise SafeError(kind=ErrorKind.GITHUB, message=f"Unexpected {what} response")


async def commit_files(
    runtime: Runtime,
    repo: RepositoryReference,
    branch: str,
    files: Sequence[FileChange],
    message: str,
    *,
    correlation_id: str,
) -> CommitResult:
    """Write `files` to `branch` as a single commit."""
    try:
        runtime.policy.require_repo_allowed(repo.owner, repo.name, action="commits")
        prepared = _prepare_files(runtime, files)

        ref_data = await runtime.github.request_json(
            method="GET",
            path=f"{repo.api_path}/git/ref/heads/{branch}",
        )
        obj = ref_data.get("object") if isinstance(ref_data, dict) else None
        parent_sha = _sha_of(obj, what="ref")

        commit_data = await runtime.github.request_json(
            method="GET",
            path=f"{repo.api_path}/git/commits/{parent_sha}",
        )
        tree_obj = commit_data.get("tree") if isinstance(commit_data, dict) else None
        base_tree_sha = _sha_of(tree_obj, what="commit")

        tree_entries: list[dict[str, Any]] = []
        for path, raw in prepared:
            blob = await runtime.github.request_json(
                method="POST",
                path=f"{repo.api_path}/git/blobs",
                json_body={"content": base64.b64encode(raw).decode("ascii"), "encoding": "base64"},
            )
            tree_entries.append({"path": path, "mode": "100644", "type": "blob", "sha": _sha_of(blob, what="blob")})

        tree = await runtime.github.request_json(
            method="POST",
            path=f"{repo.api_path}/git/trees",
            json_body={"base_tree": base_tree_sha, "tree": tree_entries},
        )
        new_tree_sha = _sha_of(tree, what="tree")

        new_commit = await runtime.github.request_json(
            method="POST",
            path=f"{repo.api_path}/git/commits",
            json_body={"message": message, "tree": new_tree_sha, "parents": [parent_sha]},
        )
        new_commit_sha = _sha_of(new_commit, what="commit-create")

        await runtime.github.request_json(
            method="PATCH",
            path=f"{repo.api_path}/git/refs/heads/{branch}",
            json_body={"sha": new_commit_sha, "force": False},
        )
    except Exception as exc:
        err = as_safe_error(exc)
        runtime.record(
            correlation_id=correlation_id,
            action="COMMIT_FILES_FAILED",
            repo=repo,
            branch=branch,
            error=err.message,
            reason=err.kind.value,
        )
        raise

    paths = tuple(path for path, _ in prepared)
    runtime.record(
        correlation_id=correlation_id,
        action="FILES_COMMITTED",
        repo=repo,
        branch=branch,
        file_count=len(paths),
        sha=new_commit_sha,
    )
    return CommitResult(branch=branch, commit_sha=new_commit_sha, files=paths)
