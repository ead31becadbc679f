"""Pull request creation and update.

`create_pull_request` bundles duplicate detection, optional branch creation, optional
file commit and PR creation. The steps after duplicate detection are not transactional:
a failure after the branch was created leaves it in place, and the raised error's
`data` reports `branch_created` / `files_committed` so callers can compensate.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

from .branches import create_branch, get_branch_sha
from .commits import commit_files
from .errors import ErrorKind, SafeError, as_safe_error
from .github_graphql_client import MUTATION_CONVERT_TO_DRAFT, MUTATION_MARK_READY_FOR_REVIEW
from .models import PullRequestIntent, RepositoryReference
from .runtime import Runtime

logger = logging.getLogger(__name__)

TITLE_PREFIX = "[ChatGPT] "


def _pr_summary(pr: dict[str, Any]) -> dict[str, Any]:
    return {
        "number": pr.get("number"),
        "url": pr.get("html_url"),
        "title": pr.get("title"),
        "state": pr.get("state"),
        "draft": pr.get("draft"),
        "created_at": pr.get("created_at"),
    }


def _prefixed(title: str) -> str:
    return title if title.startswith(TITLE_PREFIX) else f"{TITLE_PREFIX}{title}"


async def find_open_pull_request(
    runtime: Runtime, repo: RepositoryReference, *, head: str, base: str
) -> dict[str, Any] | None:
    """Return the open PR for `owner:head` -> `base`, if any."""
    data = await runtime.github.request_json(
        method="GET",
        path=f"{repo.api_path}/pulls",
        params={"state": "open", "head": f"{repo.owner}:{head}", "base": base},
    )
    if not isinstance(data, list):
        raise SafeError(kind=ErrorKind.GITHUB, message="Unexpected pull requests response")
    for pr in data:
        if isinstance(pr, dict):
            return pr
    return None


async def create_pull_request(
    runtime: Runtime,
    repo: RepositoryReference,
    intent: PullRequestIntent,
    *,
    correlation_id: str,
) -> dict[str, Any]:
    """Create a pull request, optionally creating its branch and committing files first."""
    try:
        runtime.policy.require_repo_allowed(repo.owner, repo.name, action="PR creation")
        if intent.head == intent.base:
            raise SafeError(kind=ErrorKind.USER_INPUT, message="Head and base branches must differ")
        # Only well-formed requests count against the creation budget.
        if not runtime.create_limiter.allow(repo.key):
            raise SafeError(kind=ErrorKind.RATE_LIMITED, message=f"PR creation rate limit exceeded for {repo}")
    except SafeError as err:
        runtime.record(
            correlation_id=correlation_id,
            action="PR_CREATE_BLOCKED",
            repo=repo,
            head=intent.head,
            base=intent.base,
            error=err.message,
            reason=err.kind.value,
        )
        raise

    branch_created = False
    files_committed = 0
    try:
        existing = await find_open_pull_request(runtime, repo, head=intent.head, base=intent.base)
        if existing is not None:
            runtime.record(
                correlation_id=correlation_id,
                action="PR_ALREADY_EXISTS",
                repo=repo,
                head=intent.head,
                base=intent.base,
                pr_number=existing.get("number"),
                pr_url=existing.get("html_url"),
            )
            return {
                "success": False,
                "exists": True,
                "message": f"PR already exists from {intent.head} to {intent.base}",
                "pr": _pr_summary(existing),
            }

        if await get_branch_sha(runtime, repo, intent.base) is None:
            raise SafeError(kind=ErrorKind.NOT_FOUND, message=f"Base branch '{intent.base}' does not exist")

        if await get_branch_sha(runtime, repo, intent.head) is None:
            if not intent.create_branch_if_missing:
                raise SafeError(
                    kind=ErrorKind.USER_INPUT,
                    message=f"Head branch '{intent.head}' does not exist",
                    hint="Set create_branch_if_missing=true to create it from the base branch",
                )
            branch = await create_branch(
                runtime, repo, intent.head, from_ref=intent.base, correlation_id=correlation_id
            )
            branch_created = branch.created

        if intent.files:
            message = intent.commit_message or f"Add files for PR: {intent.title}"
            commit = await commit_files(
                runtime, repo, intent.head, intent.files, message, correlation_id=correlation_id
            )
            files_committed = len(commit.files)

        payload: dict[str, Any] = {
            "title": _prefixed(intent.title),
            "head": intent.head,
            "base": intent.base,
            "body": intent.body,
            "draft": intent.draft,
        }
        created = await runtime.github.request_json(
            method="POST",
            path=f"{repo.api_path}/pulls",
            json_body=payload,
        )
        if not isinstance(created, dict) or not isinstance(created.get("number"), int):
            raise SafeError(kind=ErrorKind.GITHUB, message="Unexpected pull request response")
    except Exception as exc:  # pylint: disable=broad-exception-caught
        if not isinstance(exc, SafeError):
            logger.exception("Unexpected failure while creating a PR for %s", repo)
        err = as_safe_error(exc)
        runtime.record(
            correlation_id=correlation_id,
            action="PR_CREATE_FAILED",
            repo=repo,
            head=intent.head,
            base=intent.base,
            branch_created=branch_created,
            files_committed=files_committed,
            error=err.message,
            reason=err.kind.value,
        )
        if branch_created or files_committed:
            logger.warning(
                "PR creation for %s failed after partial completion (branch_created=%s, files_committed=%s)",
                repo,
                branch_created,
                files_committed,
            )
        raise dataclasses.replace(
            err,
            data={**err.data, "branch_created": branch_created, "files_committed": files_committed},
        ) from exc

    runtime.record(
        correlation_id=correlation_id,
        action="PR_CREATED",
        repo=repo,
        head=intent.head,
        base=intent.base,
        pr_number=created["number"],
        pr_url=created.get("html_url"),
        branch_created=branch_created,
        files_committed=files_committed,
    )
    return {
        "success": True,
        "branch_created": branch_created,
        "files_committed": files_committed,
        "pr": _pr_summary(created),
    }


async def update_pull_request(
    runtime: Runtime,
    repo: RepositoryReference,
    pr_number: int,
    *,
    title: str | None = None,
    body: str | None = None,
    state: str | None = None,
    base: str | None = None,
    draft: bool | None = None,
    reviewers: list[str] | None = None,
    correlation_id: str,
) -> dict[str, Any]:
    """Patch PR metadata, toggle draft state and request reviewers."""
    patch: dict[str, Any] = {}
    try:
        runtime.policy.require_repo_allowed(repo.owner, repo.name, action="PR updates")

        if draft is not None:
            current = await runtime.github.request_json(method="GET", path=f"{repo.api_path}/pulls/{pr_number}")
            node_id = current.get("node_id") if isinstance(current, dict) else None
            if not isinstance(node_id, str):
                raise SafeError(kind=ErrorKind.GITHUB, message="Unexpected pull request response")
            mutation = MUTATION_CONVERT_TO_DRAFT if draft else MUTATION_MARK_READY_FOR_REVIEW
            await runtime.graphql.execute(query=mutation, variables={"id": node_id})

        if title is not None:
            patch["title"] = title
        if body is not None:
            patch["body"] = body
        if state is not None:
            patch["state"] = state
        if base is not None:
            patch["base"] = base

        if patch:
            updated = await runtime.github.request_json(
                method="PATCH",
                path=f"{repo.api_path}/pulls/{pr_number}",
                json_body=patch,
            )
        else:
            updated = await runtime.github.request_json(method="GET", path=f"{repo.api_path}/pulls/{pr_number}")
        if not isinstance(updated, dict):
            raise SafeError(kind=ErrorKind.GITHUB, message="Unexpected pull request response")

        reviewers_added: list[str] = []
        if reviewers:
            requested = await runtime.github.request_json(
                method="POST",
                path=f"{repo.api_path}/pulls/{pr_number}/requested_reviewers",
                json_body={"reviewers": reviewers},
            )
            if isinstance(requested, dict) and isinstance(requested.get("requested_reviewers"), list):
                reviewers_added = [
                    r["login"]
                    for r in requested["requested_reviewers"]
                    if isinstance(r, dict) and isinstance(r.get("login"), str)
                ]
    except Exception as exc:
        err = as_safe_error(exc)
        runtime.record(
            correlation_id=correlation_id,
            action="PR_UPDATE_FAILED",
            repo=repo,
            pr_number=pr_number,
            error=err.message,
            reason=err.kind.value,
        )
        raise

    runtime.record(
        correlation_id=correlation_id,
        action="PR_UPDATED",
        repo=repo,
        pr_number=pr_number,
        updated_fields=sorted(patch),
        draft=draft,
        reviewers=len(reviewers or []),
    )
    base_obj = updated.get("base")
    return {
        "success": True,
        "pr": {
            "number": updated.get("number"),
            "title": updated.get("title"),
            "draft": updated.get("draft"),
            "state": updated.get("state"),
            "base": base_obj.get("ref") if isinstance(base_obj, dict) else None,
        },
        "reviewers_added": reviewers_added,
    }
