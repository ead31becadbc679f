"""Tool registry and dispatch layer.

This module:
- defines the allow-listed tools (public contract surface) as a closed enum
- validates arguments against each tool's JSON Schema
- builds a per-server runtime from host-provided config
- creates a correlation_id per operation attempt
- runs the capability gate (write secret, feature toggles, whitelist) before any
  write handler
"""

from __future__ import annotations

import base64
import enum
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from jsonschema import Draft202012Validator

from .audit import AuditLogger, new_correlation_id
from .auth import build_token_provider
from .branches import create_branch, get_default_branch
from .commits import commit_files
from .config import load_config_from_env
from .errors import ErrorKind, SafeError, classify, internal_error, user_input_error
from .github_client import GitHubClient
from .github_graphql_client import GitHubGraphQLClient
from .merge import merge_pull_request
from .mergeability import checks_summary, get_pull_request
from .models import FILE_ENCODINGS, MERGE_METHODS, FileChange, MergeIntent, PullRequestIntent, RepositoryReference
from .policy import Policy, is_write_tool
from .pulls import create_pull_request, update_pull_request
from .ratelimit import CREATE, MERGE, RateLimiter
from .runtime import Runtime
from .safety import enforce_max_bytes

logger = logging.getLogger(__name__)


class ToolName(str, enum.Enum):
    """Every tool the server exposes."""

    GET_REPOSITORY = "get_repository"
    LIST_BRANCHES = "list_branches"
    READ_FILE = "read_file"
    LIST_DIRECTORY = "list_directory"
    GET_TREE = "get_tree"
    GET_COMMITS = "get_commits"
    GET_PULL_REQUEST = "get_pull_request"
    LIST_PULL_REQUESTS = "list_pull_requests"
    GET_PR_MERGEABILITY = "get_pr_mergeability"
    GET_CHECKS_FOR_SHA = "get_checks_for_sha"
    CREATE_BRANCH = "create_branch"
    COMMIT_FILES = "commit_files"
    CREATE_PULL_REQUEST = "create_pull_request"
    UPDATE_PULL_REQUEST = "update_pull_request"
    MERGE_PULL_REQUEST = "merge_pull_request"


_REPO = {"type": "string", "pattern": r"^[A-Za-z0-9._-]+/[A-Za-z0-9._-]+$"}
_BRANCH = {"type": "string", "pattern": r"^[a-zA-Z0-9._/-]+$", "minLength": 1, "maxLength": 100}
_SHA = {"type": "string", "pattern": r"^[a-f0-9]{7,40}$"}
_PR_NUMBER = {"type": "integer", "minimum": 1}
_REF = {"type": "string", "minLength": 1, "maxLength": 100}
# Relative path with no ".." segment; empty means the repository root.
_DIR_PATH = {"type": "string", "maxLength": 500, "pattern": r"^(?!/)(?!(.*/)?\.\.(/|$))"}
_TITLE = {"type": "string", "minLength": 1, "maxLength": 256}
_BODY = {"type": "string", "maxLength": 65536}
_FILES = {
    "type": "array",
    "minItems": 1,
    "items": {
        "type": "object",
        "required": ["path", "content"],
        "properties": {
            "path": {"type": "string", "minLength": 1, "maxLength": 1024, "pattern": r"^[^/]"},
            "content": {"type": "string"},
            "encoding": {"type": "string", "enum": list(FILE_ENCODINGS), "default": "utf-8"},
        },
        "additionalProperties": False,
    },
}

TOOL_METADATA: dict[str, dict[str, Any]] = {
    ToolName.GET_REPOSITORY.value: {
        "description": "Read repository metadata (default branch, visibility, description).",
        "inputSchema": {
            "type": "object",
            "required": ["repo"],
            "properties": {"repo": _REPO},
            "additionalProperties": False,
        },
    },
    ToolName.LIST_BRANCHES.value: {
        "description": "List branches in a repository.",
        "inputSchema": {
            "type": "object",
            "required": ["repo"],
            "properties": {
                "repo": _REPO,
                "limit": {"type": "integer", "minimum": 1, "maximum": 100, "default": 30},
            },
            "additionalProperties": False,
        },
    },
    ToolName.READ_FILE.value: {
        "description": "Read a single file at a given ref (size-limited).",
        "inputSchema": {
            "type": "object",
            "required": ["repo", "path"],
            "properties": {
                "repo": _REPO,
                "path": {"type": "string", "minLength": 1},
                "ref": _REF,
            },
            "additionalProperties": False,
        },
    },
    ToolName.LIST_DIRECTORY.value: {
        "description": "List the entries of a directory at a given ref (default branch if omitted).",
        "inputSchema": {
            "type": "object",
            "required": ["repo"],
            "properties": {"repo": _REPO, "path": _DIR_PATH, "ref": _REF},
            "additionalProperties": False,
        },
    },
    ToolName.GET_TREE.value: {
        "description": "Return the full recursive file tree at a given ref (default branch if omitted).",
        "inputSchema": {
            "type": "object",
            "required": ["repo"],
            "properties": {"repo": _REPO, "ref": _REF},
            "additionalProperties": False,
        },
    },
    ToolName.GET_COMMITS.value: {
        "description": "List recent commits, optionally for a ref and/or a path.",
        "inputSchema": {
            "type": "object",
            "required": ["repo"],
            "properties": {
                "repo": _REPO,
                "ref": _REF,
                "path": _DIR_PATH,
                "limit": {"type": "integer", "minimum": 1, "maximum": 100, "default": 10},
            },
            "additionalProperties": False,
        },
    },
    ToolName.GET_PULL_REQUEST.value: {
        "description": "Read a pull request, optionally with its commits, changed files and reviews.",
        "inputSchema": {
            "type": "object",
            "required": ["repo", "pr_number"],
            "properties": {
                "repo": _REPO,
                "pr_number": _PR_NUMBER,
                "include_commits": {"type": "boolean", "default": False},
                "include_files": {"type": "boolean", "default": False},
                "include_reviews": {"type": "boolean", "default": False},
            },
            "additionalProperties": False,
        },
    },
    ToolName.LIST_PULL_REQUESTS.value: {
        "description": "List pull requests for a repository (basic fields only).",
        "inputSchema": {
            "type": "object",
            "required": ["repo"],
            "properties": {
                "repo": _REPO,
                "state": {"type": "string", "enum": ["open", "closed", "all"], "default": "open"},
                "base": _BRANCH,
                "head": _BRANCH,
                "limit": {"type": "integer", "minimum": 1, "maximum": 100, "default": 30},
            },
            "additionalProperties": False,
        },
    },
    ToolName.GET_PR_MERGEABILITY.value: {
        "description": "Report a pull request's mergeable flag, head sha and failing checks.",
        "inputSchema": {
            "type": "object",
            "required": ["repo", "pr_number"],
            "properties": {"repo": _REPO, "pr_number": _PR_NUMBER},
            "additionalProperties": False,
        },
    },
    ToolName.GET_CHECKS_FOR_SHA.value: {
        "description": "Summarize commit statuses and check runs for a commit sha.",
        "inputSchema": {
            "type": "object",
            "required": ["repo", "sha"],
            "properties": {"repo": _REPO, "sha": _SHA},
            "additionalProperties": False,
        },
    },
    ToolName.CREATE_BRANCH.value: {
        "description": "Create a branch (idempotent: an existing branch is reported, not an error).",
        "inputSchema": {
            "type": "object",
            "required": ["repo", "branch"],
            "properties": {"repo": _REPO, "branch": _BRANCH, "from_ref": _BRANCH},
            "additionalProperties": False,
        },
    },
    ToolName.COMMIT_FILES.value: {
        "description": "Commit one or more files to a branch as a single commit.",
        "inputSchema": {
            "type": "object",
            "required": ["repo", "branch", "files", "message"],
            "properties": {
                "repo": _REPO,
                "branch": _BRANCH,
                "files": _FILES,
                "message": {"type": "string", "minLength": 1, "maxLength": 5000},
            },
            "additionalProperties": False,
        },
    },
    ToolName.CREATE_PULL_REQUEST.value: {
        "description": (
            "Open a pull request, optionally creating the head branch and committing files first. "
            "Returns the existing PR instead of creating a duplicate."
        ),
        "inputSchema": {
            "type": "object",
            "required": ["repo", "title", "head", "base"],
            "properties": {
                "repo": _REPO,
                "title": _TITLE,
                "body": _BODY,
                "head": _BRANCH,
                "base": _BRANCH,
                "draft": {"type": "boolean", "default": False},
                "create_branch_if_missing": {"type": "boolean", "default": False},
                "files": _FILES,
                "commit_message": {"type": "string", "minLength": 1, "maxLength": 5000},
            },
            "additionalProperties": False,
        },
    },
    ToolName.UPDATE_PULL_REQUEST.value: {
        "description": "Update a pull request's title, body, state, base, draft flag or reviewers.",
        "inputSchema": {
            "type": "object",
            "required": ["repo", "pr_number"],
            "properties": {
                "repo": _REPO,
                "pr_number": _PR_NUMBER,
                "title": _TITLE,
                "body": _BODY,
                "state": {"type": "string", "enum": ["open", "closed"]},
                "base": _BRANCH,
                "draft": {"type": "boolean"},
                "reviewers": {
                    "type": "array",
                    "items": {"type": "string", "minLength": 1, "maxLength": 100},
                    "maxItems": 15,
                },
            },
            "additionalProperties": False,
        },
    },
    ToolName.MERGE_PULL_REQUEST.value: {
        "description": (
            "Merge a pull request. Requires the current head sha; refuses while mergeability "
            "is unknown or checks are failing."
        ),
        "inputSchema": {
            "type": "object",
            "required": ["repo", "pr_number", "sha"],
            "properties": {
                "repo": _REPO,
                "pr_number": _PR_NUMBER,
                "sha": _SHA,
                "merge_method": {"type": "string", "enum": list(MERGE_METHODS), "default": "squash"},
                "delete_branch": {"type": "boolean", "default": False},
                "commit_title": {"type": "string", "minLength": 1, "maxLength": 256},
                "commit_message": {"type": "string", "maxLength": 5000},
            },
            "additionalProperties": False,
        },
    },
}

_VALIDATORS: dict[str, Draft202012Validator] = {
    name: Draft202012Validator(meta["inputSchema"]) for name, meta in TOOL_METADATA.items()
}

# Feature toggle guarding each write tool.
_FEATURE_TOGGLES: dict[ToolName, str] = {
    ToolName.CREATE_BRANCH: "pr_enabled",
    ToolName.COMMIT_FILES: "pr_enabled",
    ToolName.CREATE_PULL_REQUEST: "pr_enabled",
    ToolName.UPDATE_PULL_REQUEST: "pr_update_enabled",
    ToolName.MERGE_PULL_REQUEST: "pr_merge_enabled",
}

_RUNTIME: Runtime | None = None


def validate_tool_arguments(tool_name: str, arguments: dict[str, Any]) -> None:
    """Validate tool arguments against the tool's declared input schema.

    Raises:
        SafeError: USER_INPUT carrying every defect as `{path, message}`.
    """
    validator = _VALIDATORS.get(tool_name)
    if validator is None:
        raise SafeError(kind=ErrorKind.UNKNOWN_TOOL, message=f"Unknown tool: {tool_name}")

    defects = [
        {"path": "/".join(str(p) for p in err.absolute_path), "message": err.message}
        for err in sorted(validator.iter_errors(arguments), key=lambda e: list(map(str, e.absolute_path)))
    ]
    if defects:
        first = defects[0]
        where = f" at '{first['path']}'" if first["path"] else ""
        raise user_input_error(f"Invalid arguments for {tool_name}{where}: {first['message']}", defects)


def initialize_runtime_from_env() -> Runtime:
    """Initialize and cache runtime from environment.

    Called at server startup (fail-fast), and can also be used lazily.
    """
    global _RUNTIME  # pylint: disable=global-statement
    if _RUNTIME is not None:
        return _RUNTIME

    config = load_config_from_env()
    token_provider = build_token_provider(config)
    _RUNTIME = Runtime(
        config=config,
        audit=AuditLogger(sink_path=config.audit_log_path),
        policy=Policy(
            whitelist=config.policy.whitelist,
            write_secret=config.policy.write_secret,
            auth_token=config.policy.auth_token,
        ),
        github=GitHubClient(token_provider=token_provider, limits=config.limits),
        graphql=GitHubGraphQLClient(token_provider=token_provider, limits=config.limits),
        create_limiter=RateLimiter(operation_class=CREATE, config=config.create_rate_limit),
        merge_limiter=RateLimiter(operation_class=MERGE, config=config.merge_rate_limit),
    )
    return _RUNTIME


def _files_from_args(arguments: dict[str, Any]) -> tuple[FileChange, ...]:
    return tuple(
        FileChange(path=f["path"], content=f["content"], encoding=f.get("encoding", "utf-8"))
        for f in arguments.get("files") or []
    )


async def _tool_get_repository(runtime: Runtime, arguments: dict[str, Any], correlation_id: str) -> dict[str, Any]:
    repo = RepositoryReference.parse(arguments["repo"])
    data = await runtime.github.request_json(method="GET", path=repo.api_path)
    if not isinstance(data, dict):
        raise SafeError(kind=ErrorKind.GITHUB, message="Unexpected repository response")
    return {
        "repository": {
            "full_name": data.get("full_name"),
            "private": data.get("private"),
            "default_branch": data.get("default_branch"),
            "description": data.get("description"),
            "url": data.get("html_url"),
        }
    }


async def _tool_list_branches(runtime: Runtime, arguments: dict[str, Any], correlation_id: str) -> dict[str, Any]:
    repo = RepositoryReference.parse(arguments["repo"])
    data = await runtime.github.request_json(
        method="GET",
        path=f"{repo.api_path}/branches",
        params={"per_page": str(arguments.get("limit", 30))},
    )
    if not isinstance(data, list):
        raise SafeError(kind=ErrorKind.GITHUB, message="Unexpected branches response")

    branches: list[dict[str, Any]] = []
    for b in data:
        if not isinstance(b, dict) or not isinstance(b.get("name"), str):
            continue
        commit = b.get("commit")
        sha = commit.get("sha") if isinstance(commit, dict) else None
        branches.append({"name": b["name"], "sha": sha, "protected": bool(b.get("protected"))})
    return {"repository": repo.key, "branches": branches}


async def _tool_read_file(runtime: Runtime, arguments: dict[str, Any], correlation_id: str) -> dict[str, Any]:
    repo = RepositoryReference.parse(arguments["repo"])
    path = arguments["path"].lstrip("/")
    ref = arguments.get("ref")

    data = await runtime.github.request_json(
        method="GET",
        path=f"{repo.api_path}/contents/{path}",
        params={"ref": ref} if ref else None,
    )
    if not isinstance(data, dict):
        raise SafeError(kind=ErrorKind.USER_INPUT, message="Path is a directory, not a file")
    if data.get("type") != "file":
        raise SafeError(kind=ErrorKind.USER_INPUT, message="Path is not a file")

    content_b64 = data.get("content")
    if data.get("encoding") != "base64" or not isinstance(content_b64, str):
        raise SafeError(kind=ErrorKind.GITHUB, message="Unexpected file content encoding")

    decoded = base64.b64decode(content_b64.encode("ascii"), validate=False)
    enforce_max_bytes(data=decoded, max_bytes=runtime.config.limits.read_file_max_bytes, what="file")

    file_obj: dict[str, Any] = {"path": path, "sha": data.get("sha"), "size": len(decoded)}
    try:
        file_obj.update({"encoding": "utf-8", "content": decoded.decode("utf-8")})
    except UnicodeDecodeError:
        file_obj.update({"encoding": "base64", "content": base64.b64encode(decoded).decode("ascii")})
    if ref:
        file_obj["ref"] = ref
    return {"repository": repo.key, "file": file_obj}


async def _tool_list_directory(runtime: Runtime, arguments: dict[str, Any], correlation_id: str) -> dict[str, Any]:
    repo = RepositoryReference.parse(arguments["repo"])
    path = arguments.get("path", "").rstrip("/")
    ref = arguments.get("ref") or await get_default_branch(runtime, repo)

    data = await runtime.github.request_json(
        method="GET",
        path=f"{repo.api_path}/contents/{path}" if path else f"{repo.api_path}/contents",
        params={"ref": ref},
    )
    if isinstance(data, dict):
        raise SafeError(kind=ErrorKind.USER_INPUT, message="Path is a file, not a directory", hint="Use read_file")
    if not isinstance(data, list):
        raise SafeError(kind=ErrorKind.GITHUB, message="Unexpected contents response")

    items = [
        {
            "name": item.get("name"),
            "type": item.get("type"),
            "path": item.get("path"),
            "size": item.get("size"),
            "url": item.get("html_url"),
        }
        for item in data
        if isinstance(item, dict)
    ]
    return {"repository": repo.key, "path": path or "/", "ref": ref, "items": items}


async def _tool_get_tree(runtime: Runtime, arguments: dict[str, Any], correlation_id: str) -> dict[str, Any]:
    repo = RepositoryReference.parse(arguments["repo"])
    ref = arguments.get("ref") or await get_default_branch(runtime, repo)

    # The trees endpoint resolves branch and tag names as well as tree shas.
    data = await runtime.github.request_json(
        method="GET",
        path=f"{repo.api_path}/git/trees/{ref}",
        params={"recursive": "1"},
    )
    entries = data.get("tree") if isinstance(data, dict) else None
    if not isinstance(entries, list):
        raise SafeError(kind=ErrorKind.GITHUB, message="Unexpected tree response")

    tree = [
        {"path": e.get("path"), "type": e.get("type"), "size": e.get("size")}
        for e in entries
        if isinstance(e, dict)
    ]
    return {"repository": repo.key, "ref": ref, "truncated": bool(data.get("truncated")), "tree": tree}


async def _tool_get_commits(runtime: Runtime, arguments: dict[str, Any], correlation_id: str) -> dict[str, Any]:
    repo = RepositoryReference.parse(arguments["repo"])
    params = {"per_page": str(arguments.get("limit", 10))}
    if arguments.get("ref"):
        params["sha"] = arguments["ref"]
    if arguments.get("path"):
        params["path"] = arguments["path"]

    data = await runtime.github.request_json(method="GET", path=f"{repo.api_path}/commits", params=params)
    if not isinstance(data, list):
        raise SafeError(kind=ErrorKind.GITHUB, message="Unexpected commits response")

    commits: list[dict[str, Any]] = []
    for c in data:
        if not isinstance(c, dict) or not isinstance(c.get("sha"), str):
            continue
        commit = c.get("commit") if isinstance(c.get("commit"), dict) else {}
        author = commit.get("author") if isinstance(commit.get("author"), dict) else {}
        message = commit.get("message") if isinstance(commit.get("message"), str) else ""
        commits.append(
            {
                "sha": c["sha"],
                "message": message.split("\n", 1)[0],
                "author": author.get("name"),
                "date": author.get("date"),
                "url": c.get("html_url"),
            }
        )
    return {"repository": repo.key, "commits": commits}


async def _pr_listing(runtime: Runtime, path: str) -> list[dict[str, Any]]:
    data = await runtime.github.request_json(method="GET", path=path, params={"per_page": "100"})
    if not isinstance(data, list):
        raise SafeError(kind=ErrorKind.GITHUB, message="Unexpected pull request listing")
    return [item for item in data if isinstance(item, dict)]


async def _tool_get_pull_request(
    runtime: Runtime, arguments: dict[str, Any], correlation_id: str
) -> dict[str, Any]:
    repo = RepositoryReference.parse(arguments["repo"])
    pr_number = arguments["pr_number"]
    pr = await get_pull_request(runtime, repo, pr_number)
    head = pr.get("head") if isinstance(pr.get("head"), dict) else {}
    base = pr.get("base") if isinstance(pr.get("base"), dict) else {}
    user = pr.get("user") if isinstance(pr.get("user"), dict) else {}

    out: dict[str, Any] = {
        "number": pr.get("number"),
        "title": pr.get("title"),
        "body": pr.get("body"),
        "state": pr.get("state"),
        "draft": pr.get("draft"),
        "merged": pr.get("merged"),
        "mergeable": pr.get("mergeable"),
        "mergeable_state": pr.get("mergeable_state"),
        "head": {"ref": head.get("ref"), "sha": head.get("sha")},
        "base": {"ref": base.get("ref"), "sha": base.get("sha")},
        "user": user.get("login"),
        "url": pr.get("html_url"),
        "created_at": pr.get("created_at"),
        "updated_at": pr.get("updated_at"),
    }

    pr_path = f"{repo.api_path}/pulls/{pr_number}"
    if arguments.get("include_commits"):
        commits = []
        for c in await _pr_listing(runtime, f"{pr_path}/commits"):
            commit = c.get("commit") if isinstance(c.get("commit"), dict) else {}
            author = commit.get("author") if isinstance(commit.get("author"), dict) else {}
            commits.append(
                {
                    "sha": c.get("sha"),
                    "message": commit.get("message"),
                    "author": author.get("name"),
                    "date": author.get("date"),
                }
            )
        out["commits"] = commits
    if arguments.get("include_files"):
        out["files"] = [
            {
                "filename": f.get("filename"),
                "status": f.get("status"),
                "additions": f.get("additions"),
                "deletions": f.get("deletions"),
                "changes": f.get("changes"),
            }
            for f in await _pr_listing(runtime, f"{pr_path}/files")
        ]
    if arguments.get("include_reviews"):
        reviews = []
        for r in await _pr_listing(runtime, f"{pr_path}/reviews"):
            reviewer = r.get("user") if isinstance(r.get("user"), dict) else {}
            reviews.append(
                {
                    "user": reviewer.get("login"),
                    "state": r.get("state"),
                    "submitted_at": r.get("submitted_at"),
                    "body": r.get("body"),
                }
            )
        out["reviews"] = reviews
    return out


async def _tool_list_pull_requests(
    runtime: Runtime, arguments: dict[str, Any], correlation_id: str
) -> dict[str, Any]:
    repo = RepositoryReference.parse(arguments["repo"])
    params = {"state": arguments.get("state", "open"), "per_page": str(arguments.get("limit", 30))}
    if arguments.get("base"):
        params["base"] = arguments["base"]
    if arguments.get("head"):
        params["head"] = f"{repo.owner}:{arguments['head']}"

    data = await runtime.github.request_json(method="GET", path=f"{repo.api_path}/pulls", params=params)
    if not isinstance(data, list):
        raise SafeError(kind=ErrorKind.GITHUB, message="Unexpected pull requests response")

    pull_requests: list[dict[str, Any]] = []
    for pr in data:
        if not isinstance(pr, dict) or not isinstance(pr.get("number"), int):
            continue
        head = pr.get("head") if isinstance(pr.get("head"), dict) else {}
        base = pr.get("base") if isinstance(pr.get("base"), dict) else {}
        pull_requests.append(
            {
                "number": pr["number"],
                "title": pr.get("title"),
                "state": pr.get("state"),
                "draft": pr.get("draft"),
                "head": head.get("ref"),
                "base": base.get("ref"),
                "url": pr.get("html_url"),
            }
        )
    return {"repository": repo.key, "pull_requests": pull_requests}


async def _tool_get_pr_mergeability(
    runtime: Runtime, arguments: dict[str, Any], correlation_id: str
) -> dict[str, Any]:
    repo = RepositoryReference.parse(arguments["repo"])
    pr = await get_pull_request(runtime, repo, arguments["pr_number"])
    head = pr.get("head") if isinstance(pr.get("head"), dict) else {}
    base = pr.get("base") if isinstance(pr.get("base"), dict) else {}
    head_sha = head.get("sha")
    if not isinstance(head_sha, str):
        raise SafeError(kind=ErrorKind.GITHUB, message="Unexpected pull request response")

    summary = await checks_summary(runtime, repo, head_sha)
    return {
        "number": pr.get("number"),
        "mergeable": pr.get("mergeable"),
        "mergeable_state": pr.get("mergeable_state"),
        "head_sha": head_sha,
        "head": head.get("ref"),
        "base": base.get("ref"),
        "checks": {
            "failing": summary.failing,
            "message": summary.message,
            "unavailable": list(summary.unavailable),
        },
    }


async def _tool_get_checks_for_sha(
    runtime: Runtime, arguments: dict[str, Any], correlation_id: str
) -> dict[str, Any]:
    repo = RepositoryReference.parse(arguments["repo"])
    sha = arguments["sha"]
    summary = await checks_summary(runtime, repo, sha)
    return {
        "sha": sha,
        "state": summary.state,
        "total_statuses": summary.total_statuses,
        "total_checks": summary.total_checks,
        "failing": summary.failing,
        "unavailable": list(summary.unavailable),
        "details_url": f"https://github.com/{repo.key}/commit/{sha}/checks",
    }


async def _tool_create_branch(runtime: Runtime, arguments: dict[str, Any], correlation_id: str) -> dict[str, Any]:
    repo = RepositoryReference.parse(arguments["repo"])
    result = await create_branch(
        runtime,
        repo,
        arguments["branch"],
        from_ref=arguments.get("from_ref"),
        correlation_id=correlation_id,
    )
    return result.to_payload(repo)


async def _tool_commit_files(runtime: Runtime, arguments: dict[str, Any], correlation_id: str) -> dict[str, Any]:
    repo = RepositoryReference.parse(arguments["repo"])
    result = await commit_files(
        runtime,
        repo,
        arguments["branch"],
        _files_from_args(arguments),
        arguments["message"],
        correlation_id=correlation_id,
    )
    return result.to_payload(repo)


async def _tool_create_pull_request(
    runtime: Runtime, arguments: dict[str, Any], correlation_id: str
) -> dict[str, Any]:
    repo = RepositoryReference.parse(arguments["repo"])
    intent = PullRequestIntent(
        title=arguments["title"],
        head=arguments["head"],
        base=arguments["base"],
        body=arguments.get("body", ""),
        draft=arguments.get("draft", False),
        create_branch_if_missing=arguments.get("create_branch_if_missing", False),
        files=_files_from_args(arguments),
        commit_message=arguments.get("commit_message"),
    )
    return await create_pull_request(runtime, repo, intent, correlation_id=correlation_id)


async def _tool_update_pull_request(
    runtime: Runtime, arguments: dict[str, Any], correlation_id: str
) -> dict[str, Any]:
    repo = RepositoryReference.parse(arguments["repo"])
    return await update_pull_request(
        runtime,
        repo,
        arguments["pr_number"],
        title=arguments.get("title"),
        body=arguments.get("body"),
        state=arguments.get("state"),
        base=arguments.get("base"),
        draft=arguments.get("draft"),
        reviewers=arguments.get("reviewers"),
        correlation_id=correlation_id,
    )


async def _tool_merge_pull_request(
    runtime: Runtime, arguments: dict[str, Any], correlation_id: str
) -> dict[str, Any]:
    repo = RepositoryReference.parse(arguments["repo"])
    intent = MergeIntent(
        pr_number=arguments["pr_number"],
        head_sha_guard=arguments["sha"],
        merge_method=arguments.get("merge_method", "squash"),
        delete_branch_after_merge=arguments.get("delete_branch", False),
        commit_title=arguments.get("commit_title"),
        commit_message=arguments.get("commit_message"),
    )
    return await merge_pull_request(runtime, repo, intent, correlation_id=correlation_id)


ToolHandler = Callable[[Runtime, dict[str, Any], str], Awaitable[dict[str, Any]]]

_TOOL_FUNCS: dict[ToolName, ToolHandler] = {
    ToolName.GET_REPOSITORY: _tool_get_repository,
    ToolName.LIST_BRANCHES: _tool_list_branches,
    ToolName.READ_FILE: _tool_read_file,
    ToolName.LIST_PULL_REQUESTS: _tool_list_pull_requests,
    ToolName.LIST_DIRECTORY: _tool_list_directory,
    ToolName.GET_TREE: _tool_get_tree,
    ToolName.GET_COMMITS: _tool_get_commits,
    ToolName.GET_PULL_REQUEST: _tool_get_pull_request,
    ToolName.GET_PR_MERGEABILITY: _tool_get_pr_mergeability,
    ToolName.GET_CHECKS_FOR_SHA: _tool_get_checks_for_sha,
    ToolName.CREATE_BRANCH: _tool_create_branch,
    ToolName.COMMIT_FILES: _tool_commit_files,
    ToolName.CREATE_PULL_REQUEST: _tool_create_pull_request,
    ToolName.UPDATE_PULL_REQUEST: _tool_update_pull_request,
    ToolName.MERGE_PULL_REQUEST: _tool_merge_pull_request,
}


def _check_write_gate(
    runtime: Runtime,
    tool: ToolName,
    arguments: dict[str, Any],
    *,
    path_secret: str | None,
    correlation_id: str,
) -> None:
    """Run the capability gate for a write tool; a rejection is audited once as WRITE_DENIED."""
    repo = RepositoryReference.parse(arguments["repo"])
    try:
        runtime.policy.check_write_access(tool.value, path_secret)
        toggle = _FEATURE_TOGGLES[tool]
        if not getattr(runtime.config.policy, toggle):
            raise SafeError(
                kind=ErrorKind.FORBIDDEN,
                message=f"Tool '{tool.value}' is disabled on this server",
                hint=f"Enable {toggle.upper()} in the server configuration",
            )
        runtime.policy.require_repo_allowed(repo.owner, repo.name, action="write operations")
    except SafeError as err:
        runtime.record(
            correlation_id=correlation_id,
            action="WRITE_DENIED",
            repo=repo,
            tool=tool.value,
            error=err.message,
            reason=err.kind.value,
        )
        raise


async def dispatch_tool(name: str, arguments: dict[str, Any], *, path_secret: str | None = None) -> dict[str, Any]:
    """Dispatch a tool call.

    Returns `{"ok": True, "correlation_id", "result"}` or
    `{"ok": False, "correlation_id", "error": {code, message, data}}`.
    """
    correlation_id = new_correlation_id()
    try:
        try:
            tool = ToolName(name)
        except ValueError as exc:
            raise SafeError(
                kind=ErrorKind.UNKNOWN_TOOL,
                message=f"Unknown tool: {name}",
                hint=f"Available tools: {', '.join(sorted(TOOL_METADATA))}",
            ) from exc

        validate_tool_arguments(tool.value, arguments)
        runtime = initialize_runtime_from_env()

        if is_write_tool(tool.value):
            _check_write_gate(runtime, tool, arguments, path_secret=path_secret, correlation_id=correlation_id)

        result = await _TOOL_FUNCS[tool](runtime, arguments, correlation_id)
        return {"ok": True, "correlation_id": correlation_id, "result": result}

    except SafeError as err:
        logger.info("Tool %s failed (%s): %s", name, err.kind.value, err.message)
        return {"ok": False, "correlation_id": correlation_id, "error": classify(err)}
    except Exception:  # pylint: disable=broad-exception-caught
        logger.exception("Tool %s raised an unexpected error", name)
        return {"ok": False, "correlation_id": correlation_id, "error": internal_error()}
