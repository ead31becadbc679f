"""Value objects passed between the tool layer and the write components."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from .errors import ErrorKind, SafeError

_IDENTIFIER_RE = re.compile(r"^[A-Za-z0-9._-]+$")

MERGE_METHODS: tuple[str, ...] = ("merge", "squash", "rebase")
FILE_ENCODINGS: tuple[str, ...] = ("utf-8", "base64")


@dataclass(frozen=True, slots=True)
class RepositoryReference:
    """An `owner/name` pair; the key for policy, rate limits and audit."""

    owner: str
    name: str

    @classmethod
    def parse(cls, value: str) -> RepositoryReference:
        owner, sep, name = value.partition("/")
        if not sep or not _IDENTIFIER_RE.match(owner) or not _IDENTIFIER_RE.match(name):
            raise SafeError(kind=ErrorKind.USER_INPUT, message="Field 'repo' must be in 'owner/name' format")
        return cls(owner=owner, name=name)

    @property
    def key(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def api_path(self) -> str:
        return f"/repos/{self.owner}/{self.name}"

    def __str__(self) -> str:
        return self.key


@dataclass(frozen=True, slots=True)
class FileChange:
    """One file to write; `content` is text or base64 depending on `encoding`."""

    path: str
    content: str
    encoding: str = "utf-8"


@dataclass(frozen=True, slots=True)
class PullRequestIntent:
    title: str
    head: str
    base: str
    body: str = ""
    draft: bool = False
    create_branch_if_missing: bool = False
    files: tuple[FileChange, ...] = ()
    commit_message: str | None = None


@dataclass(frozen=True, slots=True)
class MergeIntent:
    pr_number: int
    head_sha_guard: str
    merge_method: str = "squash"
    delete_branch_after_merge: bool = False
    commit_title: str | None = None
    commit_message: str | None = None


@dataclass(frozen=True, slots=True)
class BranchResult:
    """Outcome of an idempotent branch creation."""

    branch: str
    sha: str
    created: bool
    base: str | None = None

    @property
    def exists(self) -> bool:
        return not self.created

    def to_payload(self, repo: RepositoryReference) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": True,
            "created": self.created,
            "exists": self.exists,
            "branch": self.branch,
            "sha": self.sha,
            "url": f"https://github.com/{repo.key}/tree/{self.branch}",
        }
        if self.base is not None:
            payload["from"] = self.base
        return payload


@dataclass(frozen=True, slots=True)
class CommitResult:
    branch: str
    commit_sha: str
    files: tuple[str, ...]

    def to_payload(self, repo: RepositoryReference) -> dict[str, Any]:
        return {
            "success": True,
            "branch": self.branch,
            "commit": self.commit_sha,
            "files": list(self.files),
            "url": f"https://github.com/{repo.key}/commit/{self.commit_sha}",
        }


@dataclass(frozen=True, slots=True)
class ChecksSummary:
    """Failing items across the legacy status and check-runs surfaces.

    `unavailable` names a surface that could not be read; its failures are unknown.
    """

    failing_statuses: tuple[str, ...] = ()
    failing_checks: tuple[str, ...] = ()
    state: str | None = None
    total_statuses: int = 0
    total_checks: int = 0
    unavailable: tuple[str, ...] = ()

    @property
    def failing(self) -> list[str]:
        return [*self.failing_statuses, *self.failing_checks]

    @property
    def message(self) -> str:
        if self.failing:
            text = f"Failing: {', '.join(self.failing)}"
        else:
            text = "Merge blocked by protections or review requirements."
        if self.unavailable:
            text += f" ({', '.join(self.unavailable)} unavailable)"
        return text
