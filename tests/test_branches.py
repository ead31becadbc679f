"""Idempotent branch creation."""

from __future__ import annotations

import pytest
from github_write_mcp.branches import create_branch, resolve_base_commit
from github_write_mcp.errors import ErrorKind, SafeError
from github_write_mcp.models import RepositoryReference
from stubs import Seq, make_runtime, not_found, remote_validation

REPO = RepositoryReference(owner="acme", name="proj")
REF = "/repos/acme/proj/git/ref/heads"


def _ref(sha: str) -> dict[str, object]:
    return {"ref": "refs/heads/x", "object": {"sha": sha, "type": "commit"}}


@pytest.mark.asyncio
async def test_creates_branch_then_reports_it_as_existing() -> None:
    runtime = make_runtime(
        {
            ("GET", f"{REF}/feat/x"): Seq(not_found(), _ref("abc123")),
            ("GET", f"{REF}/main"): _ref("abc123"),
            ("POST", "/repos/acme/proj/git/refs"): {"ref": "refs/heads/feat/x"},
        }
    )

    first = await create_branch(runtime, REPO, "feat/x", from_ref="main", correlation_id="c1")
    second = await create_branch(runtime, REPO, "feat/x", from_ref="main", correlation_id="c2")

    assert first.created is True
    assert first.sha == "abc123"
    assert first.to_payload(REPO)["from"] == "main"
    assert second.created is False
    assert second.exists is True
    assert second.sha == "abc123"
    assert runtime.github.called("POST", "/repos/acme/proj/git/refs") == 1
    assert runtime.github.calls[2]["json_body"] == {"ref": "refs/heads/feat/x", "sha": "abc123"}
    assert runtime.audit.actions == ["BRANCH_CREATED", "BRANCH_EXISTS"]


@pytest.mark.asyncio
async def test_concurrent_creation_race_is_reported_as_existing() -> None:
    runtime = make_runtime(
        {
            ("GET", f"{REF}/feat/x"): Seq(not_found(), _ref("fff000")),
            ("GET", f"{REF}/main"): _ref("abc123"),
            ("POST", "/repos/acme/proj/git/refs"): remote_validation("Reference already exists"),
        }
    )

    result = await create_branch(runtime, REPO, "feat/x", from_ref="main", correlation_id="c")

    assert result.created is False
    assert result.sha == "fff000"
    assert runtime.audit.actions == ["BRANCH_EXISTS"]


@pytest.mark.asyncio
async def test_other_validation_failures_are_audited_and_raised() -> None:
    runtime = make_runtime(
        {
            ("GET", f"{REF}/feat/x"): not_found(),
            ("GET", f"{REF}/main"): _ref("abc123"),
            ("POST", "/repos/acme/proj/git/refs"): remote_validation("Invalid ref name"),
        }
    )

    with pytest.raises(SafeError) as exc:
        await create_branch(runtime, REPO, "feat/x", from_ref="main", correlation_id="c")

    assert exc.value.kind is ErrorKind.REMOTE_VALIDATION
    assert runtime.audit.actions == ["BRANCH_CREATE_FAILED"]
    assert runtime.audit.entries[0].fields["reason"] == "remote_validation"


@pytest.mark.asyncio
async def test_missing_from_ref_falls_back_to_default_branch() -> None:
    runtime = make_runtime(
        {
            ("GET", f"{REF}/release"): not_found(),
            ("GET", "/repos/acme/proj"): {"default_branch": "trunk"},
            ("GET", f"{REF}/trunk"): _ref("777aaa"),
        }
    )

    base, sha = await resolve_base_commit(runtime, REPO, "release")

    assert (base, sha) == ("trunk", "777aaa")


@pytest.mark.asyncio
async def test_branch_summary_is_the_last_fallback() -> None:
    runtime = make_runtime(
        {
            ("GET", "/repos/acme/proj"): {"default_branch": "main"},
            ("GET", f"{REF}/main"): not_found(),
            ("GET", "/repos/acme/proj/branches/main"): {"name": "main", "commit": {"sha": "bbb111"}},
        }
    )

    assert await resolve_base_commit(runtime, REPO, None) == ("main", "bbb111")


@pytest.mark.asyncio
async def test_no_base_commit_is_not_found() -> None:
    runtime = make_runtime(
        {
            ("GET", f"{REF}/feat/x"): not_found(),
            ("GET", f"{REF}/dev"): not_found(),
            ("GET", "/repos/acme/proj"): {"default_branch": "main"},
            ("GET", f"{REF}/main"): not_found(),
            ("GET", "/repos/acme/proj/branches/main"): not_found(),
        }
    )

    with pytest.raises(SafeError) as exc:
        await create_branch(runtime, REPO, "feat/x", from_ref="dev", correlation_id="c")

    assert exc.value.kind is ErrorKind.NOT_FOUND
    assert "dev, main" in exc.value.message
    assert runtime.audit.actions == ["BRANCH_CREATE_FAILED"]


@pytest.mark.asyncio
async def test_non_whitelisted_repo_makes_no_remote_calls() -> None:
    runtime = make_runtime(whitelist=("other/*",))

    with pytest.raises(SafeError) as exc:
        await create_branch(runtime, REPO, "feat/x", correlation_id="c")

    assert exc.value.kind is ErrorKind.FORBIDDEN
    assert runtime.github.calls == []
    assert runtime.audit.actions == ["BRANCH_CREATE_FAILED"]


@pytest.mark.asyncio
async def test_unexpected_exception_is_audited_and_propagates() -> None:
    runtime = make_runtime(
        {
            ("GET", f"{REF}/feat/x"): not_found(),
            ("GET", f"{REF}/main"): _ref("abc123"),
            ("POST", "/repos/acme/proj/git/refs"): RuntimeError("boom"),
        }
    )

    with pytest.raises(RuntimeError):
        await create_branch(runtime, REPO, "feat/x", from_ref="main", correlation_id="c")

    assert runtime.audit.actions == ["BRANCH_CREATE_FAILED"]
    assert runtime.audit.entries[0].fields["reason"] == "internal"
