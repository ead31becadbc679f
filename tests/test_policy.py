"""Capability gate unit tests.

Covers:
- repository whitelist (exact, owner wildcard, empty)
- write secret (disabled vs. wrong secret vs. ok)
- optional bearer credential
"""

from __future__ import annotations

import pytest
from github_write_mcp.errors import ErrorKind, SafeError
from github_write_mcp.policy import WRITE_TOOLS, Policy, is_write_tool


def _policy(**kwargs: object) -> Policy:
    defaults: dict[str, object] = {"whitelist": ("acme/*", "octo/repo"), "write_secret": "s3cret"}
    defaults.update(kwargs)
    return Policy(**defaults)  # type: ignore[arg-type]


def test_whitelist_exact_and_owner_wildcard() -> None:
    policy = _policy()

    assert policy.check_repo_allowed("acme", "proj").allowed is True
    assert policy.check_repo_allowed("acme", "anything").allowed is True
    assert policy.check_repo_allowed("octo", "repo").allowed is True
    assert policy.check_repo_allowed("octo", "other").allowed is False
    assert policy.check_repo_allowed("acme-corp", "proj").allowed is False


def test_empty_whitelist_denies_every_repository() -> None:
    policy = _policy(whitelist=())

    decision = policy.check_repo_allowed("acme", "proj")
    assert decision.allowed is False
    assert "acme/proj" in (decision.reason or "")


def test_require_repo_allowed_raises_forbidden_with_hint() -> None:
    policy = _policy()

    with pytest.raises(SafeError) as exc:
        policy.require_repo_allowed("evil", "repo", action="PR merge")

    assert exc.value.kind is ErrorKind.FORBIDDEN
    assert "evil/repo" in exc.value.message
    assert "PR merge" in exc.value.message
    assert "PR_WHITELIST" in (exc.value.hint or "")


def test_write_tool_classification() -> None:
    assert is_write_tool("merge_pull_request") is True
    assert is_write_tool("create_branch") is True
    assert is_write_tool("read_file") is False
    assert "get_pr_mergeability" not in WRITE_TOOLS


def test_read_tools_pass_without_secret() -> None:
    _policy(write_secret=None).check_write_access("read_file", None)
    _policy().check_write_access("list_branches", "wrong")


def test_write_without_configured_secret_is_writes_disabled() -> None:
    policy = _policy(write_secret=None)

    with pytest.raises(SafeError) as exc:
        policy.check_write_access("create_branch", "anything")

    assert exc.value.kind is ErrorKind.WRITES_DISABLED
    assert policy.writes_configured is False


@pytest.mark.parametrize("supplied", [None, "", "wrong", "s3cret-but-longer"])
def test_write_with_wrong_secret_is_forbidden(supplied: str | None) -> None:
    with pytest.raises(SafeError) as exc:
        _policy().check_write_access("merge_pull_request", supplied)

    assert exc.value.kind is ErrorKind.FORBIDDEN
    assert "s3cret" not in exc.value.message
    assert "/mcp/<SECRET>" in (exc.value.hint or "")


def test_write_with_matching_secret_passes() -> None:
    _policy().check_write_access("merge_pull_request", "s3cret")


def test_bearer_not_configured_accepts_anything() -> None:
    policy = _policy(auth_token=None)

    assert policy.check_bearer(None).allowed is True
    assert policy.check_bearer("Bearer whatever").allowed is True


def test_bearer_missing_header_is_allowed_when_configured() -> None:
    assert _policy(auth_token="tkn").check_bearer(None).allowed is True


@pytest.mark.parametrize("header", ["Bearer nope", "tkn", "Basic tkn"])
def test_bearer_wrong_value_is_denied(header: str) -> None:
    assert _policy(auth_token="tkn").check_bearer(header).allowed is False


def test_bearer_correct_value_is_allowed() -> None:
    assert _policy(auth_token="tkn").check_bearer("Bearer tkn").allowed is True
