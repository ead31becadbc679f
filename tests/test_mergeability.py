"""Mergeability resolution and check aggregation."""

from __future__ import annotations

import pytest
from github_write_mcp.errors import ErrorKind, SafeError
from github_write_mcp.mergeability import checks_summary, resolve
from github_write_mcp.models import RepositoryReference
from stubs import Seq, make_runtime

REPO = RepositoryReference(owner="acme", name="proj")


@pytest.mark.asyncio
async def test_resolve_polls_until_mergeable_is_known() -> None:
    runtime = make_runtime(
        {("GET", "/repos/acme/proj/pulls/42"): Seq({"mergeable": None}, {"mergeable": None}, {"mergeable": True})}
    )

    pr = await resolve(runtime, REPO, 42)

    assert pr["mergeable"] is True
    assert runtime.github.called("GET", "/repos/acme/proj/pulls/42") == 3


@pytest.mark.asyncio
async def test_resolve_gives_up_after_configured_attempts() -> None:
    runtime = make_runtime({("GET", "/repos/acme/proj/pulls/42"): {"mergeable": None}})

    pr = await resolve(runtime, REPO, 42)

    assert pr["mergeable"] is None
    assert runtime.github.called("GET", "/repos/acme/proj/pulls/42") == 5


@pytest.mark.asyncio
async def test_checks_summary_unions_statuses_and_check_runs() -> None:
    runtime = make_runtime(
        {
            ("GET", "/repos/acme/proj/commits/deadbeef/status"): {
                "state": "failure",
                "statuses": [
                    {"context": "ci/lint", "state": "success"},
                    {"context": "ci/build", "state": "failure"},
                ],
            },
            ("GET", "/repos/acme/proj/commits/deadbeef/check-runs"): {
                "check_runs": [
                    {"name": "unit", "conclusion": "failure"},
                    {"name": "e2e", "conclusion": "timed_out"},
                    {"name": "docs", "conclusion": "success"},
                    {"name": "slow", "conclusion": None},
                ]
            },
        }
    )

    summary = await checks_summary(runtime, REPO, "deadbeef")

    assert summary.failing == ["ci/build", "unit", "e2e"]
    assert summary.state == "failure"
    assert summary.total_statuses == 2
    assert summary.total_checks == 4
    assert summary.message == "Failing: ci/build, unit, e2e"


@pytest.mark.asyncio
async def test_checks_summary_without_failures_points_at_protections() -> None:
    runtime = make_runtime(
        {
            ("GET", "/repos/acme/proj/commits/abc/status"): {"state": "success", "statuses": []},
            ("GET", "/repos/acme/proj/commits/abc/check-runs"): {"check_runs": []},
        }
    )

    summary = await checks_summary(runtime, REPO, "abc")

    assert summary.failing == []
    assert "protections" in summary.message


def _forbidden() -> SafeError:
    return SafeError(kind=ErrorKind.FORBIDDEN, message="GitHub permission denied", status_code=403)


@pytest.mark.asyncio
async def test_checks_summary_reports_the_surface_that_answered() -> None:
    runtime = make_runtime(
        {
            ("GET", "/repos/acme/proj/commits/deadbeef/status"): {
                "state": "failure",
                "statuses": [{"context": "ci/legacy", "state": "failure"}],
            },
            ("GET", "/repos/acme/proj/commits/deadbeef/check-runs"): _forbidden(),
        }
    )

    summary = await checks_summary(runtime, REPO, "deadbeef")

    assert summary.failing == ["ci/legacy"]
    assert summary.unavailable == ("check runs",)
    assert summary.message == "Failing: ci/legacy (check runs unavailable)"


@pytest.mark.asyncio
async def test_checks_summary_raises_when_both_surfaces_fail() -> None:
    runtime = make_runtime(
        {
            ("GET", "/repos/acme/proj/commits/abc/status"): _forbidden(),
            ("GET", "/repos/acme/proj/commits/abc/check-runs"): _forbidden(),
        }
    )

    with pytest.raises(SafeError) as exc:
        await checks_summary(runtime, REPO, "abc")

    assert exc.value.kind is ErrorKind.FORBIDDEN
