"""GitHub GraphQL client.

Used only for fixed mutation documents defined here; pull request draft state has no
REST endpoint. Connection handling (host allowlist, retries, timeouts) comes from
`GitHubHTTP`.
"""

from __future__ import annotations

import json
from typing import Any

from .errors import ErrorKind, SafeError
from .github_client import GitHubHTTP, error_for_response

MUTATION_MARK_READY_FOR_REVIEW = """
mutation($id: ID!) {
  markPullRequestReadyForReview(input: {pullRequestId: $id}) {
    pullRequest { number isDraft }
  }
}
""".strip()

MUTATION_CONVERT_TO_DRAFT = """
mutation($id: ID!) {
  convertPullRequestToDraft(input: {pullRequestId: $id}) {
    pullRequest { number isDraft }
  }
}
""".strip()


def _rejection(errors: list[Any]) -> SafeError:
    first = errors[0] if isinstance(errors[0], dict) else {}
    hint = first.get("message") if isinstance(first.get("message"), str) else None
    kind = ErrorKind.NOT_FOUND if first.get("type") == "NOT_FOUND" else ErrorKind.REMOTE_VALIDATION
    return SafeError(kind=kind, message="GitHub GraphQL mutation was rejected", hint=hint)


class GitHubGraphQLClient(GitHubHTTP):
    """Minimal GitHub GraphQL client (POST /graphql only)."""

    async def execute(self, *, query: str, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Run a mutation and return its `data` object.

        GraphQL reports failures in a 200 response; the first entry of `errors`
        decides the kind.
        """
        if not query.strip():
            raise SafeError(kind=ErrorKind.INTERNAL, message="GraphQL query is missing")

        resp = await self._send(
            "POST",
            f"{self._api_base_url}/graphql",
            json={"query": query, "variables": variables or {}},
        )
        if resp.status_code >= 400:
            raise error_for_response(resp, message="GitHub GraphQL request failed")

        try:
            payload = resp.json()
        except json.JSONDecodeError as exc:
            raise SafeError(kind=ErrorKind.GITHUB, message="GitHub returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise SafeError(kind=ErrorKind.GITHUB, message="GitHub returned invalid JSON")

        errors = payload.get("errors")
        if isinstance(errors, list) and errors:
            raise _rejection(errors)

        data = payload.get("data")
        if not isinstance(data, dict):
            raise SafeError(kind=ErrorKind.GITHUB, message="GitHub GraphQL returned no data")
        return data
