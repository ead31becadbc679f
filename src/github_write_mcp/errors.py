"""Safe error types, the outward error taxonomy and the classifier.

Errors returned to agents must be non-secret and stable. Every failure inside the
service is a `SafeError` carrying a machine-readable `ErrorKind`; the classifier
turns it into a JSON-RPC error object without looking at message text.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

from mcp.types import INTERNAL_ERROR, INVALID_PARAMS, METHOD_NOT_FOUND


class ErrorKind(str, enum.Enum):
    """Machine-readable failure kinds."""

    USER_INPUT = "user_input"
    CONFIG = "config"
    FORBIDDEN = "forbidden"
    WRITES_DISABLED = "writes_disabled"
    NOT_FOUND = "not_found"
    REMOTE_VALIDATION = "remote_validation"
    RATE_LIMITED = "rate_limited"
    NOT_MERGEABLE = "not_mergeable"
    MERGEABILITY_PENDING = "mergeability_pending"
    SHA_MISMATCH = "sha_mismatch"
    UNKNOWN_TOOL = "unknown_tool"
    NETWORK = "network"
    GITHUB = "github"
    INTERNAL = "internal"


# Outward codes (stable contract).
PERMISSION_DENIED = -32001
RESOURCE_NOT_FOUND = -32002
REMOTE_VALIDATION_FAILED = -32003
RATE_LIMIT_EXCEEDED = -32004
PR_NOT_MERGEABLE = -32005
HEAD_SHA_MISMATCH = -32006

_CODE_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.USER_INPUT: INVALID_PARAMS,
    ErrorKind.FORBIDDEN: PERMISSION_DENIED,
    ErrorKind.WRITES_DISABLED: PERMISSION_DENIED,
    ErrorKind.NOT_FOUND: RESOURCE_NOT_FOUND,
    ErrorKind.REMOTE_VALIDATION: REMOTE_VALIDATION_FAILED,
    ErrorKind.RATE_LIMITED: RATE_LIMIT_EXCEEDED,
    ErrorKind.NOT_MERGEABLE: PR_NOT_MERGEABLE,
    ErrorKind.MERGEABILITY_PENDING: PR_NOT_MERGEABLE,
    ErrorKind.SHA_MISMATCH: HEAD_SHA_MISMATCH,
    ErrorKind.UNKNOWN_TOOL: METHOD_NOT_FOUND,
}

# Kinds the caller may retry unchanged after a short wait.
_RETRYABLE_KINDS = frozenset({ErrorKind.MERGEABILITY_PENDING, ErrorKind.RATE_LIMITED})


@dataclass(frozen=True, slots=True)
class SafeError(Exception):
    """An error safe to expose to agents.

    This must never include secrets (tokens, the write secret, private key content).
    `data` carries structured, non-secret details (e.g. partial-completion flags).
    """

    kind: ErrorKind
    message: str
    hint: str | None = None
    status_code: int | None = None
    data: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        return self.message


def kind_for_status(status_code: int, *, quota_exhausted: bool = False) -> ErrorKind:
    """Map a GitHub HTTP status onto an `ErrorKind`.

    GitHub reports primary rate limiting as 403 with an exhausted quota header,
    which must not be confused with a permission failure.
    """
    if status_code == 429 or (status_code == 403 and quota_exhausted):
        return ErrorKind.RATE_LIMITED
    if status_code in (401, 403):
        return ErrorKind.FORBIDDEN
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code in (409, 422):
        return ErrorKind.REMOTE_VALIDATION
    return ErrorKind.GITHUB


def github_auth_forbidden(*, status_code: int, hint: str | None = None) -> SafeError:
    """Return a safe Forbidden error for GitHub 401/403 responses."""
    return SafeError(
        kind=ErrorKind.FORBIDDEN,
        message="GitHub permission denied for this repository or operation",
        hint=hint or "The token may be revoked or missing required permissions",
        status_code=status_code,
    )


def _outward_message(err: SafeError) -> str:
    if err.kind is ErrorKind.NOT_FOUND:
        return f"Resource not found: {err.message}"
    if err.kind is ErrorKind.REMOTE_VALIDATION:
        detail = f" ({err.hint})" if err.hint else ""
        return f"GitHub validation failed: {err.message}{detail}"
    if err.kind is ErrorKind.RATE_LIMITED:
        return f"Rate limit exceeded: {err.message}"
    if err.kind in (ErrorKind.FORBIDDEN, ErrorKind.WRITES_DISABLED):
        return f"Permission denied: {err.message}"
    if err.kind in (ErrorKind.INTERNAL, ErrorKind.NETWORK, ErrorKind.GITHUB, ErrorKind.CONFIG):
        return f"Internal error: {err.message}"
    return err.message


def classify(err: SafeError) -> dict[str, Any]:
    """Turn a `SafeError` into a JSON-RPC error object `{code, message, data}`.

    Total over `ErrorKind`: anything without an explicit mapping is an internal error.
    """
    code = _CODE_BY_KIND.get(err.kind, INTERNAL_ERROR)
    data: dict[str, Any] = {"reason": err.kind.value}
    if err.kind in _RETRYABLE_KINDS:
        data["retryable"] = True
    if err.hint:
        data["hint"] = err.hint
    if err.status_code is not None:
        data["github_status"] = err.status_code
    data.update(err.data)
    return {"code": code, "message": _outward_message(err), "data": data}


def internal_error(message: str = "Internal error") -> dict[str, Any]:
    """JSON-RPC error object for unexpected failures."""
    return {"code": INTERNAL_ERROR, "message": f"Internal error: {message}", "data": {"reason": "internal"}}


def as_safe_error(exc: Exception) -> SafeError:
    """Return `exc` if it is already a `SafeError`, else an opaque INTERNAL error.

    Used on audit paths so a failure entry never carries details of an unexpected
    exception.
    """
    if isinstance(exc, SafeError):
        return exc
    return SafeError(kind=ErrorKind.INTERNAL, message="Internal error")


def user_input_error(message: str, defects: list[dict[str, Any]] | None = None) -> SafeError:
    """Error for argument shapes rejected by the validator."""
    return SafeError(kind=ErrorKind.USER_INPUT, message=message, data={"validation_errors": defects or []})
