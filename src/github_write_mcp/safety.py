"""Payload safety helpers.

Decodes agent-supplied file content and enforces size limits before anything is sent
to GitHub. Rejections never echo the offending content.
"""

from __future__ import annotations

import base64
import binascii

from .errors import ErrorKind, SafeError


def decode_file_content(*, content: str, encoding: str) -> bytes:
    """Return the raw bytes for a file change."""
    if encoding == "utf-8":
        try:
            return content.encode("utf-8")
        except UnicodeEncodeError as exc:
            # Lone surrogates survive JSON decoding but have no utf-8 form.
            raise SafeError(kind=ErrorKind.USER_INPUT, message="File content is not valid utf-8 text") from exc
    if encoding == "base64":
        try:
            return base64.b64decode(content.encode("ascii"), validate=True)
        except (binascii.Error, UnicodeEncodeError) as exc:
            raise SafeError(kind=ErrorKind.USER_INPUT, message="File content is not valid base64") from exc
    raise SafeError(kind=ErrorKind.USER_INPUT, message="Unsupported encoding")


def enforce_max_bytes(*, data: bytes, max_bytes: int, what: str) -> None:
    """Enforce an upper bound on byte payloads."""
    if len(data) > max_bytes:
        raise SafeError(
            kind=ErrorKind.USER_INPUT,
            message=f"{what} exceeds size limit",
            hint=f"Maximum is {max_bytes} bytes",
        )
