"""Structured audit logging.

Every write attempt produces audit entries, whether it succeeds, is blocked or fails.
Entries are appended as JSONL and never truncated or rotated here; retention belongs
to the host. Entries must never contain secret material (tokens, the write secret).
"""

from __future__ import annotations

import json
import logging
import sys
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


def new_correlation_id() -> str:
    """Generate a random correlation id for traceability."""
    return uuid.uuid4().hex


def _now_rfc3339() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class AuditEntry:
    """A single audit entry."""

    timestamp: str
    correlation_id: str
    action: str
    repository: str
    fields: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = dict(self.fields)
        payload.update(
            {
                "timestamp": self.timestamp,
                "correlation_id": self.correlation_id,
                "action": self.action,
                "repository": self.repository,
            }
        )
        return payload


class AuditLogger:
    """Writes audit entries as JSONL to stderr and optionally appends them to a file."""

    def __init__(self, *, sink_path: Path | None) -> None:
        self._sink_path = sink_path

    def write_entry(self, entry: AuditEntry) -> None:
        """Write an audit entry to stderr and the JSONL sink."""
        line = json.dumps(entry.to_payload(), sort_keys=True, separators=(",", ":"), default=str)
        print(line, file=sys.stderr)
        if self._sink_path is None:
            return
        try:
            self._sink_path.parent.mkdir(parents=True, exist_ok=True)
            with self._sink_path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as exc:
            # Never fail tool execution due to audit sink I/O.
            logger.error("Audit sink write failed: %s", exc.__class__.__name__)


def build_entry(*, correlation_id: str, action: str, repository: str, **fields: Any) -> AuditEntry:
    """Construct an audit entry; `None`-valued fields are dropped."""
    return AuditEntry(
        timestamp=_now_rfc3339(),
        correlation_id=correlation_id,
        action=action,
        repository=repository,
        fields={k: v for k, v in fields.items() if v is not None},
    )
