"""Per-repository, per-operation-class rate limiting.

Each limiter owns one fixed-window budget. Creation and merge operations use separate
limiter instances, so exhausting one budget never touches the other.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from .config import RateLimitConfig

CREATE = "create"
MERGE = "merge"


@dataclass(slots=True)
class RateLimitEntry:
    """Attempt count inside the window that started at `window_start`."""

    count: int
    window_start: float


class RateLimitStore(Protocol):
    """Storage for rate-limit entries (in-memory or a shared key-value store)."""

    def get(self, key: tuple[str, str]) -> RateLimitEntry | None: ...

    def put(self, key: tuple[str, str], entry: RateLimitEntry) -> None: ...

    def delete(self, key: tuple[str, str]) -> None: ...

    def keys(self) -> list[tuple[str, str]]: ...


class InMemoryRateLimitStore:
    """Process-lifetime store backed by a dict."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], RateLimitEntry] = {}

    def get(self, key: tuple[str, str]) -> RateLimitEntry | None:
        return self._entries.get(key)

    def put(self, key: tuple[str, str], entry: RateLimitEntry) -> None:
        self._entries[key] = entry

    def delete(self, key: tuple[str, str]) -> None:
        self._entries.pop(key, None)

    def keys(self) -> list[tuple[str, str]]:
        return list(self._entries)


class RateLimiter:
    """Fixed-window counter keyed by `(operation_class, repository_key)`."""

    def __init__(
        self,
        *,
        operation_class: str,
        config: RateLimitConfig,
        store: RateLimitStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._operation_class = operation_class
        self._config = config
        self._store: RateLimitStore = store if store is not None else InMemoryRateLimitStore()
        self._clock = clock

    @property
    def operation_class(self) -> str:
        return self._operation_class

    @property
    def config(self) -> RateLimitConfig:
        return self._config

    def _purge_expired(self, now: float) -> None:
        for key in self._store.keys():
            if key[0] != self._operation_class:
                continue
            entry = self._store.get(key)
            if entry is not None and now - entry.window_start >= self._config.window_s:
                self._store.delete(key)

    def allow(self, repository_key: str) -> bool:
        """Record an attempt for `repository_key`; return False when over budget."""
        now = self._clock()
        self._purge_expired(now)

        key = (self._operation_class, repository_key)
        entry = self._store.get(key)
        if entry is None:
            self._store.put(key, RateLimitEntry(count=1, window_start=now))
            return True
        if entry.count >= self._config.max_count:
            return False
        entry.count += 1
        self._store.put(key, entry)
        return True

    def remaining(self, repository_key: str) -> int:
        """Return how many attempts are left in the current window."""
        now = self._clock()
        entry = self._store.get((self._operation_class, repository_key))
        if entry is None or now - entry.window_start >= self._config.window_s:
            return self._config.max_count
        return max(0, self._config.max_count - entry.count)
