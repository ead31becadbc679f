"""Bounded polling for eventually-consistent remote state."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


async def poll_until(
    fetch: Callable[[], Awaitable[T]],
    predicate: Callable[[T], bool],
    *,
    attempts: int,
    delay_s: float,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Call `fetch` until `predicate` holds or `attempts` run out.

    Returns the last observed value either way; the caller decides what an
    unsatisfied result means. No sleep follows the final attempt.
    """
    if attempts < 1:
        raise ValueError("attempts must be >= 1")

    value = await fetch()
    for _ in range(attempts - 1):
        if predicate(value):
            return value
        await sleep(delay_s)
        value = await fetch()
    return value
