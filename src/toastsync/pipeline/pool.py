"""Bounded-concurrency task pool with cooperative abort."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Sequence, TypeVar

T = TypeVar("T")


@dataclass
class Settled(Generic[T]):
    """Outcome of one task that was started."""

    index: int
    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_with_concurrency(
    tasks: Sequence[Callable[[], Awaitable[T]]],
    limit: int,
    abort: asyncio.Event | None = None,
) -> list[Settled[T]]:
    """
    Run task factories with at most ``limit`` in flight.

    Workers pull the next task as soon as they are free. Once ``abort`` is set
    no further task is started; tasks already running finish and are reported.
    Tasks that never started are left out of the returned list, which is
    ordered by task index.
    """
    if limit < 1:
        raise ValueError(f"limit must be >= 1, got {limit}")

    abort = abort or asyncio.Event()
    settled: list[Settled[T]] = []
    next_index = 0

    async def worker() -> None:
        nonlocal next_index
        while next_index < len(tasks) and not abort.is_set():
            index = next_index
            next_index += 1
            try:
                value = await tasks[index]()
            except Exception as e:
                settled.append(Settled(index=index, error=e))
            else:
                settled.append(Settled(index=index, value=value))

    await asyncio.gather(*(worker() for _ in range(min(limit, len(tasks)))))
    settled.sort(key=lambda s: s.index)
    return settled
