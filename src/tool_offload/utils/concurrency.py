"""Per-file write locks for the JSONL stores and a bounded pool for concurrent dry runs."""

from __future__ import annotations

import asyncio
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Iterable, Iterator

T = TypeVar("T")


class KeyedLocks:
    """Lazily created ``threading.RLock`` per key.

    Store instances share one registry, so two stores pointed at the same file
    serialize their appends on the same lock. The locks are re-entrant so a
    read-then-truncate sequence can hold the lock across helpers that take it
    again.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.RLock] = {}

    def lock_for(self, key: str) -> threading.RLock:
        with self._guard:
            return self._locks.setdefault(key, threading.RLock())

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self.lock_for(key):
            yield

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class CancellationToken:
    """Thread-safe stop flag checked before each job starts."""

    def __init__(self) -> None:
        self._flag = threading.Event()

    def cancel(self) -> None:
        self._flag.set()

    @property
    def is_cancelled(self) -> bool:
        return self._flag.is_set()

    def raise_if_cancelled(self) -> None:
        if self._flag.is_set():
            raise asyncio.CancelledError("operation cancelled")


@dataclass(slots=True)
class WorkerPool(Generic[T]):
    """Await jobs with at most ``max_concurrency`` in flight.

    The first failure cancels the jobs still running and is re-raised.
    """

    max_concurrency: int
    cancel_token: CancellationToken = field(default_factory=CancellationToken)

    def __post_init__(self) -> None:
        if self.max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")

    async def run_ordered(self, jobs: Iterable[Awaitable[T]]) -> list[T]:
        """Return the results of ``jobs`` in submission order, not completion order."""

        self.cancel_token.raise_if_cancelled()
        submitted = list(jobs)
        slots = asyncio.Semaphore(self.max_concurrency)

        async def guarded(job: Awaitable[T]) -> T:
            async with slots:
                self.cancel_token.raise_if_cancelled()
                return await job

        tasks = [asyncio.ensure_future(guarded(job)) for job in submitted]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            for job in submitted:
                # Jobs cancelled before their first step were never awaited.
                if asyncio.iscoroutine(job):
                    job.close()
            raise


__all__ = [
    "CancellationToken",
    "KeyedLocks",
    "WorkerPool",
]
