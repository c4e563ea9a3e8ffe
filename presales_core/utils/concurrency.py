"""Shared concurrency primitives for the ingestion and case-study pipelines.

Three patterns are exposed:

1. **throttled_gather** -- ``asyncio.gather`` with every awaitable wrapped
   in a semaphore acquire/release.  The embedding batcher uses it to bound
   the number of in-flight embedding requests; callers beyond the bound
   wait for a slot instead of failing.

2. **call_with_timeout** -- awaits a collaborator call under a
   caller-supplied timeout and converts ``asyncio.TimeoutError`` into
   :class:`~presales_core.utils.errors.StageTimeout` tagged with the stage.

3. **KeyedLock** -- one ``asyncio.Lock`` per key (document id), giving
   at-most-one in-flight index-mutating operation per document while
   different documents proceed concurrently.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, TypeVar

import structlog

from presales_core.utils.errors import StageTimeout
from presales_core.utils.logging import get_logger

_T = TypeVar("_T")

_logger: structlog.BoundLogger = get_logger(__name__)


async def throttled_gather(
    coros: list[Awaitable[_T]],
    semaphore: asyncio.Semaphore,
    return_exceptions: bool = False,
) -> list[_T | BaseException]:
    """Run awaitables concurrently, at most ``semaphore``'s value at a time.

    Parameters
    ----------
    coros:
        Awaitable objects to execute concurrently.
    semaphore:
        Semaphore bounding how many awaitables run at once.
    return_exceptions:
        If ``True``, exceptions are returned in the results list rather
        than being raised.  Mirrors ``asyncio.gather`` semantics.

    Returns
    -------
    list[_T | BaseException]
        Results in the same order as the input coroutines.  Without
        ``return_exceptions`` the first failure cancels every sibling
        still running or waiting for a slot, then propagates.
    """

    async def _wrapped(coro: Awaitable[_T]) -> _T:
        async with semaphore:
            return await coro

    tasks = [asyncio.ensure_future(_wrapped(c)) for c in coros]
    try:
        return await asyncio.gather(*tasks, return_exceptions=return_exceptions)
    except BaseException:
        # First failure wins; siblings still running or queued are cancelled.
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for coro in coros:
            if asyncio.iscoroutine(coro):
                coro.close()
        raise


async def call_with_timeout(
    awaitable: Awaitable[_T],
    timeout_seconds: float | None,
    stage: str,
    operation: str = "",
) -> _T:
    """Await *awaitable*, raising :class:`StageTimeout` after *timeout_seconds*.

    ``None`` disables the timeout (used by tests and by callers that wrap
    the whole pipeline run in their own deadline).
    """
    if timeout_seconds is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        _logger.warning(
            "collaborator_call_timed_out",
            stage=stage,
            operation=operation,
            timeout_seconds=timeout_seconds,
        )
        raise StageTimeout(
            message=f"{operation or 'Collaborator call'} exceeded {timeout_seconds}s",
            stage=stage,
            timeout_seconds=timeout_seconds,
        ) from exc


class KeyedLock:
    """Per-key mutual exclusion for asyncio code.

    Locks are created lazily and dropped once nobody holds or waits on
    them, so the registry does not grow with every document ever indexed.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def acquire(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
