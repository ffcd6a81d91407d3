"""Bounded-concurrency runner for rate-limited API calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
S = TypeVar("S")

ProgressCallback = Callable[[int, int], None]


class RateLimitedExecutor:
    """Runs coroutines with at most *max_concurrency* of them in flight.

    Parameters
    ----------
    max_concurrency:
        Number of operations allowed to run at the same time.
    name:
        Label used in log messages.
    """

    def __init__(self, max_concurrency: int, name: str = "executor") -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.max_concurrency = max_concurrency
        self.name = name
        self._semaphore = asyncio.Semaphore(max_concurrency)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run *operation* once a slot is free and return its result."""
        async with self._semaphore:
            return await operation()

    async def execute_all(
        self,
        items: Iterable[S],
        operation: Callable[[S], Awaitable[T]],
        progress: Optional[ProgressCallback] = None,
    ) -> list[T]:
        """Run *operation* for every item, preserving input order in the result.

        The first exception raised by an operation propagates; the remaining
        operations are cancelled.
        """
        return await self._run(items, operation, progress, swallow_errors=False)

    async def execute_all_nullable(
        self,
        items: Iterable[S],
        operation: Callable[[S], Awaitable[Optional[T]]],
        progress: Optional[ProgressCallback] = None,
    ) -> list[Optional[T]]:
        """Like :meth:`execute_all`, but a failing item is logged and yields ``None``."""
        return await self._run(items, operation, progress, swallow_errors=True)

    async def _run(self, items, operation, progress, swallow_errors):
        item_list = list(items)
        total = len(item_list)
        completed = 0

        def _completed() -> None:
            # Increment and report without an await in between so concurrent
            # completions see distinct counts.
            nonlocal completed
            completed += 1
            if progress is not None:
                progress(completed, total)

        async def _one(item):
            async with self._semaphore:
                try:
                    result = await operation(item)
                except Exception as exc:
                    if not swallow_errors:
                        raise
                    logger.warning("Operation failed in %s for %r: %s", self.name, item, exc)
                    result = None
                _completed()
                return result

        tasks = [asyncio.ensure_future(_one(item)) for item in item_list]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise
