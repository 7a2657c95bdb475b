"""Background population of the durable tier, single-flight per resource key.

Each logical resource (e.g. ``netease-123-320k``) has at most one population
task in flight. A caller that arrives while one is running is handed that
task instead of starting another. Tasks are detached from the request that
started them: the response goes out immediately and the task runs to
completion or failure on its own.

Per-key lifecycle::

    Absent -> Running -> (Succeeded | Failed) -> Absent

The key is released by a done-callback, so success, failure, an unexpected
exception and cancellation all free it; a later request simply retries.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class BackgroundTaskTracker:
    """Registry of in-flight background population tasks."""

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Task[None]] = {}

    def ensure_cached(
        self,
        key: str,
        producer: Callable[[], Awaitable[bytes]],
        sink: Callable[[bytes], Awaitable[None]],
    ) -> asyncio.Task[None]:
        """Populate *key* by running *producer* then *sink*, unless already running.

        Returns the in-flight task; awaiting it is optional and never raises
        for population failures (they are logged).
        """

        async def _populate() -> None:
            content = await producer()
            await sink(content)

        return self.spawn(key, _populate)

    def spawn(self, key: str, work: Callable[[], Awaitable[None]]) -> asyncio.Task[None]:
        """Run *work* in the background under *key* with single-flight semantics."""
        existing = self._inflight.get(key)
        if existing is not None:
            logger.debug("Population of %s already running; joining it", key)
            return existing

        # No await between the lookup above and the insert below.
        task = asyncio.get_running_loop().create_task(
            self._run(key, work), name=f"tunebridge-populate:{key}"
        )
        self._inflight[key] = task
        task.add_done_callback(functools.partial(self._release, key))
        return task

    async def _run(self, key: str, work: Callable[[], Awaitable[None]]) -> None:
        try:
            await work()
        except Exception as e:
            logger.warning("Background population of %s failed: %s", key, e)
        else:
            logger.info("Background population of %s finished", key)

    def _release(self, key: str, task: asyncio.Task[None]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    def is_running(self, key: str) -> bool:
        return key in self._inflight

    def inflight_keys(self) -> frozenset[str]:
        return frozenset(self._inflight)

    def __len__(self) -> int:
        return len(self._inflight)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight work; cancel whatever is still running after *timeout*."""
        tasks = list(self._inflight.values())
        if not tasks:
            return
        logger.debug("Draining %d background task(s)", len(tasks))
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Cancelled %d background task(s) at shutdown", len(pending))
            await asyncio.gather(*pending, return_exceptions=True)
