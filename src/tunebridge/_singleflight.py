"""Async single-flight helper.

Coordinates concurrent cache fills for the same key so only one coroutine
performs the work while the others await the same Future.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

K = TypeVar("K")
T = TypeVar("T")


def consume_future_exception(fut: asyncio.Future[Any]) -> None:
    """Avoid 'Future exception was never retrieved' for coordination futures."""
    if fut.cancelled():
        return
    _ = fut.exception()


class SingleFlight(Generic[K, T]):
    """Share one in-progress computation per key among concurrent callers.

    The check-and-insert on the in-flight map happens without an intervening
    await, so it is atomic on the event loop.
    """

    def __init__(self) -> None:
        self._inflight: dict[K, asyncio.Future[T]] = {}

    def __contains__(self, key: object) -> bool:
        return key in self._inflight

    def __len__(self) -> int:
        return len(self._inflight)

    async def do(self, key: K, work: Callable[[], Awaitable[T]]) -> T:
        """Run *work* for *key*, or await the run already in flight."""
        fut = self._inflight.get(key)
        if fut is not None:
            return await asyncio.shield(fut)

        fut = asyncio.get_running_loop().create_future()
        fut.add_done_callback(consume_future_exception)
        self._inflight[key] = fut
        try:
            value = await work()
        except asyncio.CancelledError:
            fut.cancel()
            raise
        except Exception as e:
            fut.set_exception(e)
            raise
        else:
            fut.set_result(value)
            return value
        finally:
            if self._inflight.get(key) is fut:
                del self._inflight[key]

    async def cached(
        self,
        key: K,
        *,
        cache_get: Callable[[K], T | None],
        cache_set: Callable[[K, T], None],
        work: Callable[[], Awaitable[T]],
    ) -> T:
        """Return the cached value for *key*, or compute it once.

        - If cached, returns immediately.
        - If in flight, awaits the existing Future.
        - Otherwise runs *work* as the single creator and stores its result.
        """
        cached = cache_get(key)
        if cached is not None:
            return cached

        async def _fill() -> T:
            value = await work()
            cache_set(key, value)
            return value

        return await self.do(key, _fill)
