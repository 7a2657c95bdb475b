"""In-process cache tier: timestamped entries with lazy TTL expiry."""

from __future__ import annotations

from dataclasses import dataclass, field
import time
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

T = TypeVar("T")

DEFAULT_TTL_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    """A cached value and the time it was stored."""

    data: T
    timestamp: float

    def is_fresh(self, now: float, ttl_seconds: float) -> bool:
        """Fresh while ``now - timestamp < ttl``."""
        return now - self.timestamp < ttl_seconds


@dataclass
class TTLCache(Generic[T]):
    """Key-addressed map whose entries expire *ttl_seconds* after being stored.

    Expiry is checked lazily on read; :meth:`purge_expired` sweeps on demand.
    The clock is injectable so expiry can be exercised without sleeping.
    """

    ttl_seconds: float = DEFAULT_TTL_SECONDS
    clock: Callable[[], float] = time.time
    _entries: dict[str, CacheEntry[T]] = field(default_factory=dict)

    def get(self, key: str) -> T | None:
        """Return the value for *key* if present and fresh, else None."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(self.clock(), self.ttl_seconds):
            del self._entries[key]
            return None
        return entry.data

    def set(self, key: str, data: T) -> None:
        """Store *data* under *key*, stamped with the current time."""
        self._entries[key] = CacheEntry(data=data, timestamp=self.clock())

    def entry(self, key: str) -> CacheEntry[T] | None:
        """Return the raw entry for *key* regardless of freshness."""
        return self._entries.get(key)

    def purge_expired(self) -> int:
        """Drop every stale entry and return how many were removed."""
        now = self.clock()
        stale = [
            k for k, e in self._entries.items() if not e.is_fresh(now, self.ttl_seconds)
        ]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.get(key) is not None

    def __len__(self) -> int:
        return len(self._entries)


def join_ids(ids: str | Iterable[str | int]) -> str:
    """Render a song-id selection the way keys and durable paths spell it."""
    if isinstance(ids, str):
        return ids
    return ",".join(str(i) for i in ids)


def compute_cache_key(operation: str, *parts: str | int) -> str:
    """Derive the in-process cache key for an operation.

    Key = operation, then every distinguishing parameter in the caller's fixed
    order, joined with ``-``; e.g. ``search-netease-foo-1-20``. Identical
    requests always yield identical keys.
    """
    return "-".join([operation, *(str(p) for p in parts)])
