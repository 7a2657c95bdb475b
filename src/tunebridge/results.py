"""Two-tier result cache.

Tier 1 is an in-process :class:`~tunebridge.cache.TTLCache`. Tier 2 is the
durable store, consulted for ``parse`` results only: it is a slower peer
cache shared with other processes, never a source of truth. Anything wrong
with Tier 2 (absence, lookup errors, bad downloads, malformed blobs) is a
miss and falls through to the upstream call.

Successful parse results are written back to Tier 2 in the background, and
the audio they reference is promoted into Tier 2 one song at a time through
the :class:`~tunebridge.tasks.BackgroundTaskTracker`.
"""

from __future__ import annotations

import asyncio
import copy
import json
import logging
from typing import TYPE_CHECKING, Any

import httpx

from tunebridge._singleflight import SingleFlight
from tunebridge.cache import compute_cache_key, join_ids
from tunebridge.errors import DurableReadMiss, DurableWriteFailed

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable

    from tunebridge.cache import TTLCache
    from tunebridge.config import Config
    from tunebridge.storage import DurableStore
    from tunebridge.tasks import BackgroundTaskTracker

logger = logging.getLogger(__name__)

AUDIO_CONTENT_TYPE = "audio/mpeg"


def parse_result_path(
    cache_root: str, platform: str, ids: str | Iterable[str | int], quality: str
) -> str:
    """Durable path of a parse result: ``{root}/{platform}/{ids}-{quality}.json``."""
    return f"{cache_root}/{platform}/{join_ids(ids)}-{quality}.json"


def audio_path(cache_root: str, platform: str, song_id: str | int, quality: str) -> str:
    """Durable path of one song's audio: ``{root}/{platform}/audio/{id}-{quality}.mp3``."""
    return f"{cache_root}/{platform}/audio/{song_id}-{quality}.mp3"


def audio_task_key(platform: str, song_id: str | int, quality: str) -> str:
    return f"{platform}-{song_id}-{quality}"


def is_success(payload: Any) -> bool:
    """True for an upstream envelope that reports ``code == 0``."""
    return isinstance(payload, dict) and payload.get("code") == 0


def iter_songs(payload: dict[str, Any]) -> list[Any]:
    """Return the song objects inside a parse envelope.

    Accepts ``{"data": {"data": [...]}}``, ``{"data": [...]}`` and a single
    song object in either position.
    """
    inner = payload.get("data")
    songs = inner.get("data") if isinstance(inner, dict) and inner.get("data") else inner
    if songs is None:
        return []
    return songs if isinstance(songs, list) else [songs]


class ResultCache:
    """Read-through in-process cache with a durable fallback for parse results."""

    def __init__(
        self,
        entries: TTLCache[Any],
        *,
        client: httpx.AsyncClient,
        config: Config,
        tracker: BackgroundTaskTracker,
        store: DurableStore | None = None,
    ) -> None:
        self._entries = entries
        self._client = client
        self._config = config
        self._tracker = tracker
        self._store = store
        self._flight: SingleFlight[str, Any] = SingleFlight()

    @property
    def cache_root(self) -> str:
        return self._config.cache_root or ""

    async def get_or_fetch(self, key: str, fetch: Callable[[], Awaitable[Any]]) -> Any:
        """Serve *key* from Tier 1, or run *fetch* once and remember its result."""
        return await self._flight.cached(
            key,
            cache_get=self._entries.get,
            cache_set=self._entries.set,
            work=fetch,
        )

    async def parse(
        self,
        platform: str,
        ids: str | list[str],
        quality: str,
        fetch: Callable[[], Awaitable[Any]],
    ) -> Any:
        """Resolve a parse request through Tier 1, Tier 2, then *fetch*.

        *fetch* returns the upstream envelope. Only envelopes with
        ``code == 0`` are cached; anything else is handed back untouched.
        A successful envelope enters Tier 1 as soon as it arrives and is
        replaced by its promoted copy once the durable audio lookups finish.
        """
        key = compute_cache_key("parse", platform, join_ids(ids), quality)
        cached = self._entries.get(key)
        if cached is not None:
            logger.debug("Memory cache hit: %s", key)
            return cached

        async def _miss() -> Any:
            path = parse_result_path(self.cache_root, platform, ids, quality)
            durable = await self.read_durable_json(path)
            if durable is not None:
                logger.debug("Durable cache hit: %s", path)
                self._entries.set(key, durable)
                return durable

            payload = await fetch()
            if not is_success(payload):
                return payload
            self._entries.set(key, payload)

            final = await self.promote_audio(payload, platform, quality)
            self._entries.set(key, final)
            self.write_durable_json(path, final)
            return final

        return await self._flight.do(key, _miss)

    async def read_durable_json(self, path: str) -> Any:
        """Return the decoded blob at *path*, or None on any kind of miss."""
        if self._store is None:
            return None
        try:
            raw_url = await self._store.get_file(path)
            if raw_url is None:
                raise DurableReadMiss(f"No object at {path}", path=path)
            response = await self._client.get(
                raw_url, timeout=self._config.request_timeout_s
            )
            response.raise_for_status()
            payload = response.json()
            if not isinstance(payload, dict):
                raise DurableReadMiss(f"Malformed object at {path}", path=path)
        except (DurableReadMiss, httpx.HTTPError, ValueError) as e:
            logger.debug("Durable cache miss for %s: %s", path, e)
            return None
        return payload

    def write_durable_json(self, path: str, payload: Any) -> asyncio.Task[None] | None:
        """Schedule a background write of *payload* to *path*; never raises."""
        store = self._store
        if store is None:
            return None
        text = json.dumps(payload, ensure_ascii=False, indent=2)

        async def _write() -> None:
            await store.upload_file(path, text)

        return self._tracker.spawn(f"json:{path}", _write)

    async def promote_audio(self, payload: Any, platform: str, quality: str) -> Any:
        """Point songs at durable audio when present; schedule population when not.

        Returns a copy of *payload* with each eligible song's ``url`` and
        ``cached`` fields updated. Population runs in the background.
        """
        store = self._store
        if store is None or not isinstance(payload, dict) or not payload.get("data"):
            return payload

        result = copy.deepcopy(payload)
        songs = [
            song
            for song in iter_songs(result)
            if isinstance(song, dict) and song.get("id") and song.get("url")
        ]
        await asyncio.gather(
            *(self._promote_song(store, song, platform, quality) for song in songs)
        )
        return result

    async def _promote_song(
        self, store: DurableStore, song: dict[str, Any], platform: str, quality: str
    ) -> None:
        song_id = song["id"]
        path = audio_path(self.cache_root, platform, song_id, quality)
        try:
            raw_url = await store.get_file(path)
        except DurableReadMiss as e:
            logger.debug("Audio lookup for %s failed: %s", path, e)
            raw_url = None

        if raw_url:
            song["url"] = raw_url
            song["cached"] = True
            return

        song["cached"] = False
        source_url = str(song["url"])

        async def _download() -> bytes:
            return await self.download(source_url)

        async def _upload(content: bytes) -> None:
            await store.put_bytes(path, content, AUDIO_CONTENT_TYPE)

        self._tracker.ensure_cached(
            audio_task_key(platform, song_id, quality), _download, _upload
        )

    async def download(self, url: str) -> bytes:
        """Fetch a media blob from *url*."""
        try:
            response = await self._client.get(url, timeout=self._config.media_timeout_s)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise DurableWriteFailed(f"Download of {url} failed: {e}") from e
        logger.debug("Downloaded %d bytes from %s", len(response.content), url)
        return response.content
