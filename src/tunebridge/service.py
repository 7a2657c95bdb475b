"""Operation surface: toplists, toplist, playlist, search and parse.

:class:`MusicService` is the one explicitly constructed context that owns the
process-wide state (both cache tiers' in-process maps and the background task
tracker). Build it once at startup, share it, and ``aclose()`` it at shutdown.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING, Any

import httpx

from tunebridge._errors import wrap_transport_error
from tunebridge.cache import TTLCache, compute_cache_key
from tunebridge.config import Config
from tunebridge.errors import (
    FeatureDisabled,
    MissingParameter,
    TuneBridgeError,
    UpstreamRequestFailed,
)
from tunebridge.executor import RequestExecutor
from tunebridge.methods import ConfigCache, MethodConfig, MethodConfigSource
from tunebridge.results import ResultCache
from tunebridge.retry import retry_async
from tunebridge.storage import OpenListStore
from tunebridge.tasks import BackgroundTaskTracker

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from types import TracebackType

    from tunebridge.storage import DurableStore

logger = logging.getLogger(__name__)

DEFAULT_QUALITY = "320k"
DEFAULT_PAGE = "1"
DEFAULT_PAGE_SIZE = "20"


class MusicService:
    """Cached, multi-platform music operations backed by a TuneHub-style API.

    Example:
        async with MusicService(Config(enabled=True)) as music:
            hits = await music.search("netease", "jay chou")
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        client: httpx.AsyncClient | None = None,
        store: DurableStore | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.config = config or Config()
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(follow_redirects=True)

        if store is None and self.config.storage.usable:
            store = OpenListStore(
                self.client,
                self.config.storage,
                timeout_s=self.config.request_timeout_s,
                upload_timeout_s=self.config.media_timeout_s,
            )
        self.store = store

        ttl = self.config.ttl_seconds
        self.method_configs: TTLCache[MethodConfig] = TTLCache(ttl, clock)
        self.results: TTLCache[Any] = TTLCache(ttl, clock)
        self.tracker = BackgroundTaskTracker()

        self.config_source = MethodConfigSource(self.client, self.config)
        self.config_cache = ConfigCache(self.config_source, self.method_configs)
        self.executor = RequestExecutor(self.client, self.config_cache, self.config)
        self.result_cache = ResultCache(
            self.results,
            client=self.client,
            config=self.config,
            tracker=self.tracker,
            store=self.store,
        )

    # --- lifecycle ---

    async def aclose(self, timeout: float | None = None) -> None:
        """Drain background population, then close an owned HTTP client."""
        await self.tracker.drain(timeout)
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> MusicService:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    # --- guards ---

    def _require_enabled(self) -> None:
        if not self.config.enabled:
            raise FeatureDisabled(
                "Music feature is disabled",
                hint="Set TUNEHUB_ENABLED=1 or pass Config(enabled=True).",
            )

    @staticmethod
    def _require(**params: Any) -> None:
        missing = [name for name, value in params.items() if not value]
        if missing:
            raise MissingParameter(f"Missing required parameter(s): {', '.join(missing)}")

    async def _execute(
        self, platform: str, operation: str, variables: Mapping[str, Any] | None = None
    ) -> Any:
        return await retry_async(
            lambda: self.executor.execute(platform, operation, variables),
            policy=self.config.retry,
        )

    # --- operations ---

    async def toplists(self, platform: str) -> Any:
        """List the charts a platform offers."""
        self._require_enabled()
        self._require(platform=platform)
        key = compute_cache_key("toplists", platform)
        return await self.result_cache.get_or_fetch(
            key, lambda: self._execute(platform, "toplists")
        )

    async def toplist(self, platform: str, id: str) -> Any:  # noqa: A002
        """Fetch one chart's songs."""
        self._require_enabled()
        self._require(platform=platform, id=id)
        key = compute_cache_key("toplist", platform, id)
        return await self.result_cache.get_or_fetch(
            key, lambda: self._execute(platform, "toplist", {"id": id})
        )

    async def playlist(self, platform: str, id: str) -> Any:  # noqa: A002
        """Fetch one playlist's songs."""
        self._require_enabled()
        self._require(platform=platform, id=id)
        key = compute_cache_key("playlist", platform, id)
        return await self.result_cache.get_or_fetch(
            key, lambda: self._execute(platform, "playlist", {"id": id})
        )

    async def search(
        self,
        platform: str,
        keyword: str,
        page: str | int | None = None,
        page_size: str | int | None = None,
    ) -> Any:
        """Search a platform's catalogue.

        Platforms disagree on the page-size variable name, so both ``pageSize``
        and ``limit`` are bound.
        """
        self._require_enabled()
        self._require(platform=platform, keyword=keyword)
        page = str(page or DEFAULT_PAGE)
        page_size = str(page_size or DEFAULT_PAGE_SIZE)
        key = compute_cache_key("search", platform, keyword, page, page_size)
        variables = {
            "keyword": keyword,
            "page": page,
            "pageSize": page_size,
            "limit": page_size,
        }
        return await self.result_cache.get_or_fetch(
            key, lambda: self._execute(platform, "search", variables)
        )

    async def parse(
        self, platform: str, ids: str | list[str], quality: str | None = None
    ) -> Any:
        """Resolve playable URLs for songs, promoting their audio to durable storage.

        A refused parse comes back as ``{code, message, error}`` and is not
        cached.
        """
        self._require_enabled()
        if not self.config.api_key:
            raise FeatureDisabled(
                "TuneHub API key is not configured",
                hint="Set TUNEHUB_API_KEY or pass Config(api_key=...).",
            )
        self._require(platform=platform, ids=ids)
        quality = quality or DEFAULT_QUALITY

        return await self.result_cache.parse(
            platform,
            ids,
            quality,
            fetch=lambda: retry_async(
                lambda: self._call_parse(platform, ids, quality),
                policy=self.config.retry,
            ),
        )

    async def _call_parse(
        self, platform: str, ids: str | list[str], quality: str
    ) -> dict[str, Any]:
        try:
            response = await self.client.post(
                f"{self.config.base_url}/v1/parse",
                json={"platform": platform, "ids": ids, "quality": quality},
                headers={
                    "User-Agent": self.config.user_agent,
                    "X-API-Key": self.config.api_key or "",
                },
                timeout=self.config.request_timeout_s,
            )
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise wrap_transport_error(
                e, platform=platform, phase="parse", error_cls=UpstreamRequestFailed
            ) from e

        if not isinstance(data, dict):
            data = {}
        if response.is_success and data.get("code") == 0:
            return data

        logger.info(
            "Parse refused for %s (status=%s, code=%s)",
            platform,
            response.status_code,
            data.get("code"),
        )
        message = data.get("message") or data.get("error") or "parse failed"
        return {
            "code": data.get("code") or -1,
            "message": message,
            "error": data.get("error") or message,
        }


def error_payload(exc: BaseException) -> tuple[int, dict[str, Any]]:
    """Render an escaped error as ``(status, {code, message, error})`` for a front door."""
    if isinstance(exc, TuneBridgeError):
        body: dict[str, Any] = {"code": -1, "message": str(exc), "error": type(exc).__name__}
        if exc.hint:
            body["hint"] = exc.hint
        return exc.http_status, body
    logger.error("Unexpected error: %s: %s", type(exc).__name__, exc)
    return 500, {"code": -1, "message": "request failed", "error": str(exc)}
