"""Test helpers (small, reusable doubles).

Keep this file tiny and purpose-built: it exists to prevent test suites from
growing lots of one-off transports and stores as coverage expands.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from tunebridge.errors import DurableReadMiss
from tunebridge.storage import MemoryStore

Route = Any  # JSON body | httpx.Response | BaseException | Callable[[httpx.Request], httpx.Response]


@dataclass
class FakeClock:
    """Manually advanced wall clock for TTL tests."""

    now: float = 1_700_000_000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@dataclass
class FakeUpstream:
    """httpx transport double: routes by (method, path) and records every request.

    Raw URLs issued by the attached ``MemoryStore`` are served from its objects,
    so durable blobs are downloadable like real OpenList raw links.
    """

    store: MemoryStore | None = None
    routes: dict[tuple[str, str], Route] = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.store is not None:
            obj = self.store.object_for_url(str(request.url))
            if obj is not None:
                return httpx.Response(
                    200, content=obj.content, headers={"Content-Type": obj.content_type}
                )

        route = self.routes.get((request.method, request.url.path))
        if route is None:
            return httpx.Response(404, json={"code": 404, "message": "not found"})
        if isinstance(route, BaseException):
            raise route
        if isinstance(route, httpx.Response):
            return route
        if callable(route):
            return route(request)
        return httpx.Response(200, json=route)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def route(self, method: str, path: str, response: Route) -> None:
        self.routes[(method, path)] = response

    def add_method(self, platform: str, operation: str, method_config: dict[str, Any]) -> None:
        """Serve *method_config* from the method-config endpoint."""
        self.route("GET", f"/api/v1/methods/{platform}/{operation}", {"data": method_config})

    def calls(self, method: str, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]


@dataclass
class GateStore(MemoryStore):
    """MemoryStore whose writes block until released, for race tests."""

    started: asyncio.Event = field(default_factory=asyncio.Event)
    release: asyncio.Event = field(default_factory=asyncio.Event)
    fail_lookups: bool = False

    async def get_file(self, path: str) -> str | None:
        if self.fail_lookups:
            raise DurableReadMiss("lookup unavailable", path=path)
        return await super().get_file(path)

    async def put_bytes(self, path: str, content: bytes, content_type: str) -> None:
        self.started.set()
        await self.release.wait()
        await super().put_bytes(path, content, content_type)


def song(song_id: str, url: str, **extra: Any) -> dict[str, Any]:
    return {"id": song_id, "name": f"song-{song_id}", "url": url, **extra}


def parse_envelope(*songs: dict[str, Any]) -> dict[str, Any]:
    """Build a successful TuneHub parse response."""
    return {"code": 0, "message": "ok", "data": {"data": list(songs), "total": len(songs)}}


def json_route(body: Any, status: int = 200) -> Callable[[httpx.Request], httpx.Response]:
    return lambda _request: httpx.Response(status, json=body)
