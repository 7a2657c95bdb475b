"""End-to-end behaviour of MusicService over a faked TuneHub, CDN and store."""

from __future__ import annotations

import json

import httpx
import pytest

from tests.helpers import FakeClock, FakeUpstream, json_route, parse_envelope, song
from tunebridge.config import Config, StorageConfig
from tunebridge.errors import (
    ConfigMissing,
    FeatureDisabled,
    MissingParameter,
    UpstreamRequestFailed,
)
from tunebridge.retry import RetryPolicy
from tunebridge.service import MusicService, error_payload
from tunebridge.storage import MemoryStore

pytestmark = pytest.mark.integration

PARSE = "/api/v1/parse"
CDN = "http://cdn.test/123.mp3"


@pytest.mark.asyncio
async def test_parse_round_trip_populates_and_then_serves_durable_audio(
    service: MusicService, upstream: FakeUpstream, store: MemoryStore
) -> None:
    upstream.route("POST", PARSE, parse_envelope(song("123", CDN)))
    upstream.route("GET", "/123.mp3", httpx.Response(200, content=b"ID3-bytes"))

    first = await service.parse("netease", "123", "320k")

    (track,) = first["data"]["data"]
    assert track["url"] == CDN
    assert track["cached"] is False
    (request,) = upstream.calls("POST", PARSE)
    assert json.loads(request.content) == {"platform": "netease", "ids": "123", "quality": "320k"}
    assert request.headers["X-API-Key"] == "test-key"

    await service.tracker.drain()
    assert store.objects["/music-cache/netease/audio/123-320k.mp3"].content == b"ID3-bytes"
    assert json.loads(store.objects["/music-cache/netease/123-320k.json"].content) == first

    # Same process: served from memory without another upstream call.
    assert await service.parse("netease", "123", "320k") is first
    assert len(upstream.calls("POST", PARSE)) == 1

    # A fresh process sharing the store finds the durable result.
    config = service.config
    client = upstream.client()
    async with MusicService(config, client=client, store=store) as other:
        again = await other.parse("netease", "123", "320k")
    await client.aclose()
    assert again == first
    assert len(upstream.calls("POST", PARSE)) == 1

    # Once the blob is gone, a re-parse finds the stored audio instead of the CDN.
    del store.objects["/music-cache/netease/123-320k.json"]
    client = upstream.client()
    async with MusicService(config, client=client, store=store) as third:
        promoted = await third.parse("netease", "123", "320k")
    await client.aclose()
    (track,) = promoted["data"]["data"]
    assert track["url"] == "http://store.test/music-cache/netease/audio/123-320k.mp3"
    assert track["cached"] is True


@pytest.mark.asyncio
async def test_parse_defaults_quality_and_reports_refusals(
    service: MusicService, upstream: FakeUpstream
) -> None:
    upstream.route("POST", PARSE, json_route({"code": 40001, "message": "bad key"}, status=401))

    result = await service.parse("netease", ["1", "2"])

    assert result == {"code": 40001, "message": "bad key", "error": "bad key"}
    (request,) = upstream.calls("POST", PARSE)
    assert json.loads(request.content)["quality"] == "320k"

    await service.parse("netease", ["1", "2"])
    assert len(upstream.calls("POST", PARSE)) == 2


@pytest.mark.asyncio
async def test_search_executes_template_and_caches_by_page(
    service: MusicService, upstream: FakeUpstream
) -> None:
    upstream.add_method(
        "netease",
        "search",
        {
            "url": "https://music.example/search",
            "params": {"s": "{{keyword}}", "limit": "{{pageSize}}", "offset": "{{(page - 1) * limit}}"},
        },
    )
    upstream.route("GET", "/search", lambda r: httpx.Response(200, json={"offset": r.url.params["offset"]}))

    page1 = await service.search("netease", "foo")
    again = await service.search("netease", "foo", page="1", page_size=20)
    page2 = await service.search("netease", "foo", page=2)

    assert page1 == {"offset": "0"}
    assert again is page1
    assert page2 == {"offset": "20"}
    assert len(upstream.calls("GET", "/search")) == 2
    assert service.config_source.fetch_count == 1
    assert "search-netease-foo-1-20" in service.results


@pytest.mark.asyncio
async def test_kuwo_toplist_is_proxied_and_cached(
    service: MusicService, upstream: FakeUpstream, clock: FakeClock
) -> None:
    upstream.add_method("kuwo", "toplist", {"url": "https://kuwo.example/list/{{id}}"})
    upstream.route("GET", "/list/93", {"pic": "http://img.kwcdn.kuwo.cn/1.jpg"})

    result = await service.toplist("kuwo", "93")
    await service.toplist("kuwo", "93")

    assert result == {"pic": "/proxy?url=http%3A%2F%2Fimg.kwcdn.kuwo.cn%2F1.jpg"}
    assert len(upstream.calls("GET", "/list/93")) == 1

    clock.advance(24 * 60 * 60)
    await service.toplist("kuwo", "93")
    assert len(upstream.calls("GET", "/list/93")) == 2
    assert service.config_source.fetch_count == 2


@pytest.mark.asyncio
async def test_toplists_and_playlist(service: MusicService, upstream: FakeUpstream) -> None:
    upstream.add_method("qq", "toplists", {"url": "https://qq.example/tops"})
    upstream.add_method(
        "qq", "playlist", {"url": "https://qq.example/pl", "method": "POST", "body": {"disstid": "{{id}}"}}
    )
    upstream.route("GET", "/tops", {"list": [1, 2]})
    upstream.route("POST", "/pl", lambda r: httpx.Response(200, json=json.loads(r.content)))

    assert await service.toplists("qq") == {"list": [1, 2]}
    assert await service.playlist("qq", "7001") == {"disstid": "7001"}
    assert "toplists-qq" in service.results
    assert "playlist-qq-7001" in service.results


@pytest.mark.asyncio
async def test_missing_config_is_an_upstream_error(
    service: MusicService, upstream: FakeUpstream
) -> None:
    upstream.route("GET", "/api/v1/methods/qq/search", {"code": 404})

    with pytest.raises(ConfigMissing) as exc:
        await service.search("qq", "foo")
    status, body = error_payload(exc.value)
    assert status == 502
    assert body["error"] == "ConfigMissing"


@pytest.mark.asyncio
async def test_retry_policy_applies_to_operations(
    config: Config, upstream: FakeUpstream, store: MemoryStore
) -> None:
    upstream.add_method("qq", "toplists", {"url": "https://qq.example/tops"})
    attempts = 0

    def flaky(_request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise httpx.ConnectError("connection reset")
        return httpx.Response(200, json={"ok": True})

    upstream.route("GET", "/tops", flaky)
    retrying = Config(
        enabled=True,
        base_url=config.base_url,
        api_key="k",
        storage=StorageConfig(enabled=False),
        retry=RetryPolicy(max_attempts=2, base_delay_s=0, jitter=False),
    )
    client = upstream.client()

    async with MusicService(retrying, client=client, store=store) as music:
        assert await music.toplists("qq") == {"ok": True}
    await client.aclose()
    assert len(upstream.calls("GET", "/tops")) == 2


@pytest.mark.asyncio
async def test_upstream_failure_is_not_cached(service: MusicService, upstream: FakeUpstream) -> None:
    upstream.add_method("qq", "toplists", {"url": "https://qq.example/tops"})
    upstream.route("GET", "/tops", httpx.ConnectError("refused"))

    with pytest.raises(UpstreamRequestFailed):
        await service.toplists("qq")

    upstream.route("GET", "/tops", {"list": []})
    assert await service.toplists("qq") == {"list": []}


@pytest.mark.asyncio
async def test_disabled_feature_rejects_every_operation(upstream: FakeUpstream) -> None:
    client = upstream.client()
    async with MusicService(Config(enabled=False), client=client) as music:
        for call in (
            music.toplists("qq"),
            music.toplist("qq", "1"),
            music.playlist("qq", "1"),
            music.search("qq", "x"),
            music.parse("qq", "1"),
        ):
            with pytest.raises(FeatureDisabled):
                await call
    await client.aclose()
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_parse_requires_api_key(upstream: FakeUpstream) -> None:
    client = upstream.client()
    async with MusicService(Config(enabled=True, api_key=""), client=client) as music:
        with pytest.raises(FeatureDisabled, match="API key"):
            await music.parse("netease", "1")
    await client.aclose()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("operation", "args"),
    [
        ("toplists", ("",)),
        ("toplist", ("qq", "")),
        ("playlist", ("", "1")),
        ("search", ("qq", "")),
        ("parse", ("netease", "")),
    ],
)
async def test_missing_parameters_are_rejected(
    service: MusicService, operation: str, args: tuple[str, ...]
) -> None:
    with pytest.raises(MissingParameter) as exc:
        await getattr(service, operation)(*args)
    assert error_payload(exc.value)[0] == 400


@pytest.mark.asyncio
async def test_owned_client_is_closed() -> None:
    music = MusicService(Config(enabled=True))
    await music.aclose()
    assert music.client.is_closed
