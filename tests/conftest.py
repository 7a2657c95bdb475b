"""Pytest configuration and fixtures.

Provides environment isolation, logging configuration, and the shared test
doubles (fake upstream, in-memory store, controllable clock). Fixtures that
isolate the environment are autouse unless noted.
"""

from __future__ import annotations

from contextlib import suppress
import logging
import os

import pytest
import pytest_asyncio

from tests.helpers import FakeClock, FakeUpstream
from tunebridge.config import Config, StorageConfig
from tunebridge.service import MusicService
from tunebridge.storage import MemoryStore

TEST_BASE_URL = "http://tunehub.test/api"
TEST_STORE_URL = "http://store.test"

# =============================================================================
# Environment Isolation (Autouse)
# =============================================================================


@pytest.fixture(autouse=True)
def block_dotenv(request, monkeypatch):
    """Prevent python-dotenv from loading project .env files during tests.

    Opt-out: @pytest.mark.allow_dotenv
    """
    if request.node.get_closest_marker("allow_dotenv"):
        return
    with suppress(Exception):
        monkeypatch.setattr(
            "dotenv.load_dotenv", lambda *_args, **_kwargs: False, raising=False
        )


@pytest.fixture(autouse=True)
def isolate_env(request, monkeypatch):
    """Clear TUNEHUB_* and OPENLIST_* env vars to prevent test pollution.

    Opt-out: @pytest.mark.allow_env_pollution
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return
    for key in list(os.environ.keys()):
        if key.startswith(("TUNEHUB_", "OPENLIST_")):
            monkeypatch.delenv(key, raising=False)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(scope="session", autouse=True)
def quiet_noisy_libraries():
    """Suppress noisy third-party loggers."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


# =============================================================================
# Doubles
# =============================================================================


@pytest.fixture
def config() -> Config:
    """An enabled config pointing at the fake upstream, durable tier off."""
    return Config(
        enabled=True,
        base_url=TEST_BASE_URL,
        api_key="test-key",
        cache_root="/music-cache",
        storage=StorageConfig(enabled=False),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore(base_url=TEST_STORE_URL)


@pytest.fixture
def upstream(store: MemoryStore) -> FakeUpstream:
    """Fake TuneHub + CDN; also serves the raw URLs handed out by ``store``."""
    return FakeUpstream(store=store)


@pytest_asyncio.fixture
async def service(config, upstream, store, clock):
    """A MusicService wired to the fakes; closed (and drained) after the test."""
    client = upstream.client()
    music = MusicService(config, client=client, store=store, clock=clock)
    try:
        yield music
    finally:
        await music.aclose()
        await client.aclose()
