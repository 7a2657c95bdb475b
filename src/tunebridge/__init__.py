"""tunebridge: declarative music-platform requests with tiered caching.

Public API:
    - MusicService: the operation surface (toplists, toplist, playlist,
      search, parse) and owner of all cache state
    - Config / StorageConfig: configuration dataclasses
    - RequestExecutor, ConfigCache, MethodConfig: template-driven execution
    - ResultCache, TTLCache, BackgroundTaskTracker: the caching layers
    - resolve_template, apply_transform: the pure template/transform helpers
"""

from __future__ import annotations

import logging

from tunebridge.cache import CacheEntry, TTLCache, compute_cache_key
from tunebridge.config import Config, StorageConfig
from tunebridge.errors import (
    ConfigMissing,
    ConfigUnavailable,
    ConfigurationError,
    DurableReadMiss,
    DurableStoreError,
    DurableWriteFailed,
    ExpressionEvalError,
    FeatureDisabled,
    MissingParameter,
    TransformError,
    TuneBridgeError,
    UpstreamError,
    UpstreamRequestFailed,
)
from tunebridge.executor import RequestExecutor, rewrite_kuwo_images
from tunebridge.methods import ConfigCache, MethodConfig, MethodConfigSource
from tunebridge.results import ResultCache
from tunebridge.retry import RetryPolicy
from tunebridge.service import MusicService, error_payload
from tunebridge.storage import DurableStore, MemoryStore, OpenListStore
from tunebridge.tasks import BackgroundTaskTracker
from tunebridge.templating import build_bindings, resolve_template
from tunebridge.transforms import apply_transform

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("tunebridge")
except PackageNotFoundError:
    __version__ = "0.0.0+unknown"

# Library-level NullHandler: stay silent unless the consumer configures logging.
logging.getLogger("tunebridge").addHandler(logging.NullHandler())

__all__ = [
    "BackgroundTaskTracker",
    "CacheEntry",
    "Config",
    "ConfigCache",
    "ConfigMissing",
    "ConfigUnavailable",
    "ConfigurationError",
    "DurableReadMiss",
    "DurableStore",
    "DurableStoreError",
    "DurableWriteFailed",
    "ExpressionEvalError",
    "FeatureDisabled",
    "MemoryStore",
    "MethodConfig",
    "MethodConfigSource",
    "MissingParameter",
    "MusicService",
    "OpenListStore",
    "RequestExecutor",
    "ResultCache",
    "RetryPolicy",
    "StorageConfig",
    "TTLCache",
    "TransformError",
    "TuneBridgeError",
    "UpstreamError",
    "UpstreamRequestFailed",
    "apply_transform",
    "build_bindings",
    "compute_cache_key",
    "error_payload",
    "resolve_template",
    "rewrite_kuwo_images",
]
