"""Configuration: frozen Config resolved from arguments, then the environment."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import os

from dotenv import load_dotenv

from tunebridge._http import (
    DEFAULT_MEDIA_TIMEOUT_S,
    DEFAULT_REQUEST_TIMEOUT_S,
    DEFAULT_USER_AGENT,
)
from tunebridge.errors import ConfigurationError
from tunebridge.retry import RetryPolicy

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://tunehub.sayqz.com/api"
DEFAULT_CACHE_ROOT = "/music-cache"
DEFAULT_TTL_SECONDS = 24 * 60 * 60


def _env_flag(name: str) -> bool:
    """Read a boolean environment flag using common conventions."""
    return os.environ.get(name, "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class StorageConfig:
    """Connection settings for the durable (OpenList) cache tier.

    Unset fields are resolved from ``OPENLIST_CACHE_*`` environment variables.
    """

    enabled: bool | None = None
    url: str | None = None
    username: str | None = None
    password: str | None = None

    def __post_init__(self) -> None:
        """Fill unset fields from the environment."""
        if self.enabled is None:
            object.__setattr__(self, "enabled", _env_flag("OPENLIST_CACHE_ENABLED"))
        for name in ("url", "username", "password"):
            if getattr(self, name) is None:
                env_var = f"OPENLIST_CACHE_{name.upper()}"
                object.__setattr__(self, name, os.environ.get(env_var) or None)
        if self.url:
            object.__setattr__(self, "url", self.url.rstrip("/"))

    @property
    def usable(self) -> bool:
        """True when the store is enabled and every credential is present."""
        if not self.enabled:
            return False
        if not (self.url and self.username and self.password):
            logger.warning("Durable cache enabled but incomplete; skipping it")
            return False
        return True

    def __str__(self) -> str:
        """Return a redacted representation."""
        return (
            f"StorageConfig(enabled={self.enabled!r}, url={self.url!r}, "
            f"username={self.username!r}, "
            f"password={'[REDACTED]' if self.password else None})"
        )

    __repr__ = __str__


@dataclass(frozen=True)
class Config:
    """Immutable configuration for tunebridge.

    Values left as *None* are resolved from the environment (a local ``.env``
    file is honoured via python-dotenv):

    - ``enabled`` from ``TUNEHUB_ENABLED``
    - ``base_url`` from ``TUNEHUB_BASE_URL``
    - ``api_key`` from ``TUNEHUB_API_KEY``
    - ``cache_root`` from ``OPENLIST_CACHE_PATH``

    Example:
        config = Config(enabled=True, api_key="...")
    """

    enabled: bool | None = None
    base_url: str | None = None
    api_key: str | None = None
    cache_root: str | None = None
    storage: StorageConfig = field(default_factory=StorageConfig)
    ttl_seconds: int = DEFAULT_TTL_SECONDS
    request_timeout_s: float = DEFAULT_REQUEST_TIMEOUT_S
    #: Audio downloads and uploads are large; they get their own timeout.
    media_timeout_s: float = DEFAULT_MEDIA_TIMEOUT_S
    proxy_prefix: str = "/proxy"
    user_agent: str = DEFAULT_USER_AGENT
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        """Auto-resolve unset values and validate configuration."""
        if self.enabled is None:
            object.__setattr__(self, "enabled", _env_flag("TUNEHUB_ENABLED"))
        base_url = self.base_url
        if base_url is None:
            base_url = os.environ.get("TUNEHUB_BASE_URL") or DEFAULT_BASE_URL
        if not base_url.startswith(("http://", "https://")):
            raise ConfigurationError(
                f"base_url must be an http(s) URL, got {base_url!r}",
                hint="Set TUNEHUB_BASE_URL or pass base_url='https://.../api'.",
            )
        object.__setattr__(self, "base_url", base_url.rstrip("/"))
        if self.api_key is None:
            object.__setattr__(self, "api_key", os.environ.get("TUNEHUB_API_KEY", ""))
        if self.cache_root is None:
            object.__setattr__(
                self,
                "cache_root",
                os.environ.get("OPENLIST_CACHE_PATH") or DEFAULT_CACHE_ROOT,
            )

        object.__setattr__(self, "cache_root", (self.cache_root or "").rstrip("/"))

        if self.ttl_seconds < 0:
            raise ConfigurationError(
                f"ttl_seconds must be ≥ 0, got {self.ttl_seconds}",
                hint="This controls how long in-process cache entries stay fresh.",
            )
        for name in ("request_timeout_s", "media_timeout_s"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(
                    f"{name} must be > 0, got {getattr(self, name)}",
                    hint="Every outbound call needs a bounded timeout.",
                )

    def __str__(self) -> str:
        """Return a redacted, developer-friendly representation."""
        return (
            f"Config(enabled={self.enabled!r}, base_url={self.base_url!r}, "
            f"api_key={'[REDACTED]' if self.api_key else None}, "
            f"cache_root={self.cache_root!r}, storage={self.storage})"
        )

    __repr__ = __str__
