"""Method configs: remote request templates and their TTL cache."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Literal

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from tunebridge._errors import wrap_transport_error
from tunebridge._singleflight import SingleFlight
from tunebridge.cache import TTLCache
from tunebridge.errors import ConfigMissing, ConfigUnavailable

if TYPE_CHECKING:
    from tunebridge.config import Config

logger = logging.getLogger(__name__)


class MethodConfig(BaseModel):
    """How to execute one (platform, operation) pair.

    Instances are frozen; resolving a template always builds a derived copy.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    url: str = Field(min_length=1)
    method: Literal["GET", "POST"] = "GET"
    headers: dict[str, str] = Field(default_factory=dict)
    params: dict[str, Any] = Field(default_factory=dict)
    body: Any = None
    transform: Any = None

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, v: Any) -> Any:
        """Accept lowercase verbs and treat a missing verb as GET."""
        if v is None:
            return "GET"
        if isinstance(v, str):
            return v.strip().upper()
        return v

    @field_validator("headers", "params", mode="before")
    @classmethod
    def empty_when_null(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("headers", mode="after")
    @classmethod
    def stringify_headers(cls, v: dict[str, Any]) -> dict[str, str]:
        return {str(k): str(val) for k, val in v.items()}


def method_config_key(platform: str, operation: str) -> str:
    return f"method-config-{platform}-{operation}"


class MethodConfigSource:
    """Fetches method configs from ``GET {base_url}/v1/methods/{platform}/{operation}``."""

    def __init__(self, client: httpx.AsyncClient, config: Config) -> None:
        self._client = client
        self._config = config
        self.fetch_count = 0

    async def fetch(self, platform: str, operation: str) -> MethodConfig:
        """Fetch and validate one config; never retries.

        Raises:
            ConfigUnavailable: transport failure, error status or non-JSON body.
            ConfigMissing: the response carries no usable ``data`` payload.
        """
        url = f"{self._config.base_url}/v1/methods/{platform}/{operation}"
        self.fetch_count += 1
        logger.debug("Fetching method config %s/%s", platform, operation)
        try:
            response = await self._client.get(
                url,
                headers={"User-Agent": self._config.user_agent},
                timeout=self._config.request_timeout_s,
            )
            response.raise_for_status()
            envelope = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise wrap_transport_error(
                e,
                platform=platform,
                phase="method-config",
                error_cls=ConfigUnavailable,
                message=f"Could not fetch method config {platform}/{operation}",
            ) from e

        data = envelope.get("data") if isinstance(envelope, dict) else None
        if not isinstance(data, dict):
            raise ConfigMissing(
                f"No method config for {platform}/{operation}",
                hint="Check that the platform and operation names are supported upstream.",
                platform=platform,
                phase="method-config",
            )
        try:
            return MethodConfig.model_validate(data)
        except ValidationError as e:
            raise ConfigMissing(
                f"Malformed method config for {platform}/{operation}: {e}",
                platform=platform,
                phase="method-config",
            ) from e


class ConfigCache:
    """TTL-memoized method configs.

    A fresh entry is served without network access; a miss or an expired
    entry triggers exactly one fetch per key, shared by concurrent callers.
    Failed fetches are not cached.
    """

    def __init__(self, source: MethodConfigSource, entries: TTLCache[MethodConfig]) -> None:
        self._source = source
        self._entries = entries
        self._flight: SingleFlight[str, MethodConfig] = SingleFlight()

    async def get(self, platform: str, operation: str) -> MethodConfig:
        key = method_config_key(platform, operation)
        return await self._flight.cached(
            key,
            cache_get=self._entries.get,
            cache_set=self._entries.set,
            work=lambda: self._source.fetch(platform, operation),
        )
