"""Request executor: turn a method config plus variables into an upstream call."""

from __future__ import annotations

from collections.abc import Mapping
import json
import logging
from typing import TYPE_CHECKING, Any

import httpx

from tunebridge._errors import wrap_transport_error
from tunebridge.errors import TransformError, UpstreamRequestFailed
from tunebridge.templating import (
    build_bindings,
    encode_uri_component,
    render,
    resolve_template,
)
from tunebridge.transforms import apply_transform

if TYPE_CHECKING:
    from collections.abc import Callable

    from tunebridge.config import Config
    from tunebridge.methods import ConfigCache, MethodConfig

logger = logging.getLogger(__name__)

KUWO_CDN_HOST = "kwcdn.kuwo.cn"


def rewrite_kuwo_images(value: Any, proxy_prefix: str = "/proxy") -> Any:
    """Route plain-http kuwo CDN URLs through the local image proxy.

    Every string that starts with ``http://`` and mentions the kuwo CDN host
    becomes ``{proxy_prefix}?url=<encoded>``; containers are rebuilt
    recursively and every other value is returned untouched.
    """
    if isinstance(value, str):
        if value.startswith("http://") and KUWO_CDN_HOST in value:
            return f"{proxy_prefix}?url={encode_uri_component(value)}"
        return value
    if isinstance(value, list):
        return [rewrite_kuwo_images(item, proxy_prefix) for item in value]
    if isinstance(value, Mapping):
        return {k: rewrite_kuwo_images(v, proxy_prefix) for k, v in value.items()}
    return value


#: Platform-specific post-processing applied to every executed result.
POST_PROCESSORS: dict[str, Callable[[Any, Config], Any]] = {
    "kuwo": lambda data, config: rewrite_kuwo_images(data, config.proxy_prefix),
}


class RequestExecutor:
    """Resolve a method config against variables and execute it."""

    def __init__(
        self, client: httpx.AsyncClient, configs: ConfigCache, config: Config
    ) -> None:
        self._client = client
        self._configs = configs
        self._config = config

    def build_request(
        self, method_config: MethodConfig, variables: Mapping[str, Any] | None = None
    ) -> httpx.Request:
        """Build the outbound request without sending it.

        The cached template is left as is; resolution works on derived copies.
        """
        bindings = build_bindings(variables)
        url = resolve_template(method_config.url, bindings)
        headers = httpx.Headers({"User-Agent": self._config.user_agent})
        headers.update(method_config.headers)

        query: list[tuple[str, str]] = []
        content: bytes | None = None
        if method_config.method == "GET" and method_config.params:
            params = resolve_template(method_config.params, bindings)
            query = [(key, render(value)) for key, value in params.items()]
        elif method_config.method == "POST" and method_config.body is not None:
            body = resolve_template(method_config.body, bindings)
            content = json.dumps(body, ensure_ascii=False).encode()
            headers["Content-Type"] = "application/json"

        return self._client.build_request(
            method_config.method,
            url,
            params=query or None,
            headers=headers,
            content=content,
            timeout=self._config.request_timeout_s,
        )

    async def execute(
        self,
        platform: str,
        operation: str,
        variables: Mapping[str, Any] | None = None,
    ) -> Any:
        """Run *operation* on *platform* and return its (post-processed) JSON.

        Raises:
            ConfigUnavailable, ConfigMissing: the method config could not be had.
            UpstreamRequestFailed: network or JSON-decoding failure.
        """
        method_config = await self._configs.get(platform, operation)
        request = self.build_request(method_config, variables)
        logger.debug("Executing %s %s for %s/%s", request.method, request.url, platform, operation)

        try:
            response = await self._client.send(request)
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise wrap_transport_error(
                e,
                platform=platform,
                phase=operation,
                error_cls=UpstreamRequestFailed,
            ) from e

        if method_config.transform is not None:
            try:
                data = apply_transform(method_config.transform, data)
            except TransformError as e:
                logger.warning(
                    "Transform for %s/%s failed, returning raw payload: %s",
                    platform,
                    operation,
                    e,
                )

        post_process = POST_PROCESSORS.get(platform)
        if post_process is not None:
            data = post_process(data, self._config)
        return data
