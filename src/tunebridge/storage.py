"""Durable cache tier: a slower, shared, path-addressed object store.

Only a logical contract is relied upon:

- ``get_file(path)`` returns a fetchable URL for the object, or None.
- ``upload_file(path, text)`` stores a JSON/text blob.
- ``put_bytes(path, content, content_type)`` stores a binary blob.

:class:`OpenListStore` speaks the OpenList HTTP API; :class:`MemoryStore`
keeps objects in a dict for tests and local runs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import httpx

from tunebridge._singleflight import SingleFlight
from tunebridge.errors import DurableReadMiss, DurableStoreError, DurableWriteFailed
from tunebridge.templating import encode_uri_component

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from tunebridge.config import StorageConfig

logger = logging.getLogger(__name__)

_OK = 200
_UNAUTHORIZED = 401


@runtime_checkable
class DurableStore(Protocol):
    """Minimal durable-store protocol."""

    async def get_file(self, path: str) -> str | None:
        """Return a raw URL for *path*, or None when absent.

        Raises:
            DurableReadMiss: the lookup itself failed.
        """
        ...

    async def upload_file(self, path: str, content: str) -> None:
        """Store a text blob at *path*."""
        ...

    async def put_bytes(self, path: str, content: bytes, content_type: str) -> None:
        """Store a binary blob at *path*."""
        ...


class OpenListStore:
    """OpenList client: token login, ``fs/get`` lookups and ``fs/put`` uploads."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        settings: StorageConfig,
        *,
        timeout_s: float,
        upload_timeout_s: float,
    ) -> None:
        self._client = client
        self._base_url = settings.url or ""
        self._username = settings.username or ""
        self._password = settings.password or ""
        self._timeout_s = timeout_s
        self._upload_timeout_s = upload_timeout_s
        self._token: str | None = None
        self._login: SingleFlight[str, str] = SingleFlight()

    async def _get_token(self, *, refresh: bool = False) -> str:
        if refresh:
            self._token = None
        if self._token is None:
            self._token = await self._login.do("token", self._fetch_token)
        return self._token

    async def _fetch_token(self) -> str:
        response = await self._client.post(
            f"{self._base_url}/api/auth/login",
            json={"username": self._username, "password": self._password},
            timeout=self._timeout_s,
        )
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict) or body.get("code") != _OK:
            raise DurableStoreError(f"OpenList login refused: {body!r}")
        data = body.get("data")
        token = data.get("token") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token:
            raise DurableStoreError("OpenList login returned no token")
        logger.debug("Obtained OpenList token")
        return token

    async def _authorized(
        self, send: Callable[[str], Awaitable[httpx.Response]]
    ) -> httpx.Response:
        """Call ``send(token)`` and retry once with a fresh token on a 401."""
        response = await send(await self._get_token())
        if response.status_code == _UNAUTHORIZED or _json_code(response) == _UNAUTHORIZED:
            response = await send(await self._get_token(refresh=True))
        return response

    async def get_file(self, path: str) -> str | None:
        async def _send(token: str) -> httpx.Response:
            return await self._client.post(
                f"{self._base_url}/api/fs/get",
                json={"path": path, "password": ""},
                headers={"Authorization": token},
                timeout=self._timeout_s,
            )

        try:
            response = await self._authorized(_send)
            body = response.json()
        except (httpx.HTTPError, ValueError, DurableStoreError) as e:
            raise DurableReadMiss(f"Lookup of {path} failed: {e}", path=path) from e

        if not isinstance(body, dict) or body.get("code") != _OK:
            return None
        data = body.get("data")
        raw_url = data.get("raw_url") if isinstance(data, dict) else None
        return raw_url if isinstance(raw_url, str) and raw_url else None

    async def upload_file(self, path: str, content: str) -> None:
        await self.put_bytes(path, content.encode(), "application/json")

    async def put_bytes(self, path: str, content: bytes, content_type: str) -> None:
        async def _send(token: str) -> httpx.Response:
            return await self._client.put(
                f"{self._base_url}/api/fs/put",
                content=content,
                headers={
                    "Authorization": token,
                    "Content-Type": content_type,
                    "File-Path": encode_uri_component(path),
                    "As-Task": "false",
                },
                timeout=self._upload_timeout_s,
            )

        try:
            response = await self._authorized(_send)
            response.raise_for_status()
        except (httpx.HTTPError, ValueError, DurableStoreError) as e:
            raise DurableWriteFailed(f"Upload of {path} failed: {e}", path=path) from e

        code = _json_code(response)
        if code is not None and code != _OK:
            raise DurableWriteFailed(
                f"Upload of {path} refused (code={code}): {response.text}", path=path
            )
        logger.debug("Stored %d bytes at %s", len(content), path)


def _json_code(response: httpx.Response) -> int | None:
    try:
        body = response.json()
    except ValueError:
        return None
    code = body.get("code") if isinstance(body, dict) else None
    return code if isinstance(code, int) else None


@dataclass
class StoredObject:
    content: bytes
    content_type: str


@dataclass
class MemoryStore:
    """In-process durable store for tests and local runs.

    Raw URLs are ``{base_url}{path}``; serve them from :attr:`objects` when a
    test needs the blobs to be downloadable.
    """

    base_url: str = "memory://store"
    objects: dict[str, StoredObject] = field(default_factory=dict)
    lookups: list[str] = field(default_factory=list)
    writes: list[str] = field(default_factory=list)

    async def get_file(self, path: str) -> str | None:
        self.lookups.append(path)
        return f"{self.base_url}{path}" if path in self.objects else None

    async def upload_file(self, path: str, content: str) -> None:
        await self.put_bytes(path, content.encode(), "application/json")

    async def put_bytes(self, path: str, content: bytes, content_type: str) -> None:
        self.writes.append(path)
        self.objects[path] = StoredObject(content=content, content_type=content_type)

    def object_for_url(self, url: str) -> StoredObject | None:
        """Reverse a raw URL handed out by :meth:`get_file`."""
        if not url.startswith(self.base_url):
            return None
        return self.objects.get(url[len(self.base_url) :])
