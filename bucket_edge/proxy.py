from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import anyio
import httpx
from litestar.enums import MediaType
from litestar.response import Response

from .cache import CachedResponse, ResponseCache, build_cache
from .headers import CACHE_HIT_HEADER, fix_headers, strip_hop_by_hop
from .keys import resolve_origin_url
from .listing import render_index
from .origin import OriginClient
from .ranges import apply_range, fixed_length
from .response import ObjectResponse
from .settings import (
    OriginSettings,
    load_cache_settings_from_env,
    load_origin_settings_from_env,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Coroutine

    from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
    from litestar import Request

LOG = logging.getLogger("bucket_edge.proxy")

ALLOWED_METHODS = ("GET", "HEAD")

# Chunks the origin reader may run ahead of the client.
RELAY_BUFFER_CHUNKS = 16
DEFAULT_MAX_CACHE_OBJECT_SIZE = 50 * 1024 * 1024


class OriginStreamError(RuntimeError):
    """Raised to the client when the origin body fails part way through."""


async def _relay(
    channel: MemoryObjectReceiveStream[bytes | OriginStreamError],
) -> AsyncIterator[bytes]:
    async with channel:
        async for item in channel:
            if isinstance(item, OriginStreamError):
                raise item
            yield item


class EdgeProxy:
    def __init__(
        self,
        origin: OriginSettings,
        cache: ResponseCache,
        transport: httpx.AsyncBaseTransport | None = None,
        max_cache_object_size: int = DEFAULT_MAX_CACHE_OBJECT_SIZE,
    ):
        self._settings = origin
        self._cache = cache
        self._max_cache_object_size = max_cache_object_size
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None
        self._origin: OriginClient | None = None
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def cache(self) -> ResponseCache:
        return self._cache

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    async def startup(self) -> None:
        self._http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(self._settings.timeout, read=self._settings.read_timeout),
            trust_env=False,
            transport=self._transport,
        )
        self._origin = OriginClient(self._settings, self._http_client)
        cache_startup = getattr(self._cache, "startup", None)
        if cache_startup is not None:
            await cache_startup()
        LOG.info(
            "bucket edge ready (origin=%s, bucket=%s, cache=%s, listing=%s)",
            self._settings.origin_base,
            self._settings.bucket,
            type(self._cache).__name__,
            "enabled" if self._settings.listing_enabled else "disabled",
        )

    async def shutdown(self) -> None:
        await self.drain()
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None
            self._origin = None

    async def drain(self) -> None:
        """Wait until every scheduled cache write has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def handle(self, request: Request, path: str) -> Response:
        LOG.debug("handle method=%s path=%s", request.method, path)
        if request.method not in ALLOWED_METHODS:
            return Response(
                content="Method Not Allowed\n",
                status_code=405,
                media_type=MediaType.TEXT,
                headers={
                    "Allow": ", ".join(ALLOWED_METHODS),
                    "Access-Control-Allow-Origin": "*",
                },
            )
        if path == "/":
            return await self._handle_index()

        url = resolve_origin_url(path, self._settings)
        response, cache_hit = await self.fetch(url)
        LOG.debug("fetched %s status=%s hit=%s", url, response.status_code, cache_hit)
        response = await apply_range(request.headers.get("range"), response)
        return response.to_response()

    async def fetch(self, url: str) -> tuple[ObjectResponse, bool]:
        """Return the client-facing full response for ``url`` and whether it was cached.

        On a miss the origin body is read by a background task that feeds the
        returned response through a bounded channel and, once the body is
        complete, stores a copy in the cache. That task is not tied to the
        caller: it keeps reading for the cache if the caller stops, and only
        abandons the origin once neither side needs the rest of the body.
        A body that fails part way raises ``OriginStreamError`` to the
        caller instead of ending short.
        """
        entry = await self._match(url)
        if entry is not None:
            headers = fix_headers(url, entry.status_code, entry.header_set())
            headers[CACHE_HIT_HEADER] = "HIT"
            return ObjectResponse.from_bytes(entry.status_code, headers, entry.body), True

        upstream = await self._require_origin().fetch(url)
        headers = fix_headers(
            url, upstream.status_code, strip_hop_by_hop(upstream.headers)
        )
        send_channel, receive_channel = anyio.create_memory_object_stream[
            bytes | OriginStreamError
        ](RELAY_BUFFER_CHUNKS)
        self._spawn(self._populate(url, upstream, headers, send_channel))
        response = ObjectResponse(
            status_code=upstream.status_code,
            headers=headers,
            body=_relay(receive_channel),
            on_close=receive_channel.aclose,
        )
        if response.content_length is not None:
            response.body = fixed_length(response.body, response.content_length)
        return response, False

    async def _match(self, url: str) -> CachedResponse | None:
        try:
            return await self._cache.match(url)
        except Exception:
            LOG.warning(
                "cache lookup for %s failed, treating as miss", url, exc_info=True
            )
            return None

    async def _populate(
        self,
        url: str,
        upstream: httpx.Response,
        headers: httpx.Headers,
        channel: MemoryObjectSendStream[bytes | OriginStreamError],
    ) -> None:
        limit = self._max_cache_object_size
        declared = headers.get("content-length")
        cacheable = declared is None or not declared.isdigit() or int(declared) <= limit
        chunks: list[bytes] = []
        size = 0
        client_open = True
        try:
            async with channel:
                try:
                    async for chunk in upstream.aiter_raw():
                        if cacheable:
                            size += len(chunk)
                            if size > limit:
                                LOG.debug("not caching %s, over %d bytes", url, limit)
                                cacheable = False
                                chunks.clear()
                            else:
                                chunks.append(chunk)
                        if client_open:
                            client_open = await self._forward(url, channel, chunk)
                        if not client_open and not cacheable:
                            LOG.debug("abandoning origin read for %s", url)
                            return
                except httpx.HTTPError as exc:
                    LOG.warning(
                        "origin stream for %s failed, not caching", url, exc_info=True
                    )
                    if client_open:
                        error = OriginStreamError(f"origin stream for {url} failed")
                        error.__cause__ = exc
                        await self._forward(url, channel, error)
                    return
        finally:
            await upstream.aclose()

        if not cacheable:
            return
        entry = CachedResponse(
            status_code=upstream.status_code,
            headers=tuple(headers.multi_items()),
            body=b"".join(chunks),
        )
        try:
            await self._cache.put(url, entry)
        except Exception:
            LOG.warning("failed to cache %s (non-fatal)", url, exc_info=True)
            return
        LOG.debug("cached %s (%d bytes)", url, entry.content_length)

    async def _forward(
        self,
        url: str,
        channel: MemoryObjectSendStream[bytes | OriginStreamError],
        item: bytes | OriginStreamError,
    ) -> bool:
        """Hand ``item`` to the client; ``False`` once the client is gone."""
        with anyio.move_on_after(self._settings.read_timeout):
            try:
                await channel.send(item)
            except anyio.BrokenResourceError:
                return False
            return True
        LOG.warning("client for %s stopped reading, detaching it", url)
        return False

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _handle_index(self) -> Response:
        if not self._settings.listing_enabled:
            LOG.debug("index requested but listing credentials are not configured")
            return Response(
                content="Not Found\n",
                status_code=404,
                media_type=MediaType.TEXT,
                headers={"Access-Control-Allow-Origin": "*"},
            )
        files = await self._require_origin().list_files()
        return Response(
            content=render_index(files),
            status_code=200,
            media_type=MediaType.HTML,
            headers={"Access-Control-Allow-Origin": "*"},
        )

    def _require_origin(self) -> OriginClient:
        if self._origin is None:
            message = "proxy not initialised"
            raise RuntimeError(message)
        return self._origin

    @classmethod
    def from_env(cls) -> EdgeProxy:
        """Create an EdgeProxy instance from environment variables.

        Returns:
            EdgeProxy configured from environment variables.
        """
        cache_settings = load_cache_settings_from_env()
        return cls(
            origin=load_origin_settings_from_env(),
            cache=build_cache(cache_settings),
            max_cache_object_size=cache_settings.max_object_size,
        )
