"""Lookaside cache capability for full client-facing responses.

The proxy only needs ``match`` and ``put``; adapters decide where entries
live. Entries are whole responses and are never updated in place.
"""

from __future__ import annotations

import hashlib
import json
import logging
import re
import time
from collections import OrderedDict
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING, Any, Protocol

import httpx
from anyio import to_thread
from boto3.session import Session
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

if TYPE_CHECKING:
    from collections.abc import Callable

    from .settings import CacheSettings

LOG = logging.getLogger("bucket_edge.cache")

MAX_AGE_PATTERN = re.compile(r"(?:^|[,\s])max-age=(\d+)", re.IGNORECASE)


async def _run_sync(func: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Any:
    return await to_thread.run_sync(partial(func, *args, **kwargs))


@dataclass(frozen=True)
class CachedResponse:
    """An immutable snapshot of a complete response."""

    status_code: int
    headers: tuple[tuple[str, str], ...]
    body: bytes
    stored_at: float = field(default_factory=time.time)

    @property
    def content_length(self) -> int:
        return len(self.body)

    @property
    def max_age(self) -> int | None:
        for name, value in self.headers:
            if name.lower() == "cache-control":
                match = MAX_AGE_PATTERN.search(value)
                if match:
                    return int(match.group(1))
        return None

    def is_fresh(self, now: float | None = None) -> bool:
        max_age = self.max_age
        if max_age is None:
            return True
        current = time.time() if now is None else now
        return current - self.stored_at < max_age

    def header_set(self) -> httpx.Headers:
        return httpx.Headers(list(self.headers))


class ResponseCache(Protocol):
    async def match(self, key: str) -> CachedResponse | None: ...

    async def put(self, key: str, entry: CachedResponse) -> None: ...


class NullResponseCache:
    """A cache that never holds anything."""

    async def match(self, key: str) -> CachedResponse | None:
        return None

    async def put(self, key: str, entry: CachedResponse) -> None:
        return None


class MemoryResponseCache:
    """Process-local cache, suitable for a single worker and for tests.

    Holds at most ``max_bytes`` of bodies; the least recently used entries
    are evicted first.
    """

    def __init__(
        self,
        max_bytes: int = 256 * 1024 * 1024,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._entries: OrderedDict[str, CachedResponse] = OrderedDict()
        self._max_bytes = max_bytes
        self._size = 0
        self._clock = clock

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def size(self) -> int:
        return self._size

    async def match(self, key: str) -> CachedResponse | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(self._clock()):
            self._discard(key)
            return None
        self._entries.move_to_end(key)
        return entry

    async def put(self, key: str, entry: CachedResponse) -> None:
        self._discard(key)
        if entry.content_length > self._max_bytes:
            LOG.debug("not caching %s, larger than the memory budget", key)
            return
        self._entries[key] = entry
        self._size += entry.content_length
        while self._size > self._max_bytes:
            evicted, old = self._entries.popitem(last=False)
            self._size -= old.content_length
            LOG.debug("evicted %s from memory cache", evicted)

    def _discard(self, key: str) -> None:
        entry = self._entries.pop(key, None)
        if entry is not None:
            self._size -= entry.content_length


class S3ResponseCache:
    """Cache entries kept as objects in an S3-compatible bucket.

    The body is the object payload; status, headers and storage time travel
    in user metadata.
    """

    STATUS_META = "edge-status"
    HEADERS_META = "edge-headers"
    STORED_AT_META = "edge-stored-at"

    def __init__(self, settings: CacheSettings, client: Any = None) -> None:
        self._settings = settings
        self._client = client if client is not None else self._build_client()

    def _build_client(self):
        session = Session(
            aws_access_key_id=self._settings.access_key,
            aws_secret_access_key=self._settings.secret_key,
            aws_session_token=self._settings.session_token,
            region_name=self._settings.region,
        )
        return session.client(
            "s3",
            endpoint_url=self._settings.endpoint,
            config=BotoConfig(signature_version="s3v4", retries={"max_attempts": 3}),
        )

    @staticmethod
    def object_key(key: str) -> str:
        return f"v1/{hashlib.sha256(key.encode()).hexdigest()}"

    async def startup(self) -> None:
        await self._ensure_bucket(self._settings.bucket_name)

    async def _ensure_bucket(self, bucket: str) -> None:
        try:
            await _run_sync(self._client.head_bucket, Bucket=bucket)
        except ClientError as error:
            code = error.response.get("Error", {}).get("Code")
            if code not in {"404", "NoSuchBucket", "NotFound"}:
                raise
            create_kwargs: dict[str, Any] = {"Bucket": bucket}
            location = self._settings.bucket_location
            if location and location != "us-east-1":
                create_kwargs["CreateBucketConfiguration"] = {
                    "LocationConstraint": location
                }
            await _run_sync(self._client.create_bucket, **create_kwargs)
            LOG.info("created cache bucket %s", bucket)

    async def match(self, key: str) -> CachedResponse | None:
        try:
            result = await _run_sync(
                self._client.get_object,
                Bucket=self._settings.bucket_name,
                Key=self.object_key(key),
            )
        except ClientError as error:
            code = error.response.get("Error", {}).get("Code")
            if code in {"404", "NoSuchKey", "NotFound"}:
                return None
            raise

        stream = result["Body"]
        try:
            body = await _run_sync(stream.read)
        finally:
            await _run_sync(stream.close)

        metadata = result.get("Metadata") or {}
        entry = CachedResponse(
            status_code=int(metadata.get(self.STATUS_META, 200)),
            headers=tuple(
                (str(name), str(value))
                for name, value in json.loads(metadata.get(self.HEADERS_META, "[]"))
            ),
            body=body,
            stored_at=float(metadata.get(self.STORED_AT_META, 0)),
        )
        if not entry.is_fresh():
            LOG.debug("cache entry for %s expired", key)
            return None
        return entry

    async def put(self, key: str, entry: CachedResponse) -> None:
        metadata = {
            self.STATUS_META: str(entry.status_code),
            self.HEADERS_META: json.dumps(list(entry.headers), ensure_ascii=True),
            self.STORED_AT_META: repr(entry.stored_at),
        }
        put_kwargs: dict[str, Any] = {
            "Bucket": self._settings.bucket_name,
            "Key": self.object_key(key),
            "Body": entry.body,
            "Metadata": metadata,
        }
        content_type = entry.header_set().get("content-type")
        if content_type:
            put_kwargs["ContentType"] = content_type
        await _run_sync(self._client.put_object, **put_kwargs)


def build_cache(settings: CacheSettings) -> ResponseCache:
    """Instantiate the cache adapter selected by ``settings.backend``."""
    if settings.backend == "s3":
        return S3ResponseCache(settings)
    if settings.backend == "none":
        return NullResponseCache()
    return MemoryResponseCache(max_bytes=settings.memory_max_bytes)
