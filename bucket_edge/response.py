from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import httpx
from litestar.background_tasks import BackgroundTask
from litestar.response import Stream

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

BODY_CHUNK_SIZE = 1024 * 64


async def iter_bytes(content: bytes, chunk_size: int = BODY_CHUNK_SIZE) -> AsyncIterator[bytes]:
    for offset in range(0, len(content), chunk_size):
        yield content[offset : offset + chunk_size]


@dataclass
class ObjectResponse:
    """A status line, rewritten headers and a body that can be read once."""

    status_code: int
    headers: httpx.Headers
    body: AsyncIterator[bytes]
    on_close: Callable[[], Awaitable[None]] | None = None

    @classmethod
    def from_bytes(
        cls, status_code: int, headers: httpx.Headers, content: bytes
    ) -> ObjectResponse:
        headers = httpx.Headers(headers)
        headers["Content-Length"] = str(len(content))
        return cls(status_code=status_code, headers=headers, body=iter_bytes(content))

    @property
    def content_length(self) -> int | None:
        value = self.headers.get("content-length")
        if value is None:
            return None
        try:
            length = int(value)
        except ValueError:
            return None
        return length if length >= 0 else None

    async def aclose(self) -> None:
        """Release whatever produces the body, whether or not it was read."""
        if self.on_close is not None:
            await self.on_close()

    async def read(self) -> bytes:
        try:
            return b"".join([chunk async for chunk in self.body])
        finally:
            await self.aclose()

    def to_response(self) -> Stream:
        headers = dict(self.headers.items())
        media_type = headers.pop("content-type", "application/octet-stream")
        return Stream(
            content=self.body,
            status_code=self.status_code,
            headers=headers,
            media_type=media_type,
            background=BackgroundTask(self.aclose),
        )
