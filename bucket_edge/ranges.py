"""Re-slicing of full object responses into single byte-range responses.

A client ``Range: bytes=<start>-<end>`` header is answered by streaming the
full origin body through a skip/truncate state machine, so the object is
never held in memory. Malformed headers fall back to the full response.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING

import httpx

from .headers import SHORT_MAX_AGE
from .response import ObjectResponse

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

LOG = logging.getLogger("bucket_edge.ranges")

RANGE_PATTERN = re.compile(r"bytes=(\d*)-(\d*)")


class StreamLengthError(RuntimeError):
    """Raised when a body does not produce the byte count it declared."""


def parse_range(range_header: str | None) -> tuple[int | None, int | None] | None:
    """Parse a single ``bytes=<start>-<end>`` range.

    Returns ``None`` when the header is absent, malformed, or names neither
    bound. The end bound is returned inclusive, as sent on the wire.
    """
    if not range_header:
        return None
    match = RANGE_PATTERN.fullmatch(range_header.strip())
    if match is None:
        return None
    start_str, end_str = match.groups()
    if not start_str and not end_str:
        return None
    return (
        int(start_str) if start_str else None,
        int(end_str) if end_str else None,
    )


async def slice_stream(
    source: AsyncIterator[bytes], start: int, stop: int
) -> AsyncIterator[bytes]:
    """Yield exactly the bytes ``[start, stop)`` of ``source``.

    Stops reading as soon as ``stop`` is reached and closes ``source``.
    """
    position = 0
    try:
        async for chunk in source:
            if position < start:
                skip = start - position
                if len(chunk) <= skip:
                    position += len(chunk)
                    continue
                chunk = chunk[skip:]
                position = start

            if position + len(chunk) >= stop:
                piece = chunk[: stop - position]
                position = stop
                if piece:
                    yield piece
                return

            position += len(chunk)
            if chunk:
                yield chunk
    finally:
        aclose = getattr(source, "aclose", None)
        if aclose is not None:
            await aclose()


async def fixed_length(source: AsyncIterator[bytes], length: int) -> AsyncIterator[bytes]:
    """Pass ``source`` through, failing if it does not produce ``length`` bytes."""
    sent = 0
    async for chunk in source:
        sent += len(chunk)
        if sent > length:
            msg = f"body produced more than the declared {length} bytes"
            raise StreamLengthError(msg)
        yield chunk
    if sent != length:
        LOG.warning("body ended after %d of %d declared bytes", sent, length)
        msg = f"body ended after {sent} of {length} declared bytes"
        raise StreamLengthError(msg)


def range_not_satisfiable(
    total: int, start: int | None, end: int | None
) -> ObjectResponse:
    requested = f"{'' if start is None else start}-{'' if end is None else end}"
    headers = httpx.Headers(
        {
            "Access-Control-Allow-Origin": "*",
            "Cache-Control": f"public, max-age={SHORT_MAX_AGE}",
            "Content-Range": f"bytes */{total}",
            "Content-Type": "text/plain",
        }
    )
    message = (
        f"Range Not Satisfiable: bytes={requested} is outside "
        f"the {total} bytes available\n"
    )
    return ObjectResponse.from_bytes(416, headers, message.encode())


async def apply_range(
    range_header: str | None, response: ObjectResponse
) -> ObjectResponse:
    """Answer ``range_header`` from the full ``response``.

    Without a usable range the response is returned as is. A window ending
    past the declared length, or an empty window, yields a 416 and releases
    the unread body. Otherwise the body is re-sliced into a 206.
    """
    bounds = parse_range(range_header)
    if bounds is None:
        if range_header:
            LOG.debug("ignoring unparseable range %r", range_header)
        return response
    if response.status_code != 200:
        return response
    total = response.content_length
    if total is None:
        LOG.debug("ignoring range %r, total length unknown", range_header)
        return response

    start_bound, end_bound = bounds
    start = 0 if start_bound is None else start_bound
    stop = total if end_bound is None else end_bound + 1

    if stop > total or start >= stop:
        LOG.debug("range %r not satisfiable for %d bytes", range_header, total)
        await response.aclose()
        return range_not_satisfiable(total, start_bound, end_bound)

    length = stop - start
    headers = httpx.Headers(response.headers)
    headers["Content-Length"] = str(length)
    headers["Content-Range"] = f"bytes {start}-{stop - 1}/{total}"
    LOG.debug("serving bytes %d-%d of %d", start, stop - 1, total)
    return ObjectResponse(
        status_code=206,
        headers=headers,
        body=fixed_length(slice_stream(response.body, start, stop), length),
        on_close=response.on_close,
    )
