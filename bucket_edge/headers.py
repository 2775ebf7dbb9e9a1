"""Rewriting of origin response headers into the client-facing contract."""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import urlsplit

import httpx

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    HeaderSource = Mapping[str, str] | Iterable[tuple[str, str]] | httpx.Headers

CACHE_HIT_HEADER = "X-Edge-Cache"

LONG_MAX_AGE = 31536000
SHORT_MAX_AGE = 300

HOP_BY_HOP_HEADERS = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)

# First header present wins.
ETAG_SOURCES = (
    "x-bz-content-sha1",
    "x-bz-info-src_last_modified_millis",
    "x-bz-file-id",
)

# Origin diagnostics that never reach clients.
REMOVED_HEADERS = (
    "x-bz-content-sha1",
    "x-bz-file-id",
    "x-bz-file-name",
    "x-bz-info-src_last_modified_millis",
    "x-bz-upload-timestamp",
    "expires",
)

MIME_OVERRIDES = {
    "avif": "image/avif",
    "css": "text/css",
    "flac": "audio/flac",
    "gif": "image/gif",
    "htm": "text/html",
    "html": "text/html",
    "ico": "image/x-icon",
    "jpeg": "image/jpeg",
    "jpg": "image/jpeg",
    "js": "text/javascript",
    "json": "application/json",
    "m4a": "audio/mp4",
    "mjs": "text/javascript",
    "mkv": "video/x-matroska",
    "mov": "video/quicktime",
    "mp3": "audio/mpeg",
    "mp4": "video/mp4",
    "ogg": "audio/ogg",
    "opus": "audio/opus",
    "pdf": "application/pdf",
    "png": "image/png",
    "svg": "image/svg+xml",
    "txt": "text/plain",
    "wasm": "application/wasm",
    "wav": "audio/wav",
    "webm": "video/webm",
    "webp": "image/webp",
    "woff": "font/woff",
    "woff2": "font/woff2",
}


def strip_hop_by_hop(headers: HeaderSource) -> httpx.Headers:
    """Return a copy of ``headers`` without connection-level fields."""
    source = headers if isinstance(headers, httpx.Headers) else httpx.Headers(headers)
    return httpx.Headers(
        [
            (key, value)
            for key, value in source.multi_items()
            if key.lower() not in HOP_BY_HOP_HEADERS
        ]
    )


def extension_of(url: str) -> str | None:
    path = urlsplit(url).path
    if "." not in path:
        return None
    return path.rsplit(".", 1)[1].lower()


def fix_headers(url: str, status_code: int, headers: HeaderSource) -> httpx.Headers:
    """Rewrite origin headers for delivery to clients.

    Works on a copy; ``headers`` is left untouched. The result always allows
    any origin, always carries a cache lifetime (one year for 200, five
    minutes otherwise), carries at most one ETag taken from the first origin
    checksum/timestamp/id header present, has its Content-Type overridden by
    the extension table, and no longer contains origin debug headers.
    """
    fixed = httpx.Headers(headers)

    fixed["Access-Control-Allow-Origin"] = "*"

    max_age = LONG_MAX_AGE if status_code == 200 else SHORT_MAX_AGE
    fixed["Cache-Control"] = f"public, max-age={max_age}"

    etag = next((fixed[name] for name in ETAG_SOURCES if name in fixed), None)
    if etag:
        fixed["ETag"] = etag

    extension = extension_of(url)
    if extension is not None and extension in MIME_OVERRIDES:
        fixed["Content-Type"] = MIME_OVERRIDES[extension]

    for name in REMOVED_HEADERS:
        if name in fixed:
            del fixed[name]

    return fixed
