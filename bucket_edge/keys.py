"""Mapping between client-visible paths and origin object URLs.

The origin stores every object under a flat key. Nested logical names keep
their hierarchy by escaping each ``/`` as ``%2F`` inside a single path
segment, so ``/a/b.png`` becomes ``<origin>/file/<bucket>/a%2Fb.png``.

Paths handed to :func:`resolve_origin_url` are in their percent-encoded wire
form, so an escaped ``%2F`` or ``%3F`` from the client is never confused with
a real separator or query delimiter.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import quote, unquote

if TYPE_CHECKING:
    from .settings import OriginSettings


def escape_object_name(name: str) -> str:
    """Percent-encode a logical object name into a single origin path segment."""
    return quote(name, safe="")


def object_name_from_key(key: str) -> str:
    """Reverse :func:`escape_object_name` for display."""
    return unquote(key)


def _normalise_segment(segment: str) -> str:
    return escape_object_name(unquote(segment))


def resolve_origin_url(path: str, settings: OriginSettings) -> str:
    """Return the origin URL serving the object requested at the encoded ``path``.

    A path that already lives under the bucket prefix keeps its segments, only
    normalising their escaping, which makes resolution a fixed point for the
    path of a resolved URL.
    """
    prefix = settings.bucket_path
    if path == prefix:
        return f"{settings.origin_base}{path}"
    if path.startswith(f"{prefix}/"):
        rest = path[len(prefix) + 1 :]
        key = "/".join(_normalise_segment(segment) for segment in rest.split("/"))
        return f"{settings.origin_base}{prefix}/{key}"
    name = path[1:] if path.startswith("/") else path
    return f"{settings.origin_base}{prefix}/{escape_object_name(unquote(name))}"
