"""HTML index page for the bucket root."""

from __future__ import annotations

from datetime import UTC, datetime
from html import escape
from typing import TYPE_CHECKING

from .keys import escape_object_name

if TYPE_CHECKING:
    from collections.abc import Iterable

    from .origin import FileInfo

PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
<head><title>files index</title></head>
<body>
<table>
<thead>
  <tr>
    <th>Name</th>
    <th>Type</th>
    <th>Size</th>
    <th>Date</th>
  </tr>
</thead>
<tbody>
{rows}
</tbody>
</table>
</body></html>"""

ROW_TEMPLATE = """
  <tr>
    <td><a href="{href}">{name}</a></td>
    <td>{content_type}</td>
    <td>{size}</td>
    <td>{date}</td>
  </tr>
"""


def _three_significant(value: float) -> str:
    digits = len(str(int(value))) if value >= 1 else 1
    return f"{value:.{max(0, 3 - digits)}f}"


def format_bytes(size: int) -> str:
    """Human readable size with decimal units, e.g. ``1.23MB``."""
    if size >= 1_000_000:
        return f"{_three_significant(size / 1_000_000)}MB"
    if size >= 1_000:
        return f"{_three_significant(size / 1_000)}kB"
    return f"{size}B"


def millis_to_iso(millis: int) -> str:
    return datetime.fromtimestamp(millis / 1000, tz=UTC).date().isoformat()


def render_index(files: Iterable[FileInfo]) -> str:
    rows = "".join(
        ROW_TEMPLATE.format(
            href=escape_object_name(info.file_name),
            name=escape(info.file_name),
            content_type=escape(info.content_type),
            size=format_bytes(info.content_length),
            date=millis_to_iso(info.upload_timestamp),
        )
        for info in files
    )
    return PAGE_TEMPLATE.format(rows=rows)
