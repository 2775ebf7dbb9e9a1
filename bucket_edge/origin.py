from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx

if TYPE_CHECKING:
    from .settings import OriginSettings

LOG = logging.getLogger("bucket_edge.origin")

LIST_FILE_NAMES_PATH = "/b2api/v2/b2_list_file_names"


@dataclass(frozen=True)
class Authorization:
    api_url: str
    token: str


@dataclass(frozen=True)
class FileInfo:
    file_name: str
    content_type: str
    content_length: int
    upload_timestamp: int

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> FileInfo:
        return cls(
            file_name=str(payload.get("fileName", "")),
            content_type=str(payload.get("contentType", "")),
            content_length=int(payload.get("contentLength") or 0),
            upload_timestamp=int(payload.get("uploadTimestamp") or 0),
        )


class OriginClient:
    """Talks to the object-storage origin over HTTP."""

    def __init__(self, settings: OriginSettings, client: httpx.AsyncClient):
        self._settings = settings
        self._client = client

    async def fetch(self, url: str) -> httpx.Response:
        """Open a streamed GET for ``url``; the caller must close the response."""
        request = self._client.build_request(
            "GET", url, headers={"Accept-Encoding": "identity"}
        )
        return await self._client.send(request, stream=True)

    async def authorize(self) -> Authorization:
        """Exchange the static application key for an API token and base URL."""
        if not (self._settings.key_id and self._settings.key):
            msg = "origin credentials are not configured"
            raise RuntimeError(msg)
        response = await self._client.get(
            self._settings.auth_endpoint,
            auth=httpx.BasicAuth(self._settings.key_id, self._settings.key),
        )
        response.raise_for_status()
        payload = response.json()
        return Authorization(
            api_url=payload["apiUrl"], token=payload["authorizationToken"]
        )

    async def list_files(self) -> list[FileInfo]:
        """Return every file in the bucket, following pagination."""
        auth = await self.authorize()
        url = str(httpx.URL(auth.api_url).join(LIST_FILE_NAMES_PATH))
        files: list[FileInfo] = []
        start_file_name: str | None = None
        while True:
            body: dict[str, Any] = {
                "bucketId": self._settings.bucket_id,
                "maxFileCount": self._settings.listing_page_size,
            }
            if start_file_name is not None:
                body["startFileName"] = start_file_name
            response = await self._client.post(
                url, json=body, headers={"Authorization": auth.token}
            )
            response.raise_for_status()
            payload = response.json()
            files.extend(FileInfo.from_api(item) for item in payload.get("files", []))
            start_file_name = payload.get("nextFileName")
            if not start_file_name:
                break
        LOG.debug("listed %d files in bucket %s", len(files), self._settings.bucket)
        return files
