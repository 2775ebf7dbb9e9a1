from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import httpx
import pytest
from bucket_edge import EdgeProxy, MemoryResponseCache, OriginSettings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, AsyncIterator, Generator

    from pytest_databases._service import DockerService


ORIGIN_DOMAIN = "origin.test"
API_URL = "https://api.origin.test"
CHUNK_SIZE = 256


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@dataclass
class FakeObject:
    body: bytes
    status_code: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    fail_after: int | None = None


class ChunkedBody(httpx.AsyncByteStream):
    """Response body delivered piece by piece, like a real network read.

    With ``fail_after`` set the read breaks once that many bytes are out.
    """

    def __init__(self, origin: FakeOrigin, body: bytes, fail_after: int | None = None):
        self._origin = origin
        self._body = body
        self._fail_after = fail_after

    async def __aiter__(self) -> AsyncIterator[bytes]:
        end = len(self._body) if self._fail_after is None else self._fail_after
        for offset in range(0, end, CHUNK_SIZE):
            self._origin.chunks_served += 1
            yield self._body[offset : min(offset + CHUNK_SIZE, end)]
        if self._fail_after is not None:
            msg = "connection reset by peer"
            raise httpx.ReadError(msg)


@dataclass
class FakeOrigin:
    """In-process stand-in for the object store, mounted on httpx.MockTransport."""

    objects: dict[str, FakeObject] = field(default_factory=dict)
    files: list[dict[str, object]] = field(default_factory=list)
    page_size: int | None = None
    requests: list[httpx.Request] = field(default_factory=list)
    fail_with: Exception | None = None
    chunks_served: int = 0

    def add(
        self,
        path: str,
        body: bytes,
        status_code: int = 200,
        headers: dict[str, str] | None = None,
        fail_after: int | None = None,
    ) -> None:
        self.objects[path] = FakeObject(
            body, status_code, dict(headers or {}), fail_after
        )

    def stream(
        self,
        status_code: int,
        headers: dict[str, str],
        body: bytes,
        fail_after: int | None = None,
    ) -> httpx.Response:
        return httpx.Response(
            status_code,
            headers={**headers, "Content-Length": str(len(body))},
            stream=ChunkedBody(self, body, fail_after),
        )

    def object_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host == ORIGIN_DOMAIN]

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with
        if request.url.path.endswith("/b2_authorize_account"):
            return httpx.Response(
                200, json={"apiUrl": API_URL, "authorizationToken": "token-1"}
            )
        if request.url.path == "/b2api/v2/b2_list_file_names":
            return self._list(request)
        obj = self.objects.get(request.url.raw_path.decode())
        if obj is None:
            return self.stream(
                404,
                {"Content-Type": "application/json", "Expires": "0"},
                b'{"status": 404, "code": "not_found"}',
            )
        return self.stream(obj.status_code, obj.headers, obj.body, obj.fail_after)

    def _list(self, request: httpx.Request) -> httpx.Response:
        if request.headers.get("authorization") != "token-1":
            return httpx.Response(401, json={"code": "unauthorized"})
        payload = json.loads(request.content)
        names = [str(f["fileName"]) for f in self.files]
        start = payload.get("startFileName")
        offset = names.index(start) if start in names else 0
        size = self.page_size or payload.get("maxFileCount", 1000)
        page = self.files[offset : offset + size]
        following = offset + size
        next_name = names[following] if following < len(names) else None
        return httpx.Response(200, json={"files": page, "nextFileName": next_name})


@pytest.fixture
def origin_settings() -> OriginSettings:
    return OriginSettings(
        bucket="media",
        bucket_id="bucket-id-1",
        domain=ORIGIN_DOMAIN,
        key_id="key-id-1",
        key="key-1",
        auth_endpoint=f"{API_URL}/b2api/v2/b2_authorize_account",
    )


@pytest.fixture
def fake_origin() -> FakeOrigin:
    return FakeOrigin()


@pytest.fixture
def memory_cache() -> MemoryResponseCache:
    return MemoryResponseCache()


@pytest.fixture
async def edge_proxy(
    origin_settings: OriginSettings,
    memory_cache: MemoryResponseCache,
    fake_origin: FakeOrigin,
) -> AsyncGenerator[EdgeProxy]:
    proxy = EdgeProxy(origin_settings, memory_cache, transport=fake_origin.transport())
    await proxy.startup()
    yield proxy
    await proxy.shutdown()


@dataclass
class MinioService:
    endpoint: str
    access_key: str
    secret_key: str


@pytest.fixture(scope="session")
def minio_service(docker_service: DockerService) -> Generator[MinioService]:
    from urllib.error import URLError
    from urllib.request import Request, urlopen

    from pytest_databases.types import ServiceContainer

    access_key = os.getenv("MINIO_ACCESS_KEY", "minio")
    secret_key = os.getenv("MINIO_SECRET_KEY", "minio123")

    def check(_service: ServiceContainer) -> bool:
        url = f"http://{_service.host}:{_service.port}/minio/health/ready"
        try:
            with urlopen(url=Request(url, method="GET"), timeout=10) as response:
                return response.status == 200
        except (URLError, ConnectionError):
            return False

    with docker_service.run(
        image="quay.io/minio/minio",
        name="minio-bucket-edge",
        command="server /data",
        container_port=9000,
        timeout=20,
        pause=0.5,
        env={"MINIO_ROOT_USER": access_key, "MINIO_ROOT_PASSWORD": secret_key},
        check=check,
    ) as service:
        yield MinioService(
            endpoint=f"http://{service.host}:{service.port}",
            access_key=access_key,
            secret_key=secret_key,
        )
