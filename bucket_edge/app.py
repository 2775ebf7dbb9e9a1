from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from urllib.parse import quote

import httpx
from litestar import Litestar, Request, Response, get
from litestar.config.cors import CORSConfig
from litestar.enums import MediaType
from litestar.handlers import asgi
from litestar.plugins.prometheus import PrometheusConfig, PrometheusController

from .headers import CACHE_HIT_HEADER
from .proxy import EdgeProxy

if TYPE_CHECKING:
    from litestar.types import Receive, Scope, Send

LOG = logging.getLogger("bucket_edge.app")

prometheus_config = PrometheusConfig(app_name="bucket_edge", prefix="bucket_edge")


def _origin_unavailable(request: Request, exc: httpx.HTTPError) -> Response:
    LOG.warning("origin request for %s failed: %s", request.url.path, exc)
    return Response(
        content="Bad Gateway\n",
        status_code=502,
        media_type=MediaType.TEXT,
        headers={"Access-Control-Allow-Origin": "*"},
    )


def _encoded_path(scope: Scope) -> str:
    """Request path as sent on the wire, with percent-escapes intact."""
    raw_path = scope.get("raw_path")
    if raw_path:
        return raw_path.decode("latin-1").split("?", 1)[0]
    return quote(scope.get("path", "/"), safe="/")


def create_app(proxy: EdgeProxy | None = None) -> Litestar:
    """Create the edge proxy ASGI application."""
    edge = proxy if proxy is not None else EdgeProxy.from_env()

    @get("/health", include_in_schema=False)
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @asgi(path="/", is_mount=True, copy_scope=True)
    async def proxy_handler(scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope=scope, receive=receive)
        path = _encoded_path(scope)
        if not path.startswith("/"):
            path = f"/{path}"
        if path != "/" and path.endswith("/"):
            path = path.rstrip("/") or "/"
        try:
            response = await edge.handle(request, path)
        except httpx.HTTPError as exc:
            response = _origin_unavailable(request, exc)
        asgi_response = response.to_asgi_response(
            None, request, is_head_response=request.method == "HEAD"
        )
        await asgi_response(scope, receive, send)

    async def startup(app: Litestar) -> None:
        await edge.startup()

    async def shutdown(app: Litestar) -> None:
        await edge.shutdown()

    cors_config = CORSConfig(
        allow_origins=["*"],
        allow_methods=["GET", "HEAD", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=[
            "ETag",
            "Content-Range",
            "Content-Length",
            "Accept-Ranges",
            CACHE_HIT_HEADER,
        ],
    )

    return Litestar(
        route_handlers=[health, proxy_handler, PrometheusController],
        on_startup=[startup],
        on_shutdown=[shutdown],
        cors_config=cors_config,
        middleware=[prometheus_config.middleware],
    )


app = create_app()
