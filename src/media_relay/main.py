from __future__ import annotations

import logging
import shutil
from typing import Any

from fastmcp import FastMCP
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from media_relay.config import Settings, load_settings
from media_relay.mcp_tools import ToolRegistry
from media_relay.services.relay import MediaRelay

logger = logging.getLogger(__name__)


class AppRuntime:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.relay = MediaRelay(settings)

    @property
    def extractor_available(self) -> bool:
        return shutil.which(self.settings.ytdlp_command[0]) is not None


def cors_middleware(settings: Settings) -> list[Middleware]:
    return [
        Middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
            expose_headers=["Content-Disposition", "Content-Length"],
        )
    ]


async def _read_payload(request: Request) -> Any:
    try:
        return await request.json()
    except ValueError:
        return None


def create_app(runtime: AppRuntime) -> FastMCP:
    mcp = FastMCP(name="media-relay")

    tools = ToolRegistry(runtime.settings)
    tools.register(mcp)

    @mcp.custom_route(runtime.settings.health_path, methods=["GET"])
    async def health(_: Request) -> JSONResponse:
        return JSONResponse(
            {
                "ok": True,
                "name": "media-relay",
                "extractor_available": runtime.extractor_available,
                "sink_kind": runtime.settings.sink_kind.value,
                "preflight": runtime.settings.preflight,
            }
        )

    @mcp.custom_route(runtime.settings.download_path, methods=["POST"])
    async def download(request: Request) -> Response:
        payload = await _read_payload(request)
        return await runtime.relay.handle(payload, disconnected=request.is_disconnected)

    return mcp


def create_http_app(runtime: AppRuntime) -> Starlette:
    mcp = create_app(runtime)
    return mcp.http_app(path=runtime.settings.mcp_path, middleware=cors_middleware(runtime.settings))


def cli() -> None:
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s - %(message)s"
    )
    runtime = AppRuntime(settings)
    if not runtime.extractor_available:
        logger.warning("Extractor %r was not found on PATH", settings.ytdlp_command[0])

    app = create_app(runtime)
    logger.info(
        "Starting media relay on %s:%s (download=%s, sink=%s)",
        settings.host,
        settings.port,
        settings.download_path,
        settings.sink_kind.value,
    )
    app.run(
        transport="http",
        host=settings.host,
        port=settings.port,
        path=settings.mcp_path,
        middleware=cors_middleware(settings),
    )


if __name__ == "__main__":
    cli()
