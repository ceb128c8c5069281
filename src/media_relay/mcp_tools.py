from __future__ import annotations

from typing import Any

from fastmcp import FastMCP
from mcp.types import ToolAnnotations

from media_relay.config import Settings
from media_relay.errors import RelayError
from media_relay.services.normalizer import normalize_request
from media_relay.services.probe import probe


class ToolRegistry:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def register(self, mcp: FastMCP) -> None:
        @mcp.tool(annotations=ToolAnnotations(readOnlyHint=True, openWorldHint=True))
        async def check_media(url: str, mode: str = "video", quality: str = "auto") -> dict[str, Any]:
            """Check whether a media URL can be downloaded, without downloading it.

            Args:
                url: The media URL (YouTube, etc.)
                mode: "video" or "audio" (default: "video")
                quality: Height ceiling such as "720p", or "auto" (default: "auto")

            Returns:
                ok=True with the resolved format selector, or the failure category and message.
            """
            try:
                spec = normalize_request(
                    {"url": url, "mode": mode, "quality": quality},
                    default_sink=self.settings.sink_kind,
                )
                await probe(spec, self.settings)
            except RelayError as exc:
                return {
                    "ok": False,
                    "error": exc.code,
                    "category": exc.category.value,
                    "message": exc.message,
                    "detail": exc.detail,
                }

            return {
                "ok": True,
                "url": spec.source_url,
                "mode": spec.media_kind.value,
                "quality": spec.quality or "auto",
                "format": spec.format_selector,
            }
