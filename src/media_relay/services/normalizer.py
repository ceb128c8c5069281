from __future__ import annotations

import re
from typing import Any

from media_relay.errors import InvalidRequest
from media_relay.types import JobSpec, MediaKind, SinkKind

MAX_HEIGHT = 4320

# Standard heights plus the marketing names people actually type.
QUALITY_TOKENS: dict[str, int] = {
    **{f"{height}p": height for height in (144, 240, 360, 480, 720, 1080, 1440, 2160, 4320)},
    **{str(height): height for height in (144, 240, 360, 480, 720, 1080, 1440, 2160, 4320)},
    "hd": 720,
    "fhd": 1080,
    "2k": 1440,
    "4k": 2160,
    "8k": 4320,
}

_AUTO_TOKENS = {"", "auto", "best"}
_LEADING_DIGITS = re.compile(r"^\s*(\d+)")

_SINK_ALIASES: dict[str, SinkKind] = {
    "stream": SinkKind.STREAMED,
    "streamed": SinkKind.STREAMED,
    "buffer": SinkKind.BUFFERED,
    "buffered": SinkKind.BUFFERED,
}


def parse_media_kind(value: object) -> MediaKind:
    if isinstance(value, str) and value.strip().lower() == MediaKind.AUDIO.value:
        return MediaKind.AUDIO
    return MediaKind.VIDEO


def parse_quality(value: object) -> int | None:
    """Map a quality hint to a height ceiling, or None for AUTO.

    Unknown or malformed values degrade to AUTO instead of being rejected.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 0 < value <= MAX_HEIGHT else None
    if not isinstance(value, str):
        return None

    token = value.strip().lower()
    if token in _AUTO_TOKENS:
        return None
    if token in QUALITY_TOKENS:
        return QUALITY_TOKENS[token]

    match = _LEADING_DIGITS.match(token)
    if match is None:
        return None
    height = int(match.group(1))
    if 0 < height <= MAX_HEIGHT:
        return height
    return None


def parse_sink_kind(value: object, default: SinkKind) -> SinkKind:
    if isinstance(value, str):
        return _SINK_ALIASES.get(value.strip().lower(), default)
    return default


def build_format_selector(media_kind: MediaKind, quality: int | None) -> str:
    if media_kind is MediaKind.AUDIO:
        return "ba/b"
    if quality is None:
        return "bv*+ba/b"
    return f"bestvideo[height<={quality}]+bestaudio/best"


def normalize_request(payload: Any, *, default_sink: SinkKind) -> JobSpec:
    if not isinstance(payload, dict):
        raise InvalidRequest(detail="Request body must be a JSON object")

    url = payload.get("url")
    if not isinstance(url, str) or not url.strip():
        raise InvalidRequest()

    media_kind = parse_media_kind(payload.get("mode", MediaKind.VIDEO.value))
    quality = parse_quality(payload.get("quality", "auto"))
    # A ceiling only constrains video; audio always takes the best stream.
    if media_kind is MediaKind.AUDIO:
        quality = None

    return JobSpec(
        source_url=url.strip(),
        media_kind=media_kind,
        quality=quality,
        sink_kind=parse_sink_kind(payload.get("delivery"), default_sink),
        format_selector=build_format_selector(media_kind, quality),
        extract_audio=media_kind is MediaKind.AUDIO,
    )
