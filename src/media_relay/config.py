from __future__ import annotations

import os
import shlex
import tempfile
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from media_relay.types import SinkKind


@dataclass(slots=True)
class Settings:
    host: str
    port: int
    download_path: str
    health_path: str
    mcp_path: str
    ytdlp_command: list[str]
    temp_dir: Path
    sink_kind: SinkKind
    timeout_seconds: float
    kill_grace_seconds: float
    disconnect_poll_seconds: float
    preflight: bool
    preflight_timeout_seconds: float
    chunk_size: int
    diagnostic_limit: int
    detail_limit: int
    auth_failure_status: int
    cors_origins: list[str]
    filename_prefix: str
    log_level: str


def _as_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    return int(raw)


def _as_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    return float(raw)


def _as_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in ("1", "true", "yes", "on"):
        return True
    if value in ("0", "false", "no", "off", ""):
        return False
    raise RuntimeError(f"{name} must be a boolean, got {raw!r}")


def _as_list(name: str, default: str) -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def _normalized_path(path: str) -> str:
    if not path.startswith("/"):
        path = f"/{path}"
    return path


def _sink_kind(raw: str) -> SinkKind:
    try:
        return SinkKind(raw.strip().lower())
    except ValueError as exc:
        choices = ", ".join(kind.value for kind in SinkKind)
        raise RuntimeError(f"SINK_KIND must be one of {choices}, got {raw!r}") from exc


def load_settings() -> Settings:
    load_dotenv()

    ytdlp_command = shlex.split(os.getenv("YTDLP_COMMAND", "yt-dlp"))
    if not ytdlp_command:
        raise RuntimeError("YTDLP_COMMAND must not be empty")

    timeout_seconds = _as_float("JOB_TIMEOUT_SECONDS", 600.0)
    if timeout_seconds <= 0:
        raise RuntimeError("JOB_TIMEOUT_SECONDS must be positive")

    chunk_size = _as_int("CHUNK_SIZE", 64 * 1024)
    if chunk_size <= 0:
        raise RuntimeError("CHUNK_SIZE must be positive")

    return Settings(
        host=os.getenv("HOST", "0.0.0.0"),
        port=_as_int("PORT", 10000),
        download_path=_normalized_path(os.getenv("DOWNLOAD_PATH", "/api/download")),
        health_path=_normalized_path(os.getenv("HEALTH_PATH", "/healthz")),
        mcp_path=_normalized_path(os.getenv("MCP_PATH", "/mcp")),
        ytdlp_command=ytdlp_command,
        temp_dir=Path(os.getenv("TEMP_DIR") or tempfile.gettempdir()).resolve(),
        sink_kind=_sink_kind(os.getenv("SINK_KIND", SinkKind.BUFFERED.value)),
        timeout_seconds=timeout_seconds,
        kill_grace_seconds=_as_float("KILL_GRACE_SECONDS", 5.0),
        disconnect_poll_seconds=_as_float("DISCONNECT_POLL_SECONDS", 1.0),
        preflight=_as_bool("PREFLIGHT", False),
        preflight_timeout_seconds=_as_float("PREFLIGHT_TIMEOUT_SECONDS", 60.0),
        chunk_size=chunk_size,
        diagnostic_limit=_as_int("DIAGNOSTIC_LIMIT", 64 * 1024),
        detail_limit=_as_int("DETAIL_LIMIT", 4000),
        auth_failure_status=_as_int("AUTH_FAILURE_STATUS", 500),
        cors_origins=_as_list("CORS_ORIGINS", "*"),
        filename_prefix=os.getenv("FILENAME_PREFIX", "media_relay"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
