from __future__ import annotations

import asyncio
import contextlib
import logging

import anyio

from media_relay.config import Settings
from media_relay.errors import ExecutionError
from media_relay.services.classifier import classify_failure, error_for
from media_relay.services.extractor import build_probe_command
from media_relay.types import JobSpec

logger = logging.getLogger(__name__)


async def probe(spec: JobSpec, settings: Settings) -> None:
    """Dry-run the extractor against the source and raise its classified failure, if any.

    Nothing is downloaded. A clean exit means the format selector resolved
    and the source did not ask for a login or a bot check.
    """
    cmd = build_probe_command(spec, settings)
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        logger.error("Could not launch extractor %s: %s", cmd[0], exc)
        raise ExecutionError(detail=str(exc)) from exc

    try:
        _, stderr = await asyncio.wait_for(
            process.communicate(), timeout=settings.preflight_timeout_seconds
        )
    except asyncio.TimeoutError:
        logger.error("Pre-flight check for %s timed out", spec.source_url)
        raise ExecutionError(
            detail=f"Pre-flight check timed out after {settings.preflight_timeout_seconds:g}s"
        ) from None
    finally:
        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            with anyio.CancelScope(shield=True):
                await process.wait()

    if process.returncode != 0:
        diagnostics = stderr.decode("utf-8", errors="replace")
        category = classify_failure(diagnostics)
        logger.warning(
            "Pre-flight check for %s failed with code %s (%s)",
            spec.source_url,
            process.returncode,
            category.value,
        )
        raise error_for(category, detail=diagnostics[-settings.detail_limit :].strip() or None)
