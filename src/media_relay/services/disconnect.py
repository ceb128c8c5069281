from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from media_relay.errors import RelayAborted

logger = logging.getLogger(__name__)

T = TypeVar("T")

DisconnectProbe = Callable[[], Awaitable[bool]]


async def watch_disconnect(
    awaitable: Awaitable[T],
    disconnected: DisconnectProbe | None,
    *,
    poll_seconds: float,
    activity: str,
) -> T:
    """Await a step of the request while polling the caller for a disconnect.

    When the caller is gone the step is cancelled, and RelayAborted is raised
    once the cancellation has been delivered, so the step's own cleanup runs
    before anything else happens.
    """
    task = asyncio.ensure_future(awaitable)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=poll_seconds)
            if done:
                return task.result()
            if disconnected is not None and await disconnected():
                logger.warning("Client disconnected during %s", activity)
                raise RelayAborted()
    finally:
        if not task.done():
            task.cancel()
            await asyncio.wait({task})
