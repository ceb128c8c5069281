from __future__ import annotations

import logging
from typing import Any

from starlette.responses import Response

from media_relay.config import Settings
from media_relay.errors import InvalidRequest, RelayError
from media_relay.services.normalizer import normalize_request
from media_relay.services.disconnect import DisconnectProbe, watch_disconnect
from media_relay.services.probe import probe
from media_relay.services.sinks import ResponseCommitment, render_error, select_sink

logger = logging.getLogger(__name__)


class MediaRelay:
    """Turns one download request into exactly one response."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    async def handle(self, payload: Any, *, disconnected: DisconnectProbe | None = None) -> Response:
        commitment = ResponseCommitment()
        try:
            spec = normalize_request(payload, default_sink=self.settings.sink_kind)
        except InvalidRequest as error:
            logger.warning("Rejected download request: %s", error.detail or error.message)
            return render_error(commitment, error, self.settings)

        if self.settings.preflight:
            try:
                await watch_disconnect(
                    probe(spec, self.settings),
                    disconnected,
                    poll_seconds=self.settings.disconnect_poll_seconds,
                    activity=f"pre-flight check of {spec.source_url}",
                )
            except RelayError as error:
                return render_error(commitment, error, self.settings)

        sink = select_sink(spec, self.settings)
        return await sink.deliver(spec, commitment, disconnected=disconnected)
