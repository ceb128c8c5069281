from __future__ import annotations

import logging
import os
import time
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable
from typing import Any, TypeVar

import anyio
from starlette.responses import FileResponse, JSONResponse, Response, StreamingResponse
from starlette.types import Receive, Scope, Send

from media_relay.config import Settings
from media_relay.errors import AuthenticationRequired, EmptyArtifact, ExtractionFailed, RelayError
from media_relay.services.disconnect import DisconnectProbe, watch_disconnect
from media_relay.services.extractor import ExtractionJob
from media_relay.types import JobSpec, JobState, SinkKind

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ResponseCommitment:
    """Latch that allows exactly one response per request."""

    def __init__(self) -> None:
        self.kind: str | None = None

    @property
    def committed(self) -> bool:
        return self.kind is not None

    def commit(self, kind: str) -> None:
        if self.kind is not None:
            raise RuntimeError(f"Response already committed as {self.kind!r}, cannot send {kind!r}")
        self.kind = kind


def error_response(error: RelayError, settings: Settings) -> JSONResponse:
    status_code = error.status_code
    if isinstance(error, AuthenticationRequired):
        status_code = settings.auth_failure_status

    body: dict[str, Any] = {
        "success": False,
        "error": error.code,
        "category": error.category.value,
        "message": error.message,
    }
    if error.detail:
        body["detail"] = error.detail[-settings.detail_limit :]
    return JSONResponse(body, status_code=status_code)


def render_error(commitment: ResponseCommitment, error: RelayError, settings: Settings) -> JSONResponse:
    commitment.commit("error")
    return error_response(error, settings)


def download_filename(spec: JobSpec, settings: Settings) -> str:
    millis = int(time.time() * 1000)
    return f"{settings.filename_prefix}_{spec.media_kind.value}_{millis}.{spec.extension}"


async def _close_shielded(job: ExtractionJob) -> None:
    with anyio.CancelScope(shield=True):
        await job.close()


class JobStreamingResponse(StreamingResponse):
    """Streams extractor stdout and closes the job however the exchange ends."""

    def __init__(self, job: ExtractionJob, content: AsyncIterator[bytes], **kwargs: Any) -> None:
        super().__init__(content, **kwargs)
        self.job = job

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await _close_shielded(self.job)


class JobFileResponse(FileResponse):
    """Serves the job's artifact and removes it once the transfer ends or aborts."""

    def __init__(self, job: ExtractionJob, path: str | os.PathLike[str], **kwargs: Any) -> None:
        super().__init__(path, **kwargs)
        self.job = job

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        try:
            await super().__call__(scope, receive, send)
        finally:
            await _close_shielded(self.job)


class DeliverySink(ABC):
    sink_kind: SinkKind

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    async def deliver(
        self,
        spec: JobSpec,
        commitment: ResponseCommitment,
        *,
        disconnected: DisconnectProbe | None = None,
    ) -> Response:
        if spec.sink_kind is not self.sink_kind:
            raise RuntimeError(f"{type(self).__name__} cannot deliver {spec.sink_kind.value} jobs")

        job = ExtractionJob(spec, self.settings)
        try:
            return await self._deliver(job, commitment, disconnected)
        except RelayError as error:
            await _close_shielded(job)
            return render_error(commitment, error, self.settings)
        except BaseException:
            await _close_shielded(job)
            raise

    @abstractmethod
    async def _deliver(
        self,
        job: ExtractionJob,
        commitment: ResponseCommitment,
        disconnected: DisconnectProbe | None,
    ) -> Response:
        """Run the job and return the success response, raising RelayError on failure."""

    async def _watch(
        self,
        job: ExtractionJob,
        awaitable: Awaitable[T],
        disconnected: DisconnectProbe | None,
    ) -> T:
        return await watch_disconnect(
            awaitable,
            disconnected,
            poll_seconds=self.settings.disconnect_poll_seconds,
            activity=f"extraction of {job.spec.source_url}",
        )


class StreamedSink(DeliverySink):
    """Pipes extractor stdout to the caller, committing headers on the first byte."""

    sink_kind = SinkKind.STREAMED

    async def _deliver(
        self,
        job: ExtractionJob,
        commitment: ResponseCommitment,
        disconnected: DisconnectProbe | None,
    ) -> Response:
        await job.start()
        first = await self._watch(job, job.read_payload(), disconnected)
        if not first:
            await self._watch(job, job.wait(), disconnected)
            raise job.failure or ExtractionFailed()

        commitment.commit("stream")
        return JobStreamingResponse(
            job,
            self._forward(job, first),
            media_type=job.spec.content_type,
            headers={
                "Content-Disposition": f'attachment; filename="{download_filename(job.spec, self.settings)}"'
            },
        )

    async def _forward(self, job: ExtractionJob, first: bytes) -> AsyncIterator[bytes]:
        yield first
        # Headers are already on the wire, so a failure from here on can only
        # end the stream early.
        try:
            while True:
                chunk = await job.read_payload()
                if not chunk:
                    break
                yield chunk
            await job.wait()
        except RelayError as error:
            logger.error(
                "Stream for %s aborted after %d bytes: %s",
                job.spec.source_url,
                job.bytes_emitted,
                error.detail or error.message,
            )
            return
        if job.state is JobState.FAILED:
            logger.error(
                "Extractor for %s failed after %d bytes were sent, download is truncated",
                job.spec.source_url,
                job.bytes_emitted,
            )


class BufferedSink(DeliverySink):
    """Materializes the media in a transient file, then serves it with a Content-Length."""

    sink_kind = SinkKind.BUFFERED

    async def _deliver(
        self,
        job: ExtractionJob,
        commitment: ResponseCommitment,
        disconnected: DisconnectProbe | None,
    ) -> Response:
        await job.start()
        await self._watch(job, job.wait(), disconnected)
        job.raise_for_failure()

        artifact = job.artifact_path
        if artifact is None:
            raise EmptyArtifact()
        try:
            stat_result = artifact.stat()
        except OSError as exc:
            raise EmptyArtifact(detail=str(exc)) from exc

        commitment.commit("file")
        return JobFileResponse(
            job,
            artifact,
            media_type=job.spec.content_type,
            filename=download_filename(job.spec, self.settings),
            stat_result=stat_result,
        )


_SINKS: dict[SinkKind, type[DeliverySink]] = {
    SinkKind.STREAMED: StreamedSink,
    SinkKind.BUFFERED: BufferedSink,
}


def select_sink(spec: JobSpec, settings: Settings) -> DeliverySink:
    return _SINKS[spec.sink_kind](settings)
