from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import shutil
import tempfile
from collections.abc import Awaitable
from pathlib import Path
from typing import TypeVar

from media_relay.config import Settings
from media_relay.errors import EmptyArtifact, ExecutionError, RelayAborted, RelayError
from media_relay.services.classifier import classify_failure, error_for
from media_relay.types import JobSpec, JobState, SinkKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

STDOUT_TARGET = "-"
ARTIFACT_STEM = "media"
# Piped audio cannot be transcoded, so prefer streams already close to mp3.
STREAMED_AUDIO_SELECTOR = "ba[ext=mp3]/ba[ext=m4a]/ba/b"
_PARTIAL_SUFFIXES = {".part", ".ytdl", ".temp"}

_TRANSITIONS: dict[JobState, set[JobState]] = {
    JobState.STARTED: {JobState.STREAMING, JobState.FAILED, JobState.SUCCEEDED},
    JobState.STREAMING: {JobState.FAILED, JobState.SUCCEEDED},
    JobState.FAILED: set(),
    JobState.SUCCEEDED: set(),
}


def build_command(spec: JobSpec, settings: Settings, output: str) -> list[str]:
    selector = spec.format_selector
    if output == STDOUT_TARGET and spec.extract_audio:
        selector = STREAMED_AUDIO_SELECTOR
    cmd = [
        *settings.ytdlp_command,
        "--no-playlist",
        "--no-progress",
        "-f",
        selector,
        "-o",
        output,
    ]
    # yt-dlp cannot post-process a file it is piping to stdout.
    if output != STDOUT_TARGET:
        if spec.extract_audio:
            cmd.extend(["-x", "--audio-format", "mp3", "--audio-quality", "0"])
        else:
            # --merge-output-format only covers merges; a single-file fallback needs a remux.
            cmd.extend(["--merge-output-format", spec.extension, "--remux-video", spec.extension])
    cmd.extend(["--", spec.source_url])
    return cmd


def build_probe_command(spec: JobSpec, settings: Settings) -> list[str]:
    return [
        *settings.ytdlp_command,
        "--simulate",
        "--no-playlist",
        "-f",
        spec.format_selector,
        "--",
        spec.source_url,
    ]


def _log_diagnostic(line: str) -> None:
    line = line.strip()
    if line:
        logger.warning("[extractor] %s", line)


class DiagnosticBuffer:
    """Accumulates the extractor's diagnostic channel, keeping only the tail."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.truncated = False
        self._text = ""
        self._sealed = False

    def append(self, text: str) -> None:
        if self._sealed:
            raise RuntimeError("Diagnostic buffer is sealed")
        self._text += text
        if len(self._text) > self.limit:
            self._text = self._text[-self.limit :]
            self.truncated = True

    def seal(self) -> None:
        self._sealed = True

    @property
    def sealed(self) -> bool:
        return self._sealed

    @property
    def text(self) -> str:
        return self._text

    def excerpt(self, limit: int) -> str | None:
        return self._text[-limit:].strip() or None


class ExtractionJob:
    """Owns one extractor process and drives the job state machine.

    STARTED moves to STREAMING on the first payload chunk (streamed jobs
    only) and to FAILED or SUCCEEDED on termination. Terminal states are
    final. Every wait is bounded by the job deadline; on expiry the process
    is terminated and the job fails with an ExecutionError.
    """

    def __init__(self, spec: JobSpec, settings: Settings) -> None:
        self.spec = spec
        self.settings = settings
        self.state = JobState.STARTED
        self.process: asyncio.subprocess.Process | None = None
        self.diagnostics = DiagnosticBuffer(settings.diagnostic_limit)
        self.bytes_emitted = 0
        self.failure: RelayError | None = None
        self.work_dir: Path | None = None
        self.artifact_path: Path | None = None
        self._deadline: float | None = None
        self._diagnostic_task: asyncio.Task[None] | None = None
        self._cleaned_up = False

    @property
    def streamed(self) -> bool:
        return self.spec.sink_kind is SinkKind.STREAMED

    async def start(self) -> None:
        if self.process is not None or self._deadline is not None:
            raise RuntimeError("Extraction job was already started")

        self._deadline = asyncio.get_running_loop().time() + self.settings.timeout_seconds
        if self.streamed:
            output = STDOUT_TARGET
        else:
            self.settings.temp_dir.mkdir(parents=True, exist_ok=True)
            self.work_dir = Path(tempfile.mkdtemp(prefix="relay_", dir=self.settings.temp_dir))
            output = str(self.work_dir / f"{ARTIFACT_STEM}.%(ext)s")

        cmd = build_command(self.spec, self.settings, output)
        logger.info(
            "Starting extractor for %s (mode=%s, quality=%s, sink=%s)",
            self.spec.source_url,
            self.spec.media_kind.value,
            self.spec.quality or "auto",
            self.spec.sink_kind.value,
        )
        try:
            self.process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE if self.streamed else asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.error("Could not launch extractor %s: %s", cmd[0], exc)
            error = ExecutionError(detail=str(exc))
            self._fail(error)
            raise error from exc

        self._diagnostic_task = asyncio.create_task(self._drain_diagnostics())

    async def read_payload(self) -> bytes:
        """Return the next payload chunk, or b"" once the extractor closes stdout."""
        if not self.streamed:
            raise RuntimeError("Buffered jobs have no payload channel")
        if self.state.is_terminal:
            raise RuntimeError(f"Extraction job is already {self.state.value}")
        process = self._require_process()
        if process.stdout is None:
            raise RuntimeError("Extractor stdout is not piped")

        chunk = await self._bounded(process.stdout.read(self.settings.chunk_size))
        if chunk:
            if self.state is JobState.STARTED:
                self._transition(JobState.STREAMING)
            self.bytes_emitted += len(chunk)
        return chunk

    async def wait(self) -> JobState:
        """Wait for the extractor to exit and settle the terminal state."""
        if self.state.is_terminal:
            return self.state
        process = self._require_process()

        returncode = await self._bounded(process.wait())
        if self._diagnostic_task is not None:
            await self._bounded(self._diagnostic_task)
        self._settle(returncode)
        return self.state

    def raise_for_failure(self) -> None:
        if self.state is JobState.FAILED and self.failure is not None:
            raise self.failure

    async def terminate(self) -> None:
        """Stop the extractor with SIGTERM, escalating to SIGKILL after the grace period."""
        process = self.process
        if process is not None and process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=self.settings.kill_grace_seconds)
            except asyncio.TimeoutError:
                logger.warning("Extractor pid %s ignored SIGTERM, killing it", process.pid)
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()
        await self._stop_diagnostics()

    async def close(self) -> None:
        """Release the process and the transient directory. Safe to call repeatedly."""
        if self.process is not None and self.process.returncode is None:
            logger.warning("Terminating unfinished extractor for %s", self.spec.source_url)
        await self.terminate()
        if not self.state.is_terminal:
            self._fail(RelayAborted(detail=self.diagnostics.excerpt(self.settings.detail_limit)))
        self._remove_work_dir()

    def _require_process(self) -> asyncio.subprocess.Process:
        if self.process is None:
            raise RuntimeError("Extraction job was never started")
        return self.process

    async def _bounded(self, awaitable: Awaitable[T]) -> T:
        if self._deadline is None:
            raise RuntimeError("Extraction job was never started")
        remaining = max(self._deadline - asyncio.get_running_loop().time(), 0.0)
        try:
            return await asyncio.wait_for(awaitable, timeout=remaining)
        except asyncio.TimeoutError:
            logger.error(
                "Extractor for %s exceeded %.0fs, terminating",
                self.spec.source_url,
                self.settings.timeout_seconds,
            )
            await self.terminate()
            excerpt = self.diagnostics.excerpt(self.settings.detail_limit)
            detail = f"Timed out after {self.settings.timeout_seconds:g}s"
            if excerpt:
                detail = f"{detail}\n{excerpt}"
            error = ExecutionError(detail=detail)
            self._fail(error)
            raise error from None

    async def _drain_diagnostics(self) -> None:
        process = self._require_process()
        if process.stderr is None:
            return
        # Multi-byte characters and lines can straddle reads.
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        while True:
            chunk = await process.stderr.read(4096)
            text = decoder.decode(chunk, final=not chunk)
            if text:
                self.diagnostics.append(text)
                pending += text
                *lines, pending = pending.split("\n")
                for line in lines:
                    _log_diagnostic(line)
                if len(pending) > self.settings.diagnostic_limit:
                    _log_diagnostic(pending)
                    pending = ""
            if not chunk:
                break
        _log_diagnostic(pending)

    async def _stop_diagnostics(self) -> None:
        task = self._diagnostic_task
        if task is None or task.done():
            return
        # Let the tail of stderr arrive once the process is gone.
        _, pending = await asyncio.wait({task}, timeout=self.settings.kill_grace_seconds)
        for leftover in pending:
            leftover.cancel()
        if pending:
            await asyncio.wait(pending)

    def _settle(self, returncode: int) -> None:
        detail = self.diagnostics.excerpt(self.settings.detail_limit)
        if returncode != 0:
            logger.error("Extractor for %s exited with code %s", self.spec.source_url, returncode)
            self._fail(error_for(classify_failure(self.diagnostics.text), detail=detail))
            return

        if self.streamed:
            if self.bytes_emitted > 0:
                self._succeed()
                return
            logger.error("Extractor for %s exited cleanly without output", self.spec.source_url)
            self._fail(error_for(classify_failure(self.diagnostics.text), detail=detail))
            return

        artifact = self._find_artifact()
        if artifact is None:
            logger.error("Extractor for %s left no usable file", self.spec.source_url)
            self._fail(EmptyArtifact(detail=detail))
            return
        self.artifact_path = artifact
        self._succeed()

    def _find_artifact(self) -> Path | None:
        if self.work_dir is None:
            return None
        expected = self.work_dir / f"{ARTIFACT_STEM}.{self.spec.extension}"
        candidates = [expected, *sorted(self.work_dir.glob(f"{ARTIFACT_STEM}.*"))]
        for candidate in candidates:
            if candidate.suffix in _PARTIAL_SUFFIXES or not candidate.is_file():
                continue
            if candidate.stat().st_size > 0:
                return candidate
        return None

    def _transition(self, new_state: JobState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Illegal job transition {self.state.value} -> {new_state.value}")
        if new_state is JobState.STREAMING and not self.streamed:
            raise RuntimeError("Only streamed jobs can enter STREAMING")
        self.state = new_state
        if new_state.is_terminal:
            self.diagnostics.seal()

    def _fail(self, error: RelayError) -> None:
        self.failure = error
        self._transition(JobState.FAILED)

    def _succeed(self) -> None:
        self._transition(JobState.SUCCEEDED)
        if self.streamed:
            logger.info("Streamed %d bytes for %s", self.bytes_emitted, self.spec.source_url)
        elif self.artifact_path is not None:
            logger.info(
                "Extracted %s (%d bytes) for %s",
                self.artifact_path.name,
                self.artifact_path.stat().st_size,
                self.spec.source_url,
            )

    def _remove_work_dir(self) -> None:
        if self._cleaned_up or self.work_dir is None:
            return
        self._cleaned_up = True
        shutil.rmtree(self.work_dir, ignore_errors=True)
        logger.debug("Removed transient directory %s", self.work_dir)
