from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class MediaKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


class SinkKind(str, Enum):
    STREAMED = "streamed"
    BUFFERED = "buffered"


class JobState(str, Enum):
    STARTED = "started"
    STREAMING = "streaming"
    FAILED = "failed"
    SUCCEEDED = "succeeded"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.FAILED, JobState.SUCCEEDED)


class FailureCategory(str, Enum):
    INVALID_REQUEST = "invalid_request"
    BOT_CHECK = "bot_check"
    LOGIN_REQUIRED = "login_required"
    LICENSE_RESTRICTED = "license_restricted"
    EXTRACTION_FAILED = "extraction_failed"
    EXECUTION_ERROR = "execution_error"
    EMPTY_ARTIFACT = "empty_artifact"
    ABORTED = "aborted"


_EXTENSIONS = {MediaKind.AUDIO: "mp3", MediaKind.VIDEO: "mp4"}
_CONTENT_TYPES = {MediaKind.AUDIO: "audio/mpeg", MediaKind.VIDEO: "video/mp4"}


@dataclass(slots=True, frozen=True)
class JobSpec:
    source_url: str
    media_kind: MediaKind
    quality: int | None
    sink_kind: SinkKind
    format_selector: str
    extract_audio: bool = False

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self.media_kind]

    @property
    def content_type(self) -> str:
        return _CONTENT_TYPES[self.media_kind]
