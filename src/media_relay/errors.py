"""
Error taxonomy for the download relay. Every error carries a user-facing
message, an optional diagnostic excerpt and the HTTP status it maps to.
"""

from __future__ import annotations

from media_relay.types import FailureCategory


class RelayError(Exception):
    """Base exception for all failures resolved inside the relay."""

    code = "relay_error"
    status_code = 500
    default_message = "Something went wrong while preparing your download."
    default_category = FailureCategory.EXTRACTION_FAILED

    def __init__(
        self,
        message: str | None = None,
        *,
        detail: str | None = None,
        category: FailureCategory | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.detail = detail or None
        self.category = category or self.default_category
        super().__init__(self.message)


class InvalidRequest(RelayError):
    """Raised when the inbound payload is missing or malformed."""

    code = "invalid_request"
    status_code = 400
    default_message = "The URL is empty. Paste a media link and try again."
    default_category = FailureCategory.INVALID_REQUEST


class AuthenticationRequired(RelayError):
    """Raised when the source demands a login, cookies or a bot check."""

    code = "authentication_required"
    default_message = (
        "This media needs a sign-in or a human-verification check on the source site, "
        "so the web relay cannot fetch it. Try the desktop client instead."
    )
    default_category = FailureCategory.BOT_CHECK


class LicenseRestricted(RelayError):
    """Raised when the source blocks the media on copyright or licensing grounds."""

    code = "license_restricted"
    default_message = (
        "This media is blocked for copyright or licensing reasons. Try a different source."
    )
    default_category = FailureCategory.LICENSE_RESTRICTED


class ExtractionFailed(RelayError):
    """Raised when the extractor fails or produces nothing, without a known cause."""

    code = "extraction_failed"
    default_message = (
        "Something went wrong while fetching the media. "
        "Try again in a moment or use a different source."
    )
    default_category = FailureCategory.EXTRACTION_FAILED


class ExecutionError(RelayError):
    """Raised when the extractor cannot be launched or exceeds its time budget."""

    code = "execution_error"
    default_message = "The download tool could not finish on the server. Try again later."
    default_category = FailureCategory.EXECUTION_ERROR


class EmptyArtifact(RelayError):
    """Raised when the extractor exits cleanly but leaves no usable file."""

    code = "empty_artifact"
    default_message = "The download finished but no file was produced. Try a different format."
    default_category = FailureCategory.EMPTY_ARTIFACT


class RelayAborted(RelayError):
    """Raised when the caller went away before the job finished."""

    code = "aborted"
    default_message = "The download was cancelled."
    default_category = FailureCategory.ABORTED
