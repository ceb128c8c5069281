from __future__ import annotations

from dataclasses import dataclass

from media_relay.errors import (
    AuthenticationRequired,
    EmptyArtifact,
    ExecutionError,
    ExtractionFailed,
    LicenseRestricted,
    RelayAborted,
    RelayError,
)
from media_relay.types import FailureCategory


@dataclass(slots=True, frozen=True)
class FailureRule:
    category: FailureCategory
    patterns: tuple[str, ...]


# Checked in order; the first rule with a matching pattern wins. Patterns are
# compared against the lower-cased diagnostic text.
DEFAULT_RULES: tuple[FailureRule, ...] = (
    FailureRule(
        FailureCategory.BOT_CHECK,
        (
            "sign in to confirm you're not a bot",
            "sign in to confirm you’re not a bot",
            "confirm you are not a robot",
            "sign in to confirm your age",
            "age-restricted",
            "captcha",
            "100.0% of this video has been cut off",
        ),
    ),
    FailureRule(
        FailureCategory.LICENSE_RESTRICTED,
        (
            "copyright",
            "not available in your country",
            "blocked it in your country",
            "geo restricted",
            "geo-restricted",
            "due to a licensing",
            "drm protected",
        ),
    ),
    FailureRule(
        FailureCategory.LOGIN_REQUIRED,
        (
            "login",
            "log in",
            "cookies",
            "private video",
            "members-only",
            "requires authentication",
        ),
    ),
)

_ERROR_TYPES: dict[FailureCategory, type[RelayError]] = {
    FailureCategory.BOT_CHECK: AuthenticationRequired,
    FailureCategory.LOGIN_REQUIRED: AuthenticationRequired,
    FailureCategory.LICENSE_RESTRICTED: LicenseRestricted,
    FailureCategory.EXTRACTION_FAILED: ExtractionFailed,
    FailureCategory.EXECUTION_ERROR: ExecutionError,
    FailureCategory.EMPTY_ARTIFACT: EmptyArtifact,
    FailureCategory.ABORTED: RelayAborted,
}

_LOGIN_MESSAGE = (
    "This media is only available to signed-in users, so the web relay cannot fetch it. "
    "Try the desktop client with your own account."
)


class FailureClassifier:
    """Best-effort substring classifier for extractor diagnostics."""

    def __init__(self, rules: tuple[FailureRule, ...] = DEFAULT_RULES) -> None:
        self.rules = rules

    def classify(self, diagnostics: str) -> FailureCategory:
        text = diagnostics.lower()
        for rule in self.rules:
            if any(pattern in text for pattern in rule.patterns):
                return rule.category
        return FailureCategory.EXTRACTION_FAILED


_default_classifier = FailureClassifier()


def classify_failure(diagnostics: str) -> FailureCategory:
    return _default_classifier.classify(diagnostics)


def error_for(category: FailureCategory, *, detail: str | None = None) -> RelayError:
    error_type = _ERROR_TYPES.get(category, ExtractionFailed)
    message = _LOGIN_MESSAGE if category is FailureCategory.LOGIN_REQUIRED else None
    return error_type(message, detail=detail, category=category)
