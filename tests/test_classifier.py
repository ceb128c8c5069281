from media_relay.errors import AuthenticationRequired, EmptyArtifact, ExtractionFailed, LicenseRestricted
from media_relay.services.classifier import FailureClassifier, FailureRule, classify_failure, error_for
from media_relay.types import FailureCategory

BOT_STDERR = (
    "ERROR: [youtube] abc123: Sign in to confirm you're not a bot. "
    "Use --cookies-from-browser or --cookies for the authentication."
)
COPYRIGHT_STDERR = (
    "ERROR: [youtube] abc123: Video unavailable. This video contains content from Label, "
    "who has blocked it in your country on copyright grounds"
)


def test_bot_check_wins_over_cookie_hint() -> None:
    assert classify_failure(BOT_STDERR) is FailureCategory.BOT_CHECK


def test_login_required() -> None:
    assert classify_failure("ERROR: This video is only available for registered users. Use --cookies") is (
        FailureCategory.LOGIN_REQUIRED
    )
    assert classify_failure("ERROR: Private video. Sign in if you've been granted access") is (
        FailureCategory.LOGIN_REQUIRED
    )


def test_copyright() -> None:
    assert classify_failure(COPYRIGHT_STDERR) is FailureCategory.LICENSE_RESTRICTED


def test_unmatched_is_generic() -> None:
    assert classify_failure("ERROR: Unsupported URL: https://example.com") is FailureCategory.EXTRACTION_FAILED
    assert classify_failure("") is FailureCategory.EXTRACTION_FAILED


def test_classification_is_stable() -> None:
    results = {classify_failure(BOT_STDERR) for _ in range(5)}
    assert results == {FailureCategory.BOT_CHECK}


def test_custom_rules() -> None:
    classifier = FailureClassifier(
        (FailureRule(FailureCategory.LICENSE_RESTRICTED, ("geo fence",)),)
    )
    assert classifier.classify("blocked by GEO FENCE") is FailureCategory.LICENSE_RESTRICTED
    assert classifier.classify(BOT_STDERR) is FailureCategory.EXTRACTION_FAILED


def test_error_for_maps_categories() -> None:
    bot = error_for(FailureCategory.BOT_CHECK, detail="x")
    login = error_for(FailureCategory.LOGIN_REQUIRED)
    assert isinstance(bot, AuthenticationRequired)
    assert isinstance(login, AuthenticationRequired)
    assert bot.detail == "x"
    assert login.category is FailureCategory.LOGIN_REQUIRED
    assert bot.message != login.message
    assert isinstance(error_for(FailureCategory.LICENSE_RESTRICTED), LicenseRestricted)
    assert isinstance(error_for(FailureCategory.EXTRACTION_FAILED), ExtractionFailed)
    assert isinstance(error_for(FailureCategory.EMPTY_ARTIFACT), EmptyArtifact)
