import pytest

from models.errors import (
    GenerationError,
    PollTimeoutError,
    ProviderError,
    SafetyFilterError,
    UploadError,
    ValidationError,
    sanitize_error_message,
)


def test_sanitize_strips_control_characters() -> None:
    raw = "bad\x00bytes\x1b[31m in\x7f message\x9f"
    assert sanitize_error_message(raw) == "badbytes[31m in message"


def test_sanitize_empty_message_has_fallback() -> None:
    assert sanitize_error_message("") == "Unknown error occurred"
    assert sanitize_error_message(None) == "Unknown error occurred"


def test_generation_errors_are_sanitized_on_construction() -> None:
    err = ProviderError("upstream said \x00\x01\x02PNG junk")
    assert err.message == "upstream said PNG junk"
    assert str(err) == err.message


def test_validation_error_names_the_field() -> None:
    err = ValidationError("prompt")
    assert err.field == "prompt"
    assert "prompt" in err.message


def test_safety_filter_error_keeps_reasons_verbatim() -> None:
    reasons = ["Celebrity likeness", "Violence: graphic"]
    err = SafetyFilterError(reasons)
    assert err.reasons == reasons
    assert isinstance(err, ProviderError)
    assert "Celebrity likeness; Violence: graphic" in err.message


def test_poll_timeout_error_reports_elapsed() -> None:
    err = PollTimeoutError(elapsed_seconds=65.0, max_wait_seconds=60)
    assert err.elapsed_seconds == 65.0
    assert "65.0s" in err.message


def test_upload_error_keeps_last_failure() -> None:
    cause = OSError("boom")
    err = UploadError("failed", last_error=cause)
    assert err.last_error is cause
    with pytest.raises(GenerationError):
        raise err
