import pytest

from dayline.core.errors import (
    GEMINI_503_MESSAGE,
    AnalysisError,
    AuthError,
    EmptyResult,
    NetworkError,
    ProviderError,
    RateLimited,
    SchemaParseError,
    TranscriptionValidationError,
    UploadTimeout,
    human_readable_error,
)


@pytest.mark.parametrize(
    "error, expected",
    [
        (AuthError("bad", 401), "Unauthorized. Your Gemini API key may be invalid or expired."),
        (AuthError("bad", 400), "Invalid API key. Please check your Gemini API key in Settings."),
        (NetworkError("busy", 503), GEMINI_503_MESSAGE),
        (UploadTimeout("slow"), "The AI service took too long to process the video."),
        (EmptyResult("none"), "The AI couldn't identify any activities in the video."),
        (TranscriptionValidationError("late"), "The AI generated timestamps beyond the video duration."),
        (SchemaParseError("junk"), "The AI returned an unexpected response format."),
    ],
)
def test_human_readable_error(error, expected):
    assert human_readable_error(error) == expected


def test_rate_limit_message_mentions_waiting():
    assert "few minutes" in human_readable_error(RateLimited(retry_after=3))


def test_unknown_provider_status_falls_back_to_generic_text():
    assert "418" in human_readable_error(ProviderError("teapot", 418))


def test_retryable_flags():
    assert NetworkError("x").retryable
    assert RateLimited().retryable
    assert not AuthError("x").retryable
    assert not SchemaParseError("x").retryable


def test_str_includes_status_code():
    assert str(AnalysisError("boom", 500)) == "boom (HTTP 500)"
    assert str(AnalysisError("boom")) == "boom"
