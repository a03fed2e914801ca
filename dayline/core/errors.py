"""
Analysis error taxonomy
Transient errors are retried inside provider calls; everything else ends the batch attempt
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from dayline.models.entities import LLMCallLog


class AnalysisError(Exception):
    """Base class for every failure surfaced by the analysis pipeline"""

    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        # Filled in by the provider that observed the failure
        self.call_log: Optional["LLMCallLog"] = None

    def __str__(self) -> str:
        if self.status_code is not None:
            return f"{self.message} (HTTP {self.status_code})"
        return self.message


class NetworkError(AnalysisError):
    """Timeouts, connection failures, 5xx responses, malformed envelopes"""

    retryable = True


class RateLimited(AnalysisError):
    """HTTP 429; retried after the server supplied delay"""

    retryable = True

    def __init__(
        self,
        message: str = "Rate limited",
        retry_after: Optional[float] = None,
        status_code: Optional[int] = 429,
    ):
        super().__init__(message, status_code)
        self.retry_after = retry_after


class UploadTimeout(AnalysisError):
    """Uploaded video never reached the ACTIVE state"""


class SchemaParseError(AnalysisError):
    """Response did not match the requested JSON schema"""


class TranscriptionValidationError(SchemaParseError):
    """Observation timestamps fall outside the video"""


class EmptyResult(AnalysisError):
    """A successful call produced no observations"""


class AuthError(AnalysisError):
    """Credentials rejected; the user has to fix settings"""


class ProviderError(AnalysisError):
    """Any other non-retryable provider failure"""


class ConfigurationError(AnalysisError):
    """No usable provider configuration"""


class VideoPreparationError(AnalysisError):
    """Batch video could not be assembled or sampled"""


class InvalidTransitionError(AnalysisError):
    """Illegal batch status change"""


GEMINI_503_MESSAGE = (
    "Google's Gemini servers returned a 503 error. Google's AI services may be "
    "temporarily down. If you see many of these in a row, please wait at least a "
    "few hours before retrying."
)


def _message_for_status(status_code: int) -> Optional[str]:
    if status_code == 400:
        return "Invalid API key. Please check your Gemini API key in Settings."
    if status_code == 401:
        return "Unauthorized. Your Gemini API key may be invalid or expired."
    if status_code == 403:
        return "Access forbidden. Check your Gemini API permissions."
    if status_code == 429:
        return "Rate limited. Too many requests to Gemini. Please wait a few minutes."
    if status_code == 503:
        return GEMINI_503_MESSAGE
    if 500 <= status_code < 600:
        return "Gemini service error. The service may be temporarily down."
    return None


def human_readable_error(error: BaseException) -> str:
    """Translate an error into text suitable for an error card or the UI"""
    if isinstance(error, AuthError):
        if error.status_code is not None:
            return _message_for_status(error.status_code) or str(error)
        return "There's an issue with your API key. Please check your settings."
    if isinstance(error, RateLimited):
        return "The AI service is temporarily overwhelmed. This usually resolves itself in a few minutes."
    if isinstance(error, UploadTimeout):
        return "The AI service took too long to process the video."
    if isinstance(error, TranscriptionValidationError):
        return "The AI generated timestamps beyond the video duration."
    if isinstance(error, SchemaParseError):
        return "The AI returned an unexpected response format."
    if isinstance(error, EmptyResult):
        return "The AI couldn't identify any activities in the video."
    if isinstance(error, ConfigurationError):
        return "No AI provider is configured. Please set one up in Settings."
    if isinstance(error, VideoPreparationError):
        return "Failed to prepare video for processing."
    if isinstance(error, NetworkError):
        if error.status_code is not None:
            mapped = _message_for_status(error.status_code)
            if mapped:
                return mapped
        return "Couldn't connect to the AI service after multiple attempts. Check your internet connection."
    if isinstance(error, ProviderError) and error.status_code is not None:
        return _message_for_status(error.status_code) or (
            f"The AI service returned HTTP error {error.status_code}. Check your API settings."
        )
    return str(error) or error.__class__.__name__
