"""
Error handling for the movie scene pipeline.

Provides structured error handling with:
- Categorized error codes for all failure scenarios
- User-friendly error messages
- Retry logic determination
- Detailed error context for debugging
"""

from enum import Enum
from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)


class ErrorCode(Enum):
    """
    Enumeration of all possible error codes in the pipeline.

    Organized by category:
    - Configuration Errors: missing credentials or settings
    - Resource Errors: the user cannot pay for the work
    - Provider Errors: render / speech service failures
    - Media Errors: local muxing, frame extraction, concatenation
    - System Errors: storage, database, permissions
    """

    # Configuration Errors
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    UNKNOWN_MODEL = "UNKNOWN_MODEL"
    NARRATION_NOT_CONFIGURED = "NARRATION_NOT_CONFIGURED"

    # Resource Errors
    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"

    # Provider Errors
    GENERATION_SUBMIT_FAILED = "GENERATION_SUBMIT_FAILED"
    GENERATION_STATUS_FAILED = "GENERATION_STATUS_FAILED"
    GENERATION_FAILED = "GENERATION_FAILED"
    NARRATION_FAILED = "NARRATION_FAILED"
    API_TIMEOUT = "API_TIMEOUT"
    API_RATE_LIMIT = "API_RATE_LIMIT"

    # Media Errors
    MUX_FAILED = "MUX_FAILED"
    FFMPEG_ERROR = "FFMPEG_ERROR"
    FRAME_EXTRACTION_FAILED = "FRAME_EXTRACTION_FAILED"
    CONCATENATION_FAILED = "CONCATENATION_FAILED"

    # System Errors
    STORAGE_ERROR = "STORAGE_ERROR"
    ASSET_DOWNLOAD_FAILED = "ASSET_DOWNLOAD_FAILED"
    DATABASE_ERROR = "DATABASE_ERROR"
    PERMISSION_DENIED = "PERMISSION_DENIED"


class PipelineError(Exception):
    """
    Base exception for pipeline errors.

    Provides structured error information including:
    - Error code for categorization
    - Detailed message for logging
    - Context dictionary for debugging
    - User-friendly message for API responses

    Example:
        >>> raise PipelineError(
        ...     ErrorCode.GENERATION_SUBMIT_FAILED,
        ...     "Provider returned 503",
        ...     {"model": "kling-2.6"}
        ... )
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        user_message: Optional[str] = None
    ):
        """
        Initialize pipeline error.

        Args:
            code: Error code from ErrorCode enum
            message: Detailed error message for logging
            details: Additional context (model, scene number, etc.)
            user_message: Optional override for user-friendly message
        """
        self.code = code
        self.message = message
        self.details = details or {}
        self._user_message = user_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert error to dictionary for API responses.

        Returns:
            Dictionary with error information
        """
        return {
            "error_code": self.code.value,
            "message": self.message,
            "details": self.details,
            "user_message": self.get_user_friendly_message()
        }

    def get_user_friendly_message(self) -> str:
        """
        Returns user-friendly error message.

        If a custom user message was provided, returns that.
        Otherwise, returns a predefined friendly message based on error code.
        """
        if self._user_message:
            return self._user_message

        friendly_messages = {
            ErrorCode.CONFIGURATION_ERROR: "Service is misconfigured. Please contact support.",
            ErrorCode.UNKNOWN_MODEL: "The selected video model is not available.",
            ErrorCode.NARRATION_NOT_CONFIGURED: "Narration is not available right now.",
            ErrorCode.INSUFFICIENT_CREDITS: "Insufficient credits. Add more credits and resume.",
            ErrorCode.GENERATION_SUBMIT_FAILED: "Video generation service temporarily unavailable.",
            ErrorCode.GENERATION_STATUS_FAILED: "Could not check video generation status.",
            ErrorCode.GENERATION_FAILED: "Video generation failed or timed out.",
            ErrorCode.NARRATION_FAILED: "Narration failed, using video without voiceover.",
            ErrorCode.API_TIMEOUT: "Request timed out. Please try again.",
            ErrorCode.API_RATE_LIMIT: "Too many requests. Please wait a moment and try again.",
            ErrorCode.MUX_FAILED: "Failed to add narration to the video.",
            ErrorCode.FFMPEG_ERROR: "Video processing error.",
            ErrorCode.FRAME_EXTRACTION_FAILED: "Could not extract a continuity frame.",
            ErrorCode.CONCATENATION_FAILED: "Could not assemble the final movie.",
            ErrorCode.STORAGE_ERROR: "Storage error occurred. Please contact support.",
            ErrorCode.ASSET_DOWNLOAD_FAILED: "Failed to download a video asset.",
            ErrorCode.DATABASE_ERROR: "Database error occurred. Please contact support.",
            ErrorCode.PERMISSION_DENIED: "Permission denied. Please contact support.",
        }

        return friendly_messages.get(
            self.code,
            "An error occurred. Please try again or contact support."
        )

    def log_error(self) -> None:
        """
        Log error with appropriate level and context.

        Retryable errors are logged as warnings, everything else as errors.
        """
        log_data = {
            "error_code": self.code.value,
            "message": self.message,
            "details": self.details
        }

        if should_retry(self):
            logger.warning(f"Retryable error: {log_data}")
        else:
            logger.error(f"Pipeline error: {log_data}")

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


def should_retry(error: Exception) -> bool:
    """
    Determines if an error is transient and should be retried.

    Args:
        error: Exception to check

    Returns:
        True if error is transient and should be retried, False otherwise

    Example:
        >>> should_retry(PipelineError(ErrorCode.API_TIMEOUT, "slow"))
        True
        >>> should_retry(PipelineError(ErrorCode.INSUFFICIENT_CREDITS, "broke"))
        False
    """
    transient_error_codes = [
        ErrorCode.GENERATION_SUBMIT_FAILED,
        ErrorCode.GENERATION_STATUS_FAILED,
        ErrorCode.GENERATION_FAILED,
        ErrorCode.NARRATION_FAILED,
        ErrorCode.API_RATE_LIMIT,
        ErrorCode.API_TIMEOUT,
        ErrorCode.STORAGE_ERROR,
        ErrorCode.ASSET_DOWNLOAD_FAILED,
        ErrorCode.DATABASE_ERROR,
    ]

    if isinstance(error, PipelineError):
        return error.code in transient_error_codes

    if isinstance(error, (TimeoutError, ConnectionError)):
        return True

    return False


def categorize_error(error: Exception) -> ErrorCode:
    """
    Categorize a generic exception into an ErrorCode.

    Example:
        >>> categorize_error(TimeoutError())
        <ErrorCode.API_TIMEOUT: 'API_TIMEOUT'>
    """
    if isinstance(error, PipelineError):
        return error.code

    error_type = type(error).__name__

    mapping = {
        "TimeoutError": ErrorCode.API_TIMEOUT,
        "TimeoutExpired": ErrorCode.API_TIMEOUT,
        "ReadTimeout": ErrorCode.API_TIMEOUT,
        "ConnectTimeout": ErrorCode.API_TIMEOUT,
        "ConnectionError": ErrorCode.ASSET_DOWNLOAD_FAILED,
        "PermissionError": ErrorCode.PERMISSION_DENIED,
        "FileNotFoundError": ErrorCode.STORAGE_ERROR,
        "OSError": ErrorCode.STORAGE_ERROR,
        "OperationalError": ErrorCode.DATABASE_ERROR,
        "IntegrityError": ErrorCode.DATABASE_ERROR,
    }

    return mapping.get(error_type, ErrorCode.STORAGE_ERROR)


class ConfigurationError(PipelineError):
    """Missing credentials or settings for a collaborator."""

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(ErrorCode.CONFIGURATION_ERROR, message, details)


class GenerationError(PipelineError):
    """
    Error talking to the render provider.

    Convenience subclass carrying the model key in details.
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.GENERATION_SUBMIT_FAILED,
        model: Optional[str] = None,
        details: Optional[Dict] = None
    ):
        error_details = details or {}
        if model:
            error_details["model"] = model
        super().__init__(code, message, error_details)


class NarrationError(PipelineError):
    """Speech synthesis failed or is not configured."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.NARRATION_FAILED,
        details: Optional[Dict] = None
    ):
        super().__init__(code, message, details)


class StorageError(PipelineError):
    """Download from or upload to object storage failed."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.STORAGE_ERROR,
        status_code: Optional[int] = None,
        details: Optional[Dict] = None
    ):
        error_details = details or {}
        if status_code:
            error_details["status_code"] = status_code
        super().__init__(code, message, error_details)


class MuxError(PipelineError):
    """Combining narration audio with a scene video failed."""

    def __init__(self, message: str, code: ErrorCode = ErrorCode.MUX_FAILED, details: Optional[Dict] = None):
        super().__init__(code, message, details)


class FrameExtractionError(PipelineError):
    """Pulling the continuity frame out of a scene video failed."""

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(ErrorCode.FRAME_EXTRACTION_FAILED, message, details)


class ConcatenationError(PipelineError):
    """Joining scene videos into the final movie failed."""

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(ErrorCode.CONCATENATION_FAILED, message, details)
