"""Custom exceptions for STT services."""

from livetutor.exceptions import TransientProviderError


class STTServiceError(TransientProviderError):
    """Base exception for STT service errors."""

    pass


class STTConnectionError(STTServiceError):
    """Raised when the live transcription socket cannot be opened."""

    pass
