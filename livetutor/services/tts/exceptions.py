"""Custom exceptions for TTS services."""

from livetutor.exceptions import TransientProviderError


class TTSServiceError(TransientProviderError):
    """Base exception for TTS service errors."""

    pass


class TTSConnectionError(TTSServiceError):
    """Raised when the stream-input socket cannot be opened."""

    pass


class TTSProtocolError(TTSServiceError):
    """Raised when the provider sends a message that cannot be decoded."""

    pass
