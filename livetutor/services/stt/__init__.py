"""Speech-to-Text services (Deepgram)."""

from livetutor.services.stt.deepgram import DeepgramTranscriptSource
from livetutor.services.stt.exceptions import STTConnectionError, STTServiceError
from livetutor.services.stt.protocol import (
    TranscriptChunk,
    TranscriptListener,
    TranscriptSource,
)

__all__ = [
    "DeepgramTranscriptSource",
    "TranscriptChunk",
    "TranscriptListener",
    "TranscriptSource",
    "STTServiceError",
    "STTConnectionError",
]
