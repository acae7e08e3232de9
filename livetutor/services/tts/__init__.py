"""Text-to-Speech services (ElevenLabs stream-input)."""

from livetutor.services.tts.elevenlabs import ElevenLabsStreamingSynthesizer
from livetutor.services.tts.exceptions import (
    TTSConnectionError,
    TTSProtocolError,
    TTSServiceError,
)
from livetutor.services.tts.protocol import SpeechSynthesizer, SynthesisListener, VoiceSettings

__all__ = [
    "ElevenLabsStreamingSynthesizer",
    "SpeechSynthesizer",
    "SynthesisListener",
    "VoiceSettings",
    "TTSServiceError",
    "TTSConnectionError",
    "TTSProtocolError",
]
