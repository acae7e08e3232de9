"""TTS (Text-to-Speech) streaming protocol and data types."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True, slots=True)
class VoiceSettings:
    """Voice selection for a session, taken from the tutor profile."""

    voice_id: str | None = None  # None keeps the configured default voice
    stability: float = 0.5
    similarity_boost: float = 0.75


class SynthesisListener(Protocol):
    """Receives synthesized audio in production order."""

    def on_audio_chunk(self, audio: bytes) -> None:
        ...

    def on_synthesis_done(self) -> None:
        ...


class SpeechSynthesizer(Protocol):
    """Protocol for streaming text-in/audio-out synthesizers.

    One connection is open at a time. It is created lazily by the first send
    of a cycle and torn down by close_stream() completion or interrupt().
    """

    def set_listener(self, listener: SynthesisListener) -> None:
        ...

    def configure(self, voice: VoiceSettings) -> None:
        """Apply voice settings to subsequent connections."""
        ...

    async def send_text(self, text: str) -> None:
        """Send a complete utterance and flush it immediately."""
        ...

    async def send_chunk(self, text: str) -> None:
        """Send a piece of a streamed utterance."""
        ...

    async def flush(self) -> None:
        """Force generation of any buffered text."""
        ...

    async def close_stream(self) -> None:
        """Signal end of utterance; the provider finishes and closes."""
        ...

    def interrupt(self) -> None:
        """Drop the active connection immediately. No further audio is delivered."""
        ...

    async def close(self) -> None:
        ...
