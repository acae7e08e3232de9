"""STT (Speech-to-Text) streaming protocol and data types."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Protocol


@dataclass(frozen=True, slots=True)
class TranscriptChunk:
    """One transcription result from the provider.

    Interim results may change; final results are stable segments. An
    utterance is committed once the provider reports speech_final.
    """

    text: str
    is_final: bool
    speech_final: bool = False
    confidence: float = 0.0
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


class TranscriptListener(Protocol):
    """Receives transcript events on the event loop, in arrival order."""

    def on_partial_transcript(self, text: str) -> None:
        ...

    def on_committed_transcript(self, text: str) -> None:
        ...


class TranscriptSource(Protocol):
    """Protocol for live microphone transcription.

    Implementations reconnect by themselves when the provider ends the
    session; audio sent while reconnecting is buffered.
    """

    def set_listener(self, listener: TranscriptListener) -> None:
        ...

    async def connect(self) -> None:
        ...

    def send_audio(self, audio: bytes) -> None:
        ...

    async def disconnect(self) -> None:
        ...

    @property
    def connected(self) -> bool:
        ...
