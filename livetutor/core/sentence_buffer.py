"""Sentence-boundary streaming from LLM deltas to the synthesizer.

Text deltas accumulate until a terminator (. ! ?) followed by whitespace is
seen; each completed sentence goes to the synthesizer as soon as it exists,
so speech starts before the model finishes.
"""

from __future__ import annotations

import re
from typing import Any

from livetutor.core.state import CancelToken
from livetutor.logging_config import get_logger, preview
from livetutor.services.tts.protocol import SpeechSynthesizer

logger: Any = get_logger(__name__)

SENTENCE_END = re.compile(r"[.!?]\s")


class SentenceStreamer:
    """Buffers deltas for one generation and dispatches whole sentences.

    Every dispatch checks the cycle token first; once the token is
    cancelled nothing else is sent for this cycle.
    """

    def __init__(self, synthesizer: SpeechSynthesizer, token: CancelToken) -> None:
        self._synthesizer = synthesizer
        self._token = token
        self._buffer = ""
        self.dispatched = 0

    @property
    def pending(self) -> str:
        return self._buffer

    async def feed(self, delta: str) -> None:
        """Append a delta and dispatch every completed sentence."""
        if self._token.cancelled:
            return
        self._buffer += delta

        while True:
            match = SENTENCE_END.search(self._buffer)
            if match is None:
                break
            sentence = self._buffer[: match.end()]
            self._buffer = self._buffer[match.end() :]
            await self._dispatch(sentence)

    async def finish(self) -> None:
        """Flush the remainder and signal end of utterance.

        Only called when generation completed normally.
        """
        if self._token.cancelled:
            return

        remainder = self._buffer
        self._buffer = ""
        if remainder.strip():
            await self._dispatch(remainder)

        if self._token.cancelled or self.dispatched == 0:
            return
        await self._synthesizer.flush()
        if self._token.cancelled:
            return
        await self._synthesizer.close_stream()

    async def _dispatch(self, text: str) -> None:
        if self._token.cancelled:
            return
        logger.debug(f"TTS <- {preview(text)!r}")
        self.dispatched += 1
        await self._synthesizer.send_chunk(text)
