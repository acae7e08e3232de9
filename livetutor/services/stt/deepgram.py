"""Deepgram live transcription source with automatic reconnect."""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, Any

from livetutor.config import Settings, get_settings
from livetutor.logging_config import get_logger, preview
from livetutor.services.reconnect import backoff_delay
from livetutor.services.stt.exceptions import STTConnectionError
from livetutor.services.stt.protocol import TranscriptChunk, TranscriptListener

if TYPE_CHECKING:
    from deepgram import DeepgramClient
    from deepgram.clients.live import LiveClient

logger: Any = get_logger(__name__)

# Audio buffered while the socket is (re)connecting, in chunks
MAX_PENDING_AUDIO = 200

# Deepgram closes idle sockets after ~10s without audio
KEEPALIVE_INTERVAL = 5.0


class DeepgramTranscriptSource:
    """Streams microphone audio to Deepgram and reports transcripts.

    Final segments accumulate until Deepgram marks the utterance
    speech_final (or sends UtteranceEnd); the joined text is then committed.
    Interim results are reported as partials.

    Deepgram's live client runs its callbacks on a worker thread; every
    result is handed back to the event loop with call_soon_threadsafe so
    listener callbacks run in arrival order on the loop.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        model: str | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._model = model or self._settings.deepgram_model
        self._client: DeepgramClient | None = None
        self._listener: TranscriptListener | None = None
        self._audio: asyncio.Queue[bytes] = asyncio.Queue(maxsize=MAX_PENDING_AUDIO)
        self._task: asyncio.Task[None] | None = None
        self._live: LiveClient | None = None
        self._connected = False
        self._closing = False
        self._segments: list[str] = []
        self.dropped_chunks = 0

    @property
    def client(self) -> DeepgramClient:
        """Lazy initialization of Deepgram client."""
        if self._client is None:
            from deepgram import DeepgramClient

            self._client = DeepgramClient(
                api_key=self._settings.deepgram_api_key.get_secret_value(),
            )
        return self._client

    @property
    def connected(self) -> bool:
        return self._connected

    def set_listener(self, listener: TranscriptListener) -> None:
        self._listener = listener

    async def connect(self) -> None:
        """Start the connection loop. Returns without waiting for the socket."""
        if self._task is not None and not self._task.done():
            return
        self._closing = False
        self._task = asyncio.create_task(self._run())

    def send_audio(self, audio: bytes) -> None:
        if self._closing:
            return
        if self._audio.full():
            # Oldest audio is least useful once the socket is back
            with contextlib.suppress(asyncio.QueueEmpty):
                self._audio.get_nowait()
            self.dropped_chunks += 1
        self._audio.put_nowait(audio)

    async def disconnect(self) -> None:
        self._closing = True
        self._connected = False
        if self._task is not None:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        await self._finish_live()
        self._segments.clear()
        logger.debug("Deepgram source disconnected")

    # -------------------------------------------------------------------------
    # Connection loop
    # -------------------------------------------------------------------------

    async def _run(self) -> None:
        attempt = 0
        while not self._closing:
            closed = asyncio.Event()
            try:
                await self._open(closed)
            except STTConnectionError as e:
                attempt += 1
                delay = backoff_delay(
                    attempt,
                    self._settings.reconnect_base_delay,
                    self._settings.reconnect_max_delay,
                )
                logger.warning(f"Deepgram connect failed ({e}), retry {attempt} in {delay:.1f}s")
                await asyncio.sleep(delay)
                continue

            attempt = 0
            self._connected = True
            logger.info("Deepgram live transcription connected")

            pump = asyncio.create_task(self._pump())
            try:
                await closed.wait()
            finally:
                pump.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pump
                self._connected = False

            await self._finish_live()
            if self._closing:
                break

            # Partial segments from the dead session can't be completed
            self._segments.clear()
            delay = self._settings.reconnect_base_delay
            logger.warning(f"Deepgram session closed, reconnecting in {delay:.1f}s")
            await asyncio.sleep(delay)

    async def _open(self, closed: asyncio.Event) -> None:
        from deepgram import LiveOptions, LiveTranscriptionEvents

        loop = asyncio.get_running_loop()

        def on_message(self_live: Any, result: Any, **kwargs: Any) -> None:
            try:
                alternatives = result.channel.alternatives
                if not alternatives:
                    return
                alternative = alternatives[0]
                chunk = TranscriptChunk(
                    text=alternative.transcript or "",
                    is_final=bool(result.is_final),
                    speech_final=bool(getattr(result, "speech_final", False)),
                    confidence=getattr(alternative, "confidence", 0.0) or 0.0,
                )
            except AttributeError as e:
                logger.error(f"Unexpected Deepgram result shape: {e}")
                return
            loop.call_soon_threadsafe(self._handle_chunk, chunk)

        def on_utterance_end(self_live: Any, utterance_end: Any, **kwargs: Any) -> None:
            loop.call_soon_threadsafe(self._commit)

        def on_error(self_live: Any, error: Any, **kwargs: Any) -> None:
            logger.error(f"Deepgram WebSocket error: {error}")
            loop.call_soon_threadsafe(closed.set)

        def on_close(self_live: Any, close: Any, **kwargs: Any) -> None:
            logger.debug("Deepgram WebSocket closed")
            loop.call_soon_threadsafe(closed.set)

        options = LiveOptions(
            model=self._model,
            language=self._settings.stt_language,
            smart_format=True,
            punctuate=True,
            interim_results=True,
            endpointing=self._settings.stt_endpointing_ms,
            utterance_end_ms="1000",
            vad_events=True,
            encoding="linear16",
            sample_rate=self._settings.stt_sample_rate,
            channels=1,
        )

        live: LiveClient = self.client.listen.live.v("1")
        live.on(LiveTranscriptionEvents.Transcript, on_message)
        live.on(LiveTranscriptionEvents.UtteranceEnd, on_utterance_end)
        live.on(LiveTranscriptionEvents.Error, on_error)
        live.on(LiveTranscriptionEvents.Close, on_close)

        try:
            started = await asyncio.to_thread(live.start, options)
        except Exception as e:
            raise STTConnectionError(f"Failed to connect to Deepgram: {e}") from e
        if not started:
            raise STTConnectionError("Failed to connect to Deepgram")
        self._live = live

    async def _pump(self) -> None:
        """Forward queued audio; send keep-alives while the mic is quiet."""
        live = self._live
        if live is None:
            return
        while True:
            try:
                audio = await asyncio.wait_for(self._audio.get(), timeout=KEEPALIVE_INTERVAL)
            except TimeoutError:
                await asyncio.to_thread(live.keep_alive)
                continue
            await asyncio.to_thread(live.send, audio)

    async def _finish_live(self) -> None:
        live, self._live = self._live, None
        if live is None:
            return
        try:
            await asyncio.to_thread(live.finish)
        except Exception as e:
            logger.debug(f"Deepgram finish failed: {e}")

    # -------------------------------------------------------------------------
    # Result handling (event loop)
    # -------------------------------------------------------------------------

    def _handle_chunk(self, chunk: TranscriptChunk) -> None:
        text = chunk.text.strip()

        if not chunk.is_final:
            if text and self._listener is not None:
                self._listener.on_partial_transcript(" ".join([*self._segments, text]))
            return

        if text:
            self._segments.append(text)
        if chunk.speech_final:
            self._commit()

    def _commit(self) -> None:
        if not self._segments:
            return
        text = " ".join(self._segments)
        self._segments.clear()
        logger.debug(f"Committed transcript: {preview(text)!r}")
        if self._listener is not None:
            self._listener.on_committed_transcript(text)
