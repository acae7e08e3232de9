"""ElevenLabs stream-input synthesizer over a WebSocket (aiohttp)."""

from __future__ import annotations

import asyncio
import base64
import contextlib
import json
import time
from typing import Any

import aiohttp

from livetutor.config import Settings, get_settings
from livetutor.logging_config import get_logger
from livetutor.observability.metrics import TTS_FIRST_CHUNK
from livetutor.services.reconnect import backoff_delay
from livetutor.services.tts.exceptions import TTSConnectionError
from livetutor.services.tts.protocol import SynthesisListener, VoiceSettings

logger: Any = get_logger(__name__)

ELEVENLABS_STREAM_URL = "wss://api.elevenlabs.io/v1/text-to-speech/{voice_id}/stream-input"

# Characters buffered by ElevenLabs before each generation, per chunk index
CHUNK_LENGTH_SCHEDULE = [50, 120, 160, 250]


class ElevenLabsStreamingSynthesizer:
    """Streams text into ElevenLabs and forwards PCM audio to a listener.

    One socket per utterance: the first send opens it, close_stream()
    sends end-of-input and the server closes after the final audio.
    interrupt() drops the socket at once; audio still in flight from it is
    never delivered.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._session = session
        self._owns_session = session is None
        self._voice = VoiceSettings(voice_id=self._settings.elevenlabs_voice_id)
        self._listener: SynthesisListener | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task[None] | None = None
        self._connect_lock = asyncio.Lock()
        # Bumped on every interrupt; readers of older sockets go quiet
        self._generation = 0
        self._first_send_at: float | None = None

    @property
    def active(self) -> bool:
        return self._ws is not None and not self._ws.closed

    @property
    def url(self) -> str:
        voice_id = self._voice.voice_id or self._settings.elevenlabs_voice_id
        return (
            ELEVENLABS_STREAM_URL.format(voice_id=voice_id)
            + f"?model_id={self._settings.elevenlabs_model_id}"
            + f"&output_format={self._settings.elevenlabs_output_format}"
        )

    def set_listener(self, listener: SynthesisListener) -> None:
        self._listener = listener

    def configure(self, voice: VoiceSettings) -> None:
        if voice.voice_id is None:
            voice = VoiceSettings(
                voice_id=self._settings.elevenlabs_voice_id,
                stability=voice.stability,
                similarity_boost=voice.similarity_boost,
            )
        self._voice = voice
        logger.debug(f"TTS voice configured: {voice.voice_id}")

    async def send_text(self, text: str) -> None:
        await self._send({"text": text + " ", "flush": True})

    async def send_chunk(self, text: str) -> None:
        await self._send({"text": text})

    async def flush(self) -> None:
        if self.active:
            await self._send({"text": " ", "flush": True}, connect=False)

    async def close_stream(self) -> None:
        """Send end-of-input. The reader delivers the remaining audio."""
        if self.active:
            await self._send({"text": ""}, connect=False)

    def interrupt(self) -> None:
        self._generation += 1
        reader, self._reader = self._reader, None
        ws, self._ws = self._ws, None
        self._first_send_at = None
        if reader is not None and not reader.done():
            reader.cancel()
        if ws is not None and not ws.closed:
            asyncio.get_running_loop().create_task(ws.close())
        if reader is not None or ws is not None:
            logger.debug("TTS stream interrupted")

    async def close(self) -> None:
        self.interrupt()
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    async def _send(self, message: dict[str, Any], *, connect: bool = True) -> None:
        generation = self._generation
        ws = self._ws if self.active else None
        if ws is None:
            if not connect:
                return
            try:
                ws = await self._connect()
            except TTSConnectionError as e:
                logger.error(f"TTS unavailable, dropping text: {e}")
                return
            if generation != self._generation:
                # Interrupted while connecting
                self.interrupt()
                return

        try:
            await ws.send_str(json.dumps(message))
        except (aiohttp.ClientError, ConnectionResetError, RuntimeError) as e:
            logger.warning(f"TTS send failed, dropping socket: {e}")
            if self._ws is ws:
                self._ws = None

    async def _connect(self) -> aiohttp.ClientWebSocketResponse:
        async with self._connect_lock:
            if self.active:
                assert self._ws is not None
                return self._ws

            if self._session is None:
                self._session = aiohttp.ClientSession()

            headers = {"xi-api-key": self._settings.elevenlabs_api_key.get_secret_value()}
            attempts = self._settings.tts_connect_attempts
            last_error: Exception | None = None

            for attempt in range(1, attempts + 1):
                try:
                    ws = await self._session.ws_connect(self.url, headers=headers, heartbeat=20.0)
                    await ws.send_str(json.dumps({
                        "text": " ",
                        "voice_settings": {
                            "stability": self._voice.stability,
                            "similarity_boost": self._voice.similarity_boost,
                        },
                        "generation_config": {"chunk_length_schedule": CHUNK_LENGTH_SCHEDULE},
                    }))
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    last_error = e
                    if attempt < attempts:
                        delay = backoff_delay(
                            attempt,
                            self._settings.reconnect_base_delay,
                            self._settings.reconnect_max_delay,
                        )
                        logger.warning(
                            f"ElevenLabs connect failed ({e}), attempt {attempt}/{attempts}, "
                            f"retrying in {delay:.1f}s"
                        )
                        await asyncio.sleep(delay)
                    continue

                self._ws = ws
                self._first_send_at = time.perf_counter()
                self._reader = asyncio.create_task(self._read(ws, self._generation))
                logger.debug("ElevenLabs stream-input connected")
                return ws

            raise TTSConnectionError(f"ElevenLabs connection failed: {last_error}")

    async def _read(self, ws: aiohttp.ClientWebSocketResponse, generation: int) -> None:
        try:
            async for msg in ws:
                if msg.type != aiohttp.WSMsgType.TEXT:
                    if msg.type == aiohttp.WSMsgType.ERROR:
                        logger.warning(f"ElevenLabs socket error: {ws.exception()}")
                    break

                try:
                    data = json.loads(msg.data)
                except json.JSONDecodeError:
                    logger.warning("ElevenLabs sent a non-JSON frame")
                    continue

                if generation != self._generation:
                    return

                if data.get("audio"):
                    self._deliver(base64.b64decode(data["audio"]))
                if data.get("isFinal"):
                    if self._listener is not None:
                        self._listener.on_synthesis_done()
                    break
                if data.get("error"):
                    logger.error(f"ElevenLabs error: {data.get('message') or data['error']}")
        except aiohttp.ClientError as e:
            logger.warning(f"ElevenLabs read failed: {e}")
        finally:
            if self._ws is ws:
                self._ws = None
                self._reader = None
                self._first_send_at = None
            if not ws.closed:
                with contextlib.suppress(aiohttp.ClientError):
                    await ws.close()

    def _deliver(self, audio: bytes) -> None:
        if self._first_send_at is not None:
            TTS_FIRST_CHUNK.observe(time.perf_counter() - self._first_send_at)
            self._first_send_at = None
        if self._listener is not None:
            self._listener.on_audio_chunk(audio)
