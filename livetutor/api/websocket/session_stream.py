"""WebSocket handler for live tutoring sessions.

Protocol: every frame is JSON `{"event": ..., "data": ...}`.
- Inbound: start_session, audio_in, frame_in, stop_session,
  playback_started, playback_ended
- Outbound: session events, transcripts, agent text/audio, tool events
"""

from __future__ import annotations

import asyncio
import base64
import binascii
import contextlib
import json
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from livetutor.config import Settings, get_settings
from livetutor.core.orchestrator import ConversationOrchestrator
from livetutor.exceptions import FatalConfigurationError, LiveTutorError
from livetutor.logging_config import get_logger
from livetutor.services.llm.groq import GroqResponseGenerator
from livetutor.services.stt.deepgram import DeepgramTranscriptSource
from livetutor.services.tts.elevenlabs import ElevenLabsStreamingSynthesizer
from livetutor.tools.tutorials import GroqTutorialGenerator

logger: Any = get_logger(__name__)

# Outbound messages buffered per socket before audio starts being dropped
MAX_OUTBOUND_QUEUE = 1000


class SessionCapacityError(LiveTutorError):
    """Raised when the process is at maximum session capacity."""

    pass


class WebSocketTransport:
    """Non-blocking outbound channel to one client.

    Events and audio share one FIFO so the client sees them in production
    order; a writer task drains it onto the socket.
    """

    def __init__(self, websocket: WebSocket, max_queue: int = MAX_OUTBOUND_QUEUE) -> None:
        self._websocket = websocket
        self._queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._max_queue = max_queue
        self._writer: asyncio.Task[None] | None = None
        self._closed = False
        self.dropped_audio = 0

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._run())

    def emit(self, event: str, data: Any = None) -> None:
        if self._closed:
            return
        self._queue.put_nowait({"event": event, "data": data})

    def send_audio(self, audio: bytes) -> None:
        if self._closed:
            return
        if self._queue.qsize() >= self._max_queue:
            self.dropped_audio += 1
            logger.warning("Outbound queue full, dropping audio chunk")
            return
        self._queue.put_nowait({
            "event": "agent_audio",
            "data": base64.b64encode(audio).decode("ascii"),
        })

    def clear_audio(self) -> None:
        """Drop audio not yet written; other events keep their order."""
        kept: list[dict[str, Any] | None] = []
        purged = 0
        while True:
            try:
                message = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if message is not None and message["event"] == "agent_audio":
                purged += 1
            else:
                kept.append(message)
        for message in kept:
            self._queue.put_nowait(message)
        if purged:
            logger.debug(f"Purged {purged} queued audio chunks")

    async def close(self, timeout: float = 2.0) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)
        if self._writer is None:
            return
        try:
            await asyncio.wait_for(self._writer, timeout=timeout)
        except TimeoutError:
            self._writer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._writer

    async def _run(self) -> None:
        while True:
            message = await self._queue.get()
            if message is None:
                return
            try:
                await self._websocket.send_json(message)
            except (WebSocketDisconnect, RuntimeError) as e:
                logger.debug(f"Client socket closed while sending: {e}")
                return


def build_orchestrator(
    transport: WebSocketTransport,
    settings: Settings,
) -> ConversationOrchestrator:
    """Wire the production providers into a new orchestrator."""
    return ConversationOrchestrator(
        transport,
        generator=GroqResponseGenerator(settings=settings),
        transcripts=DeepgramTranscriptSource(settings=settings),
        synthesizer=ElevenLabsStreamingSynthesizer(settings=settings),
        tutorials=GroqTutorialGenerator(settings=settings),
        settings=settings,
    )


@dataclass
class SessionEntry:
    """Entry in the session registry."""

    orchestrator: ConversationOrchestrator
    transport: WebSocketTransport
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class SessionRegistry:
    """Registry of active tutoring sessions with a capacity limit."""

    def __init__(self) -> None:
        self._sessions: dict[str, SessionEntry] = {}
        self._lock = asyncio.Lock()

    async def create(
        self,
        session_id: str,
        transport: WebSocketTransport,
        *,
        settings: Settings | None = None,
    ) -> ConversationOrchestrator:
        """Create and register an orchestrator for a socket.

        Raises:
            SessionCapacityError: If system is at maximum capacity.
        """
        settings = settings or get_settings()
        async with self._lock:
            if session_id in self._sessions:
                return self._sessions[session_id].orchestrator

            limit = settings.max_concurrent_sessions
            if len(self._sessions) >= limit:
                logger.warning(
                    f"Max concurrent sessions reached ({limit}), rejecting {session_id}"
                )
                raise SessionCapacityError(f"System at capacity ({limit} concurrent sessions)")

            orchestrator = build_orchestrator(transport, settings)
            self._sessions[session_id] = SessionEntry(
                orchestrator=orchestrator,
                transport=transport,
            )
            logger.info(
                f"Created session {session_id} (active: {len(self._sessions)}/{limit})"
            )
            return orchestrator

    async def get(self, session_id: str) -> ConversationOrchestrator | None:
        async with self._lock:
            entry = self._sessions.get(session_id)
            return entry.orchestrator if entry else None

    async def remove(self, session_id: str) -> SessionEntry | None:
        async with self._lock:
            return self._sessions.pop(session_id, None)

    async def close_all(self) -> None:
        """Stop all sessions (for shutdown)."""
        async with self._lock:
            for session_id, entry in list(self._sessions.items()):
                try:
                    await entry.orchestrator.stop(outcome="shutdown")
                except Exception as e:
                    logger.error(f"Error closing session {session_id}: {e}")
            self._sessions.clear()

    @property
    def active_count(self) -> int:
        return len(self._sessions)


# Global registry instance
session_registry = SessionRegistry()


def _decode_frame(data: Any) -> str | None:
    """Accept raw base64 or a data: URL; return bare base64."""
    if not isinstance(data, str) or not data:
        return None
    if data.startswith("data:"):
        _, _, data = data.partition(",")
    return data or None


async def session_stream_endpoint(websocket: WebSocket) -> None:
    """Handle one client connection for the lifetime of the socket."""
    await websocket.accept()
    session_id = uuid.uuid4().hex[:12]
    logger.info(f"WebSocket connected: {session_id}")

    settings = get_settings()
    transport = WebSocketTransport(websocket)
    transport.start()
    orchestrator: ConversationOrchestrator | None = None
    outcome = "disconnected"

    try:
        while True:
            try:
                message = json.loads(await websocket.receive_text())
            except json.JSONDecodeError:
                logger.warning(f"Invalid JSON received on {session_id}")
                continue
            if not isinstance(message, dict):
                continue

            event = message.get("event", "")
            data = message.get("data")

            if event == "start_session":
                if orchestrator is None:
                    try:
                        orchestrator = await session_registry.create(
                            session_id, transport, settings=settings
                        )
                    except SessionCapacityError as e:
                        transport.emit("session_error", {"error": str(e)})
                        continue

                tool_type = data.get("toolType") if isinstance(data, dict) else None
                try:
                    await orchestrator.start(tool_type)
                except FatalConfigurationError as e:
                    logger.error(f"Session {session_id} failed to start: {e}")
                    transport.emit("session_error", {"error": str(e)})
                    await _cleanup_session(session_id, orchestrator, "error")
                    orchestrator = None

            elif event == "audio_in":
                if orchestrator is None or not isinstance(data, str):
                    continue
                try:
                    audio = base64.b64decode(data)
                except (binascii.Error, ValueError):
                    logger.warning("Failed to decode audio payload")
                    continue
                orchestrator.handle_audio(audio)

            elif event == "frame_in":
                frame = _decode_frame(data)
                if orchestrator is not None and frame is not None:
                    orchestrator.handle_frame(frame)

            elif event == "playback_started":
                if orchestrator is not None:
                    orchestrator.handle_playback_started()

            elif event == "playback_ended":
                if orchestrator is not None:
                    orchestrator.handle_playback_ended()

            elif event == "stop_session":
                if orchestrator is not None:
                    await _cleanup_session(session_id, orchestrator, "completed")
                    orchestrator = None

            else:
                logger.debug(f"Ignoring unknown event {event!r}")

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected: {session_id}")

    except Exception as e:
        logger.error(f"WebSocket error for {session_id}: {e}")
        outcome = "error"

    finally:
        if orchestrator is not None:
            await _cleanup_session(session_id, orchestrator, outcome)
        await transport.close()


async def _cleanup_session(
    session_id: str,
    orchestrator: ConversationOrchestrator,
    outcome: str,
) -> None:
    logger.info(f"Cleaning up session {session_id} ({outcome})")
    try:
        await orchestrator.stop(outcome=outcome)
    except Exception as e:
        logger.error(f"Error stopping session {session_id}: {e}")
    await session_registry.remove(session_id)
