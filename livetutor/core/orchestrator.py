"""Conversation orchestrator for live voice/vision tutoring.

Coordinates one session end to end:
- Committed transcript → user turn → generation cycle → streamed speech
- Tool calls executed between generation rounds
- Barge-in: a partial transcript cancels the active cycle at once
- Idle-triggered proactive screen checks that never race with the user

All state changes happen on the event loop, inside listener callbacks or
the single cycle task. At most one cycle (main or proactive) runs at a time.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Protocol

from livetutor.config import Settings, get_settings
from livetutor.core.conversation import Turn, find_violation, prune_images, sanitize_turns
from livetutor.core.idle_monitor import IdleMonitor
from livetutor.core.profiles import TutorProfile, cached_tutor_profile
from livetutor.core.sentence_buffer import SentenceStreamer
from livetutor.core.session import NO_GUIDANCE_MARKER, SESSION_START_MARKER, TutorSession
from livetutor.core.state import CancelToken, SessionState, StateMachine
from livetutor.exceptions import LiveTutorError, TransientProviderError
from livetutor.logging_config import get_logger, preview
from livetutor.observability.metrics import (
    ACTIVE_SESSIONS,
    INTERRUPTIONS_TOTAL,
    STALE_AUDIO_DROPPED,
    record_proactive_check,
    record_session_metrics,
)
from livetutor.services.llm.exceptions import GenerationAbortedError
from livetutor.services.llm.protocol import OnTextDelta, ResponseGenerator
from livetutor.services.stt.protocol import TranscriptSource
from livetutor.services.tts.protocol import SpeechSynthesizer
from livetutor.tools.executor import ToolExecutor
from livetutor.tools.tutor_tools import build_tool_executor
from livetutor.tools.tutorials import TutorialGenerator

logger: Any = get_logger(__name__)


class Transport(Protocol):
    """Outbound channel to the client. All calls are non-blocking."""

    def emit(self, event: str, data: Any = None) -> None:
        """Queue a named event for the client."""
        ...

    def send_audio(self, audio: bytes) -> None:
        """Queue synthesized audio for the client."""
        ...

    def clear_audio(self) -> None:
        """Drop audio queued but not yet sent (for barge-in)."""
        ...


class CycleKind(Enum):
    MAIN = auto()  # User-driven response, streamed
    PROACTIVE = auto()  # Idle screen check, committed atomically


ProfileLoader = Callable[[str, str | None], TutorProfile]


@dataclass
class OrchestratorMetrics:
    """Counters collected during a session."""

    user_turns: int = 0
    cycles: int = 0
    interruptions: int = 0
    proactive_checks: int = 0
    proactive_committed: int = 0
    audio_chunks_sent: int = 0
    stale_chunks_dropped: int = 0
    cycle_errors: int = 0
    started_at: float = field(default_factory=time.monotonic)

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_turns": self.user_turns,
            "cycles": self.cycles,
            "interruptions": self.interruptions,
            "proactive_checks": self.proactive_checks,
            "proactive_committed": self.proactive_committed,
            "audio_chunks_sent": self.audio_chunks_sent,
            "stale_chunks_dropped": self.stale_chunks_dropped,
            "cycle_errors": self.cycle_errors,
            "duration_seconds": round(time.monotonic() - self.started_at, 1),
        }


class ConversationOrchestrator:
    """Owns session state, turn-taking, interruption and tool dispatch.

    Implements the transcript and synthesis listener callbacks; the
    transport layer feeds client events through the handle_* methods.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        generator: ResponseGenerator,
        transcripts: TranscriptSource,
        synthesizer: SpeechSynthesizer,
        tutorials: TutorialGenerator,
        settings: Settings | None = None,
        profile_loader: ProfileLoader = cached_tutor_profile,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._transport = transport
        self._generator = generator
        self._transcripts = transcripts
        self._synthesizer = synthesizer
        self._tutorials = tutorials
        self._settings = settings or get_settings()
        self._profile_loader = profile_loader
        self._clock = clock

        self._state = StateMachine()
        self._session: TutorSession | None = None
        self._executor: ToolExecutor | None = None
        self._idle_monitor: IdleMonitor | None = None
        self._metrics = OrchestratorMetrics()

        # Cycle bookkeeping
        self._token = CancelToken()
        self._cycle_task: asyncio.Task[None] | None = None
        self._cycle_kind: CycleKind | None = None
        self._queued = False
        # Set while text handed to the synthesizer may still produce audio
        self._speech_pending_since: float | None = None

        self._started = False
        self._stopped = False

        transcripts.set_listener(self)
        synthesizer.set_listener(self)

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state.state

    @property
    def session(self) -> TutorSession | None:
        return self._session

    @property
    def metrics(self) -> OrchestratorMetrics:
        return self._metrics

    @property
    def cycle_active(self) -> bool:
        return self._cycle_task is not None and not self._cycle_task.done()

    @property
    def cycle_kind(self) -> CycleKind | None:
        return self._cycle_kind if self.cycle_active else None

    @property
    def has_queued_message(self) -> bool:
        return self._queued

    @property
    def started(self) -> bool:
        return self._started

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self, tool_type: str | None = None) -> None:
        """Start the session, or resume it after a client reconnect.

        Raises:
            FatalConfigurationError: If the tutor profile can't be loaded.
            LiveTutorError: If the session was already stopped.
        """
        if self._stopped:
            raise LiveTutorError("Session already stopped")

        if self._started:
            logger.info("Restarting session (reconnect)")
            if not self._transcripts.connected:
                await self._transcripts.connect()
            self._emit_started()
            return

        profile = self._profile_loader(
            tool_type or self._settings.default_tool_type,
            self._settings.profiles_dir,
        )
        logger.info(f"Starting session: {profile.tool_type}")

        self._session = TutorSession(profile=profile)
        self._synthesizer.configure(profile.voice.to_settings())
        self._executor = build_tool_executor(self._session, self._transport, self._tutorials)

        await self._transcripts.connect()
        self._started = True
        ACTIVE_SESSIONS.inc()

        # Greeting
        self._session.history.append(Turn.user_text(SESSION_START_MARKER))
        self._start_cycle(CycleKind.MAIN)

        check = profile.recurring_check
        if check.enabled:
            self._idle_monitor = IdleMonitor(
                interval=check.interval_seconds,
                idle_threshold=check.idle_threshold_seconds,
                on_idle=self._on_idle,
                clock=self._clock,
            )
            # The greeting counts as activity; first check waits a full threshold
            self._idle_monitor.touch()
            self._idle_monitor.start()

        self._emit_started()

    async def stop(self, outcome: str = "completed") -> None:
        """Interrupt everything and release provider connections."""
        if self._stopped:
            return
        self._stopped = True
        logger.info("Stopping session")

        if self._idle_monitor is not None:
            await self._idle_monitor.stop()

        self._queued = False
        if self.cycle_active or self._state.is_(
            SessionState.AWAITING_RESPONSE, SessionState.SPEAKING
        ):
            self.interrupt("stop")

        task = self._cycle_task
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        await self._transcripts.disconnect()
        await self._synthesizer.close()
        await self._generator.close()
        close_tutorials = getattr(self._tutorials, "close", None)
        if close_tutorials is not None:
            await close_tutorials()

        if self._started and self._session is not None:
            ACTIVE_SESSIONS.dec()
            record_session_metrics(
                outcome=outcome,
                tool_type=self._session.tool_type,
                duration_seconds=self._session.duration_seconds,
            )
            logger.info(f"Session ended: {self._metrics.to_dict()}")

    def _emit_started(self) -> None:
        assert self._session is not None
        profile = self._session.profile
        self._transport.emit(
            "session_started",
            {"toolType": profile.tool_type, "displayName": profile.display_name},
        )
        logger.info("Session started")

    # -------------------------------------------------------------------------
    # Client input
    # -------------------------------------------------------------------------

    def handle_audio(self, audio: bytes) -> None:
        if self._stopped or not self._started:
            return
        self._transcripts.send_audio(audio)

    def handle_frame(self, frame: str) -> None:
        if self._session is None or self._stopped:
            return
        self._session.set_frame(frame)

    def handle_playback_started(self) -> None:
        logger.debug("Client: audio playback started")

    def handle_playback_ended(self) -> None:
        logger.debug("Client: audio playback ended")
        if not self._state.is_(SessionState.SPEAKING):
            return
        more_expected = self.cycle_active or self._speech_pending_since is not None
        self._state.transition_to(
            SessionState.AWAITING_RESPONSE if more_expected else SessionState.IDLE
        )

    # -------------------------------------------------------------------------
    # Transcript listener
    # -------------------------------------------------------------------------

    def on_partial_transcript(self, text: str) -> None:
        if not text.strip() or self._stopped:
            return
        if self._state.is_(SessionState.INTERRUPTED):
            return
        if self.cycle_active or self._state.is_(
            SessionState.AWAITING_RESPONSE, SessionState.SPEAKING
        ):
            logger.info(f"Interruption detected: {preview(text, 50)!r}")
            self.interrupt("barge_in")

    def on_committed_transcript(self, text: str) -> None:
        if not text.strip() or self._stopped or self._session is None:
            return

        logger.info(f"User: {preview(text)!r}")
        self._metrics.user_turns += 1
        if self._idle_monitor is not None:
            self._idle_monitor.touch()

        self._session.history.add_user_turn(self._session.build_user_turn(text))
        self._transport.emit("user_text", text)

        # User input always wins, including over stale client audio
        self.interrupt("user_input")

        if self.cycle_active:
            logger.info("Queuing user message (cycle still winding down)")
            self._queued = True
            return

        self._start_cycle(CycleKind.MAIN)

    # -------------------------------------------------------------------------
    # Synthesis listener
    # -------------------------------------------------------------------------

    def on_audio_chunk(self, audio: bytes) -> None:
        if self._token.cancelled or self._stopped:
            self._metrics.stale_chunks_dropped += 1
            STALE_AUDIO_DROPPED.inc()
            return

        self._transport.send_audio(audio)
        self._metrics.audio_chunks_sent += 1
        if self._state.is_(SessionState.AWAITING_RESPONSE, SessionState.IDLE):
            self._state.transition_to(SessionState.SPEAKING)

    def on_synthesis_done(self) -> None:
        logger.debug("TTS generation complete")
        self._speech_pending_since = None
        if self._state.is_(SessionState.AWAITING_RESPONSE) and not self.cycle_active:
            self._state.transition_to(SessionState.IDLE)

    # -------------------------------------------------------------------------
    # Interruption
    # -------------------------------------------------------------------------

    def interrupt(self, reason: str = "barge_in") -> bool:
        """Cancel the current cycle and silence all output.

        Synchronous: token, generator, synthesizer and client audio queue
        are all handled before returning.

        Returns:
            True if a cycle or speech was actually interrupted.
        """
        busy = self.cycle_active or self._state.is_(
            SessionState.AWAITING_RESPONSE, SessionState.SPEAKING
        )

        self._token.cancel(reason)
        self._generator.abort()
        self._synthesizer.interrupt()
        self._transport.clear_audio()
        self._transport.emit("interrupt")
        self._speech_pending_since = None

        if busy:
            logger.info(f"Interrupting ({reason})")
            self._metrics.interruptions += 1
            INTERRUPTIONS_TOTAL.labels(reason=reason).inc()

        if self._state.is_(SessionState.AWAITING_RESPONSE, SessionState.SPEAKING):
            self._state.transition_to(SessionState.INTERRUPTED)
        if self._state.is_(SessionState.INTERRUPTED) and not self.cycle_active:
            # Nothing left to unwind
            self._state.transition_to(SessionState.IDLE)
        return busy

    # -------------------------------------------------------------------------
    # Cycles
    # -------------------------------------------------------------------------

    def _start_cycle(self, kind: CycleKind) -> None:
        if self._stopped:
            return
        self._token = CancelToken()
        self._cycle_kind = kind
        self._metrics.cycles += 1
        self._state.transition_to(SessionState.AWAITING_RESPONSE)
        self._cycle_task = asyncio.create_task(
            self._run_cycle(kind, self._token),
            name=f"cycle-{kind.name.lower()}",
        )

    async def _run_cycle(self, kind: CycleKind, token: CancelToken) -> None:
        try:
            if kind is CycleKind.MAIN:
                await self._main_cycle(token)
            else:
                await self._proactive_cycle(token)
        except GenerationAbortedError:
            logger.info("Stream aborted due to interruption")
        except TransientProviderError as e:
            if token.cancelled:
                logger.info(f"{kind.name.lower()} cycle ended by interruption: {e}")
            else:
                self._metrics.cycle_errors += 1
                logger.error(f"{kind.name.lower()} cycle failed: {e}")
                if kind is CycleKind.PROACTIVE:
                    record_proactive_check("error")
        except Exception as e:
            self._metrics.cycle_errors += 1
            logger.exception(f"{kind.name.lower()} cycle crashed: {e}")
        finally:
            self._finish_cycle()

    def _finish_cycle(self) -> None:
        self._cycle_task = None
        self._cycle_kind = None

        if self._state.is_(SessionState.INTERRUPTED):
            self._state.transition_to(SessionState.IDLE)
        elif self._state.is_(SessionState.AWAITING_RESPONSE) and self._speech_pending_since is None:
            self._state.transition_to(SessionState.IDLE)

        if self._queued and not self._stopped:
            self._queued = False
            logger.info("Processing queued user message")
            self._start_cycle(CycleKind.MAIN)

    async def _main_cycle(self, token: CancelToken) -> None:
        """Stream responses and run tool rounds until the model stops calling tools."""
        assert self._session is not None and self._executor is not None
        history = self._session.history
        max_rounds = self._settings.main_max_tool_rounds
        rounds = 0
        continuation = False

        while True:
            streamer = SentenceStreamer(self._synthesizer, token)
            response = await self._generate(token, (), self._delta_handler(streamer, token))
            if response is None or token.cancelled:
                logger.info("Interrupted, discarding stale response")
                return

            await streamer.finish()
            if token.cancelled:
                logger.info("Interrupted while flushing speech, discarding response")
                return
            if streamer.dispatched:
                self._speech_pending_since = self._clock()

            text = response.text
            if text:
                self._transport.emit("agent_text_continue" if continuation else "agent_text", text)
            history.append(response)

            tool_uses = response.tool_uses
            if not tool_uses:
                return

            results = []
            for call in tool_uses:
                if token.cancelled:
                    logger.info("Interrupted during tool processing, skipping remaining tools")
                    return
                results.append(await self._executor.execute(call))
            if token.cancelled:
                logger.info("Interrupted after tool processing, dropping results")
                return

            history.append(Turn.tool_results(results))
            rounds += 1
            if max_rounds is not None and rounds > max_rounds:
                logger.warning(f"Tool round limit ({max_rounds}) reached, ending cycle")
                return
            continuation = True

    async def _proactive_cycle(self, token: CancelToken) -> None:
        """Ask the model about the current screen; commit all turns or none."""
        assert self._session is not None and self._executor is not None
        session = self._session
        self._metrics.proactive_checks += 1
        max_rounds = self._settings.proactive_max_tool_rounds

        provisional: list[Turn] = []
        if session.history.needs_placeholder():
            provisional.append(Turn.placeholder())
        provisional.append(session.build_user_turn(session.build_check_prompt()))

        first_text = True
        spoke = False
        response = await self._generate(token, provisional)

        for round_no in range(max_rounds + 1):
            if response is None or token.cancelled:
                self._discard_check("cancelled while generating")
                return

            text = response.text
            if NO_GUIDANCE_MARKER in text:
                logger.debug("Recurring check: no guidance needed")
                record_proactive_check("no_guidance")
                return

            provisional.append(response)

            if text:
                logger.info(f"Recurring guidance: {preview(text)!r}")
                self._transport.emit("agent_text" if first_text else "agent_text_continue", text)
                first_text = False
                await self._synthesizer.send_text(text)
                spoke = True
                self._speech_pending_since = self._clock()
                if token.cancelled:
                    self._discard_check("cancelled after speech")
                    return

            tool_uses = response.tool_uses
            if not tool_uses:
                break

            results = []
            for call in tool_uses:
                if token.cancelled:
                    self._discard_check("cancelled during tool processing")
                    return
                results.append(await self._executor.execute(call))
            provisional.append(Turn.tool_results(results))

            if round_no == max_rounds:
                break
            if token.cancelled:
                self._discard_check("cancelled before follow-up")
                return

            response = await self._generate(token, provisional)

        if spoke and not token.cancelled:
            await self._synthesizer.close_stream()

        if token.cancelled:
            self._discard_check("cancelled before commit")
            return

        session.history.extend(provisional)
        self._metrics.proactive_committed += 1
        record_proactive_check("committed")

    def _discard_check(self, why: str) -> None:
        logger.info(f"Recurring check {why}, discarding")
        record_proactive_check("cancelled")

    def _delta_handler(self, streamer: SentenceStreamer, token: CancelToken) -> OnTextDelta:
        async def on_delta(delta: str) -> None:
            if token.cancelled:
                return
            self._transport.emit("agent_text_delta", delta)
            await streamer.feed(delta)

        return on_delta

    async def _generate(
        self,
        token: CancelToken,
        provisional: Sequence[Turn],
        on_text_delta: OnTextDelta | None = None,
    ) -> Turn | None:
        """Normalize history and run one generation.

        Returns None when the cycle was interrupted before or during the call.
        """
        assert self._session is not None
        outbound = self._session.history.turns + list(provisional)

        sanitize_turns(outbound)
        prune_images(outbound, self._settings.max_context_images)
        violation = find_violation(outbound)
        if violation is not None:
            logger.warning(f"History alternation problem at turn {violation.index}: {violation}")

        if token.cancelled:
            return None

        try:
            return await self._generator.generate(
                self._session.build_system_prompt(),
                outbound,
                self._session.profile.tools,
                (),
                on_text_delta,
            )
        except GenerationAbortedError:
            if token.cancelled:
                return None
            raise

    # -------------------------------------------------------------------------
    # Idle checks
    # -------------------------------------------------------------------------

    def _on_idle(self) -> None:
        """Start a proactive check if nothing else is going on."""
        if self._stopped or self._session is None:
            return
        if self.cycle_active or self._state.is_(SessionState.SPEAKING):
            return
        if self._session.latest_frame is None:
            return

        if self._state.is_(SessionState.AWAITING_RESPONSE):
            # Speech was requested but no audio or completion has arrived
            since = self._speech_pending_since
            threshold = self._idle_monitor.idle_threshold if self._idle_monitor else 0.0
            if since is not None and self._clock() - since < threshold:
                return
            logger.warning("Stale pending speech, interrupting for recurring check")
            self.interrupt("idle_check")

        self._start_cycle(CycleKind.PROACTIVE)
