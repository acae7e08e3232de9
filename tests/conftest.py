"""Shared pytest fixtures for livetutor tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Generator, Sequence
from dataclasses import dataclass, field
from typing import Any

import pytest
import pytest_asyncio

from livetutor.config import Settings
from livetutor.core.conversation import Role, TextBlock, ToolUseBlock, Turn
from livetutor.core.profiles import RecurringCheckConfig, TutorProfile, load_tutor_profile
from livetutor.services.llm.exceptions import GenerationAbortedError
from livetutor.tools.tutorials import Tutorial, TutorialGenerationError, TutorialStep


def build_settings(**overrides) -> Settings:
    """Create a Settings object with safe test defaults."""
    base = {
        "groq_api_key": "test-groq-key",
        "deepgram_api_key": "test-deepgram-key",
        "elevenlabs_api_key": "test-elevenlabs-key",
        "reconnect_base_delay": 0.01,
        "reconnect_max_delay": 0.05,
    }
    base.update(overrides)
    return Settings(**base)


@pytest.fixture
def settings_factory() -> Callable[..., Settings]:
    """Return a factory to build Settings with overrides."""
    return build_settings


@pytest.fixture
def settings(settings_factory: Callable[..., Settings]) -> Settings:
    """Default Settings fixture."""
    return settings_factory()


def build_profile(tool_type: str = "blender", *, recurring: bool = False) -> TutorProfile:
    """Bundled profile, with the recurring check off unless asked for."""
    profile = load_tutor_profile(tool_type)
    if recurring:
        return profile
    return profile.model_copy(update={"recurring_check": RecurringCheckConfig(enabled=False)})


async def settle(rounds: int = 20) -> None:
    """Let scheduled tasks run until they block."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# =============================================================================
# Fakes for the provider seams
# =============================================================================


@dataclass
class FakeReply:
    """Scripted model reply for FakeGenerator."""

    text: str = ""
    tool_uses: list[ToolUseBlock] = field(default_factory=list)
    deltas: list[str] | None = None

    def chunks(self) -> list[str]:
        if self.deltas is not None:
            return self.deltas
        return [self.text] if self.text else []

    def turn(self) -> Turn:
        content: list[Any] = []
        if self.text:
            content.append(TextBlock(self.text))
        content.extend(self.tool_uses)
        return Turn(role=Role.ASSISTANT, content=content)


class FakeGenerator:
    """Scripted ResponseGenerator. With `hold` set, generate() blocks until abort or release."""

    def __init__(self, replies: Sequence[FakeReply] = ()) -> None:
        self.replies = list(replies)
        self.calls: list[dict[str, Any]] = []
        self.hold = False
        self.abort_count = 0
        self.closed = False
        self._waiter: asyncio.Future[None] | None = None

    async def generate(self, system_prompt, history, tools, images=(), on_text_delta=None):
        self.calls.append({
            "system_prompt": system_prompt,
            "history": list(history),
            "tools": list(tools),
        })
        if self.hold:
            self._waiter = asyncio.get_running_loop().create_future()
            try:
                await self._waiter
            finally:
                self._waiter = None

        reply = self.replies.pop(0) if self.replies else FakeReply("Okay.")
        for delta in reply.chunks():
            if on_text_delta is not None:
                await on_text_delta(delta)
        return reply.turn()

    @property
    def waiting(self) -> bool:
        return self._waiter is not None and not self._waiter.done()

    def release(self) -> None:
        self.hold = False
        if self.waiting:
            assert self._waiter is not None
            self._waiter.set_result(None)

    def abort(self) -> None:
        self.abort_count += 1
        if self.waiting:
            assert self._waiter is not None
            self._waiter.set_exception(GenerationAbortedError("aborted"))

    async def close(self) -> None:
        self.closed = True


class FakeSynthesizer:
    """Records every call; tests drive the listener by hand.

    `hooks` maps a log entry name ("text", "close_stream", ...) to a callback
    run right after that call is recorded.
    """

    def __init__(self) -> None:
        self.listener: Any = None
        self.voice: Any = None
        self.log: list[tuple] = []
        self.hooks: dict[str, Callable[[], None]] = {}
        self.interrupts = 0
        self.closed = False

    def set_listener(self, listener) -> None:
        self.listener = listener

    def configure(self, voice) -> None:
        self.voice = voice

    async def send_text(self, text: str) -> None:
        self._record("text", text)

    async def send_chunk(self, text: str) -> None:
        self._record("chunk", text)

    async def flush(self) -> None:
        self._record("flush")

    async def close_stream(self) -> None:
        self._record("close_stream")

    def interrupt(self) -> None:
        self.interrupts += 1

    async def close(self) -> None:
        self.closed = True

    @property
    def spoken(self) -> list[str]:
        return [entry[1] for entry in self.log if entry[0] in ("text", "chunk")]

    def _record(self, name: str, *args: Any) -> None:
        self.log.append((name, *args))
        hook = self.hooks.get(name)
        if hook is not None:
            hook()


class FakeTranscriptSource:
    def __init__(self) -> None:
        self.listener: Any = None
        self.audio: list[bytes] = []
        self.connects = 0
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    def set_listener(self, listener) -> None:
        self.listener = listener

    async def connect(self) -> None:
        self.connects += 1
        self._connected = True

    def send_audio(self, audio: bytes) -> None:
        self.audio.append(audio)

    async def disconnect(self) -> None:
        self._connected = False

    def partial(self, text: str) -> None:
        self.listener.on_partial_transcript(text)

    def commit(self, text: str) -> None:
        self.listener.on_committed_transcript(text)


class RecordingTransport:
    def __init__(self) -> None:
        self.events: list[tuple[str, Any]] = []
        self.audio: list[bytes] = []
        self.clears = 0

    def emit(self, event: str, data: Any = None) -> None:
        self.events.append((event, data))

    def send_audio(self, audio: bytes) -> None:
        self.audio.append(audio)

    def clear_audio(self) -> None:
        self.clears += 1
        self.audio.clear()

    def names(self) -> list[str]:
        return [name for name, _ in self.events]

    def data_for(self, event: str) -> list[Any]:
        return [data for name, data in self.events if name == event]


class FakeTutorials:
    def __init__(self, steps: int = 3, error: str | None = None) -> None:
        self.steps = steps
        self.error = error
        self.calls: list[tuple[str, str, str]] = []
        self.closed = False
        # When set, generate() blocks until the event is set
        self.gate: asyncio.Event | None = None

    async def generate(self, object_label: str, proficiency: str, *, subject: str) -> Tutorial:
        self.calls.append((object_label, proficiency, subject))
        if self.gate is not None:
            await self.gate.wait()
        if self.error:
            raise TutorialGenerationError(self.error)
        return Tutorial(
            object_label=object_label,
            proficiency=proficiency,
            steps=[
                TutorialStep(step_number=i, title=f"Step {i}", instruction=f"Do thing {i}.")
                for i in range(1, self.steps + 1)
            ],
        )

    async def close(self) -> None:
        self.closed = True


# =============================================================================
# Orchestrator Fixtures
# =============================================================================


@dataclass
class OrchestratorHarness:
    orchestrator: Any
    transport: RecordingTransport
    generator: FakeGenerator
    synthesizer: FakeSynthesizer
    transcripts: FakeTranscriptSource
    tutorials: FakeTutorials

    @property
    def history(self):
        return self.orchestrator.session.history


@pytest_asyncio.fixture
async def harness_factory(settings_factory):
    """Build an orchestrator wired to fakes; every one built is stopped afterwards."""
    from livetutor.core.orchestrator import ConversationOrchestrator

    built: list[OrchestratorHarness] = []

    def _build(
        replies: Sequence[FakeReply] = (),
        *,
        recurring: bool = False,
        clock: Callable[[], float] | None = None,
        **settings_overrides,
    ) -> OrchestratorHarness:
        transport = RecordingTransport()
        generator = FakeGenerator(replies)
        synthesizer = FakeSynthesizer()
        transcripts = FakeTranscriptSource()
        tutorials = FakeTutorials()
        kwargs: dict[str, Any] = {}
        if clock is not None:
            kwargs["clock"] = clock
        orchestrator = ConversationOrchestrator(
            transport,
            generator=generator,
            transcripts=transcripts,
            synthesizer=synthesizer,
            tutorials=tutorials,
            settings=settings_factory(**settings_overrides),
            profile_loader=lambda tool_type, _dir: build_profile(tool_type, recurring=recurring),
            **kwargs,
        )
        harness = OrchestratorHarness(
            orchestrator, transport, generator, synthesizer, transcripts, tutorials
        )
        built.append(harness)
        return harness

    yield _build

    for harness in built:
        harness.generator.release()
        await harness.orchestrator.stop()


@pytest_asyncio.fixture
async def started(harness_factory) -> OrchestratorHarness:
    """Started session whose greeting cycle has finished and been spoken."""
    harness = harness_factory([FakeReply("Hi there! What shall we build?")])
    await harness.orchestrator.start("blender")
    await settle()
    harness.synthesizer.listener.on_synthesis_done()
    return harness


# =============================================================================
# FastAPI Test Client Fixtures
# =============================================================================


@pytest.fixture
def test_client(settings_factory, monkeypatch) -> Generator:
    """FastAPI TestClient with patched settings and fake providers."""
    import sys

    from fastapi.testclient import TestClient

    from livetutor.core.orchestrator import ConversationOrchestrator

    test_settings = settings_factory()

    # Patch get_settings in all modules that import it
    monkeypatch.setattr("livetutor.config.get_settings", lambda: test_settings)
    monkeypatch.setattr(
        "livetutor.api.websocket.session_stream.get_settings", lambda: test_settings
    )

    def fake_build_orchestrator(transport, settings):
        return ConversationOrchestrator(
            transport,
            generator=FakeGenerator([FakeReply("Hello! What would you like to build?")]),
            transcripts=FakeTranscriptSource(),
            synthesizer=FakeSynthesizer(),
            tutorials=FakeTutorials(),
            settings=settings,
            profile_loader=lambda tool_type, _dir: build_profile(tool_type),
        )

    monkeypatch.setattr(
        "livetutor.api.websocket.session_stream.build_orchestrator", fake_build_orchestrator
    )

    # Remove cached main module to force re-import with patches
    if "livetutor.main" in sys.modules:
        del sys.modules["livetutor.main"]

    from livetutor.api.routes import health
    from livetutor.main import create_app

    app = create_app()
    app.dependency_overrides[health.get_settings] = lambda: test_settings

    with TestClient(app) as client:
        yield client
