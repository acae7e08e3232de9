"""Tutor tool handlers: tutorial creation, step progress, hotkey hints.

Each handler validates its arguments, updates the session, emits a client
event and returns a small JSON-serialisable result for the model.
"""

from __future__ import annotations

from typing import Any, Protocol

from pydantic import BaseModel, Field

from livetutor.core.session import TutorSession
from livetutor.exceptions import ToolExecutionError
from livetutor.logging_config import get_logger
from livetutor.tools.executor import ToolExecutor
from livetutor.tools.tutorials import Proficiency, TutorialGenerationError, TutorialGenerator

logger: Any = get_logger(__name__)


class EventSink(Protocol):
    """Anything that can push a named event to the client."""

    def emit(self, event: str, data: Any = None) -> None:
        ...


class CreateTutorialArgs(BaseModel):
    object_label: str = Field(min_length=1, max_length=120)
    proficiency: Proficiency = "intermediate"


class ProgressedStepArgs(BaseModel):
    previous_step: int = Field(ge=0)
    current_step: int = Field(ge=1)


class SuggestedHotKeyArgs(BaseModel):
    key_combo: str = Field(min_length=1, max_length=40)
    description: str = ""


class TutorTools:
    """Handlers bound to one session."""

    def __init__(
        self,
        session: TutorSession,
        events: EventSink,
        tutorials: TutorialGenerator,
    ) -> None:
        self._session = session
        self._events = events
        self._tutorials = tutorials

    def register(self, executor: ToolExecutor) -> ToolExecutor:
        executor.register("Create_Tutorial", self.create_tutorial)
        executor.register("Progressed_Step", self.progressed_step)
        executor.register("Suggested_HotKey", self.suggested_hotkey)
        return executor

    async def create_tutorial(self, raw: dict[str, Any]) -> dict[str, Any]:
        args = CreateTutorialArgs.model_validate(raw)
        logger.info(f"Creating tutorial: {args.object_label!r} ({args.proficiency})")
        self._events.emit("tutorial_loading", {"objectLabel": args.object_label})

        try:
            tutorial = await self._tutorials.generate(
                args.object_label,
                args.proficiency,
                subject=self._session.profile.tutorial_subject,
            )
        except TutorialGenerationError as e:
            logger.error(f"Tutorial generation failed: {e}")
            self._events.emit("tutorial_error", {"error": str(e)})
            return {"success": False, "error": str(e)}

        self._session.load_tutorial(tutorial)
        self._events.emit("tutorial_ready", tutorial.to_payload())

        return {
            "success": True,
            "message": (
                "Tutorial is ready! Announce it to the user enthusiastically. "
                f"Tell them you'll be building a {tutorial.object_label} in "
                f"{tutorial.total_steps} steps, and ask if they're ready to start."
            ),
            "objectLabel": tutorial.object_label,
            "totalSteps": tutorial.total_steps,
            "steps": [
                {"stepNumber": s.step_number, "title": s.title, "instruction": s.instruction}
                for s in tutorial.steps
            ],
        }

    async def progressed_step(self, raw: dict[str, Any]) -> dict[str, Any]:
        args = ProgressedStepArgs.model_validate(raw)
        tutorial = self._session.tutorial
        if tutorial is None:
            raise ToolExecutionError("No tutorial is loaded; call Create_Tutorial first")
        if args.current_step > tutorial.total_steps:
            raise ToolExecutionError(
                f"Step {args.current_step} is out of range (tutorial has "
                f"{tutorial.total_steps} steps)"
            )

        logger.info(f"Step: {args.previous_step} -> {args.current_step}")
        self._session.step_index = args.current_step - 1
        self._events.emit(
            "step_update",
            {
                "previousStep": args.previous_step,
                "currentStep": args.current_step,
                "totalSteps": tutorial.total_steps,
            },
        )

        step = self._session.current_step
        return {
            "success": True,
            "currentStep": args.current_step,
            "stepTitle": step.title if step else "Unknown",
            "stepInstruction": step.instruction if step else "",
        }

    async def suggested_hotkey(self, raw: dict[str, Any]) -> dict[str, Any]:
        args = SuggestedHotKeyArgs.model_validate(raw)
        logger.info(f"Hotkey: {args.key_combo} - {args.description}")
        self._events.emit(
            "hotkey_display",
            {"keyCombo": args.key_combo, "description": args.description},
        )
        return {"displayed": True}


def build_tool_executor(
    session: TutorSession,
    events: EventSink,
    tutorials: TutorialGenerator,
) -> ToolExecutor:
    """Executor with the tutor handlers registered for `session`."""
    return TutorTools(session, events, tutorials).register(ToolExecutor())
