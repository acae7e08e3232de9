"""Tutorial content and the generator that produces it.

A tutorial is a short ordered list of steps for building one object in
the user's design tool. The orchestrator only reads it for prompt
construction; the generator is swappable behind TutorialGenerator.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Literal, Protocol

from pydantic import BaseModel, Field, ValidationError

from livetutor.config import Settings, get_settings
from livetutor.exceptions import ToolExecutionError
from livetutor.logging_config import get_logger

if TYPE_CHECKING:
    from livetutor.services.llm.groq import GroqResponseGenerator

logger: Any = get_logger(__name__)

Proficiency = Literal["beginner", "intermediate", "advanced"]

STEP_COUNTS: dict[str, str] = {
    "beginner": "3-4",
    "intermediate": "4-6",
    "advanced": "5-8",
}


class TutorialGenerationError(ToolExecutionError):
    """Tutorial could not be generated or parsed."""

    pass


@dataclass(frozen=True, slots=True)
class TutorialStep:
    step_number: int
    title: str
    instruction: str


@dataclass
class Tutorial:
    object_label: str
    proficiency: str
    steps: list[TutorialStep]
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    def step(self, index: int) -> TutorialStep | None:
        """Step at 0-based `index`, None when out of range."""
        if 0 <= index < len(self.steps):
            return self.steps[index]
        return None

    def to_payload(self) -> dict[str, Any]:
        """Client-facing representation for the tutorial_ready event."""
        return {
            "id": self.id,
            "objectLabel": self.object_label,
            "proficiency": self.proficiency,
            "totalSteps": self.total_steps,
            "steps": [
                {"stepNumber": s.step_number, "title": s.title, "instruction": s.instruction}
                for s in self.steps
            ],
        }


class TutorialGenerator(Protocol):
    async def generate(
        self,
        object_label: str,
        proficiency: str,
        *,
        subject: str,
    ) -> Tutorial:
        """Build a tutorial.

        Raises:
            TutorialGenerationError: If no usable tutorial could be produced.
        """
        ...


class _StepPayload(BaseModel):
    title: str = Field(min_length=1)
    instruction: str = Field(min_length=1)


class _TutorialPayload(BaseModel):
    steps: list[_StepPayload] = Field(min_length=1)


TUTORIAL_SYSTEM_PROMPT = """You write short, practical {subject} tutorials that are read aloud \
by a voice tutor while the learner works.

Output ONLY valid JSON in this exact format:
{{
  "steps": [
    {{"title": "short step title", "instruction": "what to do, with the exact menu or shortcut"}}
  ]
}}

Rules:
- Order steps from foundational shapes to finishing details
- Each instruction is 2-4 sentences and names the tools or shortcuts to use
- Use only features a {proficiency} user can be expected to find
- No markdown inside strings"""


class GroqTutorialGenerator:
    """Single-call tutorial generator using Groq JSON mode."""

    def __init__(
        self,
        llm: GroqResponseGenerator | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._llm = llm

    @property
    def llm(self) -> GroqResponseGenerator:
        """Lazy initialization of the Groq client wrapper."""
        if self._llm is None:
            from livetutor.services.llm.groq import GroqResponseGenerator

            self._llm = GroqResponseGenerator(
                settings=self._settings,
                model=self._settings.groq_tutorial_model,
            )
        return self._llm

    async def generate(
        self,
        object_label: str,
        proficiency: str,
        *,
        subject: str,
    ) -> Tutorial:
        step_count = STEP_COUNTS.get(proficiency, STEP_COUNTS["intermediate"])
        messages = [
            {
                "role": "system",
                "content": TUTORIAL_SYSTEM_PROMPT.format(subject=subject, proficiency=proficiency),
            },
            {
                "role": "user",
                "content": (
                    f'Create a {subject} tutorial for a {proficiency} user to build '
                    f'"{object_label}" in {step_count} steps.'
                ),
            },
        ]

        try:
            raw = await self.llm.extract_json(
                messages, model=self._settings.groq_tutorial_model
            )
        except Exception as e:
            logger.error(f"Tutorial generation failed: {e}")
            raise TutorialGenerationError(f"Could not generate tutorial: {e}") from e

        return self._parse(raw, object_label, proficiency)

    def _parse(self, raw: dict, object_label: str, proficiency: str) -> Tutorial:
        try:
            payload = _TutorialPayload.model_validate(raw)
        except ValidationError as e:
            logger.warning(f"Tutorial JSON did not validate: {e.error_count()} errors")
            raise TutorialGenerationError("Tutorial response was malformed") from e

        steps = [
            TutorialStep(step_number=i, title=s.title.strip(), instruction=s.instruction.strip())
            for i, s in enumerate(payload.steps, start=1)
        ]
        tutorial = Tutorial(object_label=object_label, proficiency=proficiency, steps=steps)
        logger.info(f"Tutorial ready: {object_label!r} ({tutorial.total_steps} steps)")
        return tutorial

    async def close(self) -> None:
        if self._llm is not None:
            await self._llm.close()
