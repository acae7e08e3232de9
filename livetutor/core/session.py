"""Per-connection tutoring session state.

Holds everything the orchestrator reads to build prompts: the profile,
conversation history, the loaded tutorial and step pointer, and the most
recent screen frame.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from livetutor.core.conversation import ConversationHistory, ImageBlock, Turn
from livetutor.core.profiles import TutorProfile
from livetutor.logging_config import get_logger
from livetutor.tools.tutorials import Tutorial, TutorialStep

logger: Any = get_logger(__name__)

SESSION_START_MARKER = "[SESSION_START]"
NO_GUIDANCE_MARKER = "[NO_GUIDANCE_NEEDED]"

CHECK_PROMPT_TEMPLATE = (
    "[RECURRING_SCREEN_CHECK] Look at the user's current {screen_label}. "
    "If they seem stuck or could use a tip, provide brief guidance. "
    "If everything looks fine, respond with exactly: " + NO_GUIDANCE_MARKER
)


@dataclass
class TutorSession:
    """Domain state for one live tutoring session."""

    profile: TutorProfile
    history: ConversationHistory = field(default_factory=ConversationHistory)
    tutorial: Tutorial | None = None
    step_index: int = 0
    latest_frame: str | None = None  # base64 JPEG, overwritten on every frame
    frame_count: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def tool_type(self) -> str:
        return self.profile.tool_type

    @property
    def duration_seconds(self) -> float:
        return (datetime.now(UTC) - self.started_at).total_seconds()

    @property
    def current_step(self) -> TutorialStep | None:
        if self.tutorial is None:
            return None
        return self.tutorial.step(self.step_index)

    def set_frame(self, frame: str) -> None:
        self.latest_frame = frame
        self.frame_count += 1
        if self.frame_count <= 3 or self.frame_count % 30 == 0:
            logger.debug(f"Frame #{self.frame_count} received ({len(frame) / 1024:.0f}KB)")

    def load_tutorial(self, tutorial: Tutorial) -> None:
        self.tutorial = tutorial
        self.step_index = 0

    def frame_block(self) -> ImageBlock | None:
        if self.latest_frame is None:
            return None
        return ImageBlock(data=self.latest_frame)

    def build_user_turn(self, text: str) -> Turn:
        """User turn with the latest frame attached, when there is one."""
        return Turn.user_text(text, image=self.frame_block())

    def build_system_prompt(self) -> str:
        prompt = self.profile.system_prompt.rstrip()
        if self.tutorial is None:
            return prompt

        step = self.current_step
        return (
            f"{prompt}\n\n--- CURRENT TUTORIAL ---\n"
            f"Object: {self.tutorial.object_label}\n"
            f"Current Step: {self.step_index + 1} of {self.tutorial.total_steps}\n"
            f"Step Title: {step.title if step else 'N/A'}\n"
            f"Step Instructions: {step.instruction if step else 'N/A'}\n"
            f"--- END TUTORIAL ---"
        )

    def build_check_prompt(self) -> str:
        prompt = CHECK_PROMPT_TEMPLATE.format(screen_label=self.profile.screen_label)
        if self.tutorial is not None:
            step = self.current_step
            title = step.title if step else "N/A"
            prompt += f"\nCurrent step {self.step_index + 1}: {title}"
        return prompt
