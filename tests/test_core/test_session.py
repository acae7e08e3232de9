"""Tests for per-session tutoring state and prompt construction."""

from __future__ import annotations

from conftest import build_profile

from livetutor.core.conversation import ImageBlock
from livetutor.core.session import NO_GUIDANCE_MARKER, TutorSession
from livetutor.tools.tutorials import Tutorial, TutorialStep


def _tutorial() -> Tutorial:
    return Tutorial(
        object_label="coffee mug",
        proficiency="beginner",
        steps=[
            TutorialStep(1, "Add a cylinder", "Shift A, Mesh, Cylinder."),
            TutorialStep(2, "Hollow it out", "Inset the top face and extrude down."),
        ],
    )


class TestTutorSession:
    def test_user_turn_carries_latest_frame(self) -> None:
        session = TutorSession(profile=build_profile())
        session.set_frame("frame-1")
        session.set_frame("frame-2")

        turn = session.build_user_turn("is this right?")

        assert session.frame_count == 2
        assert turn.content[0] == ImageBlock(data="frame-2")
        assert turn.text == "is this right?"

    def test_user_turn_without_frame(self) -> None:
        session = TutorSession(profile=build_profile())
        assert session.build_user_turn("hi").has_images is False

    def test_system_prompt_without_tutorial(self) -> None:
        session = TutorSession(profile=build_profile())
        assert "CURRENT TUTORIAL" not in session.build_system_prompt()

    def test_system_prompt_with_tutorial(self) -> None:
        session = TutorSession(profile=build_profile())
        session.load_tutorial(_tutorial())
        session.step_index = 1

        prompt = session.build_system_prompt()

        assert "--- CURRENT TUTORIAL ---" in prompt
        assert "Object: coffee mug" in prompt
        assert "Current Step: 2 of 2" in prompt
        assert "Step Title: Hollow it out" in prompt

    def test_check_prompt_uses_screen_label(self) -> None:
        session = TutorSession(profile=build_profile("figma"))
        prompt = session.build_check_prompt()

        assert "Figma canvas" in prompt
        assert NO_GUIDANCE_MARKER in prompt
        assert "Current step" not in prompt

    def test_check_prompt_names_current_step(self) -> None:
        session = TutorSession(profile=build_profile())
        session.load_tutorial(_tutorial())

        assert session.build_check_prompt().endswith("Current step 1: Add a cylinder")

    def test_load_tutorial_resets_step(self) -> None:
        session = TutorSession(profile=build_profile())
        session.step_index = 4
        session.load_tutorial(_tutorial())

        assert session.step_index == 0
        assert session.current_step is not None
        assert session.current_step.title == "Add a cylinder"
