"""Tests for conversation history and its normalisation helpers."""

from __future__ import annotations

import pytest

from livetutor.core.conversation import (
    INTERRUPTED_PLACEHOLDER,
    ConversationHistory,
    ImageBlock,
    Role,
    TextBlock,
    ToolResultBlock,
    ToolUseBlock,
    Turn,
    find_violation,
    prune_images,
    sanitize_turns,
)
from livetutor.exceptions import ProtocolViolation


def _tool_turn(*ids: str, text: str = "") -> Turn:
    content: list = [TextBlock(text)] if text else []
    content.extend(ToolUseBlock(id=i, name="Suggested_HotKey", input={"key_combo": "G"}) for i in ids)
    return Turn(role=Role.ASSISTANT, content=content)


def _results(*ids: str) -> Turn:
    return Turn.tool_results(ToolResultBlock(tool_use_id=i, content="{}") for i in ids)


class TestTurn:
    """Tests for Turn constructors and accessors."""

    def test_user_text_puts_image_first(self) -> None:
        turn = Turn.user_text("what now?", image=ImageBlock(data="abc"))

        assert isinstance(turn.content[0], ImageBlock)
        assert turn.text == "what now?"
        assert turn.has_images is True

    def test_user_text_without_image(self) -> None:
        turn = Turn.user_text("hello")
        assert turn.content == [TextBlock("hello")]
        assert turn.has_images is False

    def test_tool_results_turn(self) -> None:
        turn = _results("a", "b")
        assert turn.role == Role.USER
        assert turn.is_tool_result is True
        assert [r.tool_use_id for r in turn.tool_results_blocks] == ["a", "b"]

    def test_placeholder(self) -> None:
        turn = Turn.placeholder()
        assert turn.role == Role.ASSISTANT
        assert turn.text == INTERRUPTED_PLACEHOLDER

    def test_text_joins_blocks_and_skips_tools(self) -> None:
        turn = _tool_turn("a", text="Press G.")
        assert turn.text == "Press G."
        assert len(turn.tool_uses) == 1


class TestSanitize:
    """Orphaned tool uses are replaced so the provider accepts the history."""

    def test_answered_tool_use_is_kept(self) -> None:
        turns = [Turn.user_text("hi"), _tool_turn("a", "b"), _results("a", "b")]
        assert sanitize_turns(turns) == 0
        assert len(turns[1].tool_uses) == 2

    def test_trailing_tool_use_becomes_placeholder(self) -> None:
        turns = [Turn.user_text("hi"), _tool_turn("a")]

        assert sanitize_turns(turns) == 1
        assert turns[1].tool_uses == []
        assert turns[1].text == INTERRUPTED_PLACEHOLDER

    def test_orphan_keeps_its_text(self) -> None:
        turns = [Turn.user_text("hi"), _tool_turn("a", text="Let me show you."), Turn.user_text("wait")]

        sanitize_turns(turns)

        assert turns[1].content == [TextBlock("Let me show you.")]

    def test_partial_results_count_as_orphaned(self) -> None:
        turns = [Turn.user_text("hi"), _tool_turn("a", "b"), _results("a")]

        assert sanitize_turns(turns) == 1
        assert turns[1].tool_uses == []

    def test_turn_count_unchanged(self) -> None:
        turns = [Turn.user_text("hi"), _tool_turn("a"), Turn.user_text("again"), _tool_turn("b")]
        sanitize_turns(turns)
        assert len(turns) == 4


class TestPruneImages:
    def test_keeps_most_recent_images(self) -> None:
        turns = []
        for i in range(7):
            turns.append(Turn.user_text(f"q{i}", image=ImageBlock(data=f"img{i}")))
            turns.append(Turn.assistant_text(f"a{i}"))

        stripped = prune_images(turns, keep=5)

        assert stripped == 2
        with_images = [t for t in turns if t.has_images]
        assert len(with_images) == 5
        assert with_images[0].text == "q2"
        # Text survives pruning
        assert turns[0].text == "q0"
        assert len(turns) == 14

    def test_noop_under_limit(self) -> None:
        turns = [Turn.user_text("q", image=ImageBlock(data="x"))]
        assert prune_images(turns, keep=5) == 0
        assert turns[0].has_images


class TestFindViolation:
    def test_valid_history(self) -> None:
        turns = [
            Turn.user_text("hi"),
            _tool_turn("a"),
            _results("a"),
            Turn.assistant_text("done"),
        ]
        assert find_violation(turns) is None

    def test_consecutive_user_turns(self) -> None:
        violation = find_violation([Turn.user_text("a"), Turn.user_text("b")])
        assert isinstance(violation, ProtocolViolation)
        assert violation.index == 1

    def test_results_out_of_order(self) -> None:
        violation = find_violation([Turn.user_text("hi"), _tool_turn("a", "b"), _results("b", "a")])
        assert violation is not None
        assert violation.index == 2

    def test_results_without_assistant(self) -> None:
        violation = find_violation([_results("a")])
        assert violation is not None
        assert violation.index == 0


class TestConversationHistory:
    """Tests for the ConversationHistory container."""

    def test_add_user_turn_inserts_placeholder(self) -> None:
        history = ConversationHistory()
        history.add_user_turn(Turn.user_text("first"))
        history.add_user_turn(Turn.user_text("second"))

        assert [t.text for t in history] == ["first", INTERRUPTED_PLACEHOLDER, "second"]
        history.validate()

    def test_add_user_turn_after_assistant(self) -> None:
        history = ConversationHistory([Turn.user_text("hi"), Turn.assistant_text("hello")])
        history.add_user_turn(Turn.user_text("next"))
        assert len(history) == 3

    def test_turns_returns_copy(self) -> None:
        history = ConversationHistory([Turn.user_text("hi")])
        snapshot = history.turns
        snapshot.append(Turn.assistant_text("x"))
        assert len(history) == 1

    def test_validate_raises(self) -> None:
        history = ConversationHistory([Turn.user_text("a")])
        history.append(Turn.user_text("b"))
        with pytest.raises(ProtocolViolation):
            history.validate()

    def test_extend_and_last(self) -> None:
        history = ConversationHistory()
        history.extend([Turn.user_text("a"), Turn.assistant_text("b")])
        assert history.last is not None
        assert history.last.text == "b"
        assert history.needs_placeholder() is False

    def test_transcript_skips_tool_results(self) -> None:
        history = ConversationHistory([
            Turn.user_text("hi"),
            _tool_turn("a", text="One sec."),
            _results("a"),
        ])
        transcript = history.get_transcript()

        assert "User: hi" in transcript
        assert "Tutor: One sec." in transcript
        assert transcript.count("\n") == 1

    def test_clear(self) -> None:
        history = ConversationHistory([Turn.user_text("hi")])
        history.clear()
        assert len(history) == 0
        assert history.last is None
