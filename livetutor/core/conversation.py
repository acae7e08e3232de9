"""Conversation history for a live tutoring session.

Turns hold ordered content blocks (text, image, tool use, tool result).
History is kept provider-neutral; the LLM adapter translates it to the
provider's message format.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Union

from livetutor.exceptions import ProtocolViolation
from livetutor.logging_config import get_logger

logger: Any = get_logger(__name__)

INTERRUPTED_PLACEHOLDER = "[Response interrupted by user]"


class Role(str, Enum):
    """Message role in conversation."""

    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True, slots=True)
class TextBlock:
    text: str


@dataclass(frozen=True, slots=True)
class ImageBlock:
    """Base64-encoded image attached to a user turn."""

    data: str
    media_type: str = "image/jpeg"


@dataclass(frozen=True, slots=True)
class ToolUseBlock:
    id: str
    name: str
    input: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolResultBlock:
    tool_use_id: str
    content: str
    is_error: bool = False


ContentBlock = Union[TextBlock, ImageBlock, ToolUseBlock, ToolResultBlock]


@dataclass
class Turn:
    """One role-tagged unit of conversation history."""

    role: Role
    content: list[ContentBlock] = field(default_factory=list)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def user_text(cls, text: str, image: ImageBlock | None = None) -> Turn:
        """User turn with optional screen frame placed before the text."""
        blocks: list[ContentBlock] = []
        if image is not None:
            blocks.append(image)
        blocks.append(TextBlock(text))
        return cls(role=Role.USER, content=blocks)

    @classmethod
    def assistant_text(cls, text: str) -> Turn:
        return cls(role=Role.ASSISTANT, content=[TextBlock(text)])

    @classmethod
    def tool_results(cls, results: Iterable[ToolResultBlock]) -> Turn:
        return cls(role=Role.USER, content=list(results))

    @classmethod
    def placeholder(cls) -> Turn:
        return cls.assistant_text(INTERRUPTED_PLACEHOLDER)

    @property
    def text(self) -> str:
        """Concatenated text blocks."""
        return "".join(b.text for b in self.content if isinstance(b, TextBlock))

    @property
    def tool_uses(self) -> list[ToolUseBlock]:
        return [b for b in self.content if isinstance(b, ToolUseBlock)]

    @property
    def tool_results_blocks(self) -> list[ToolResultBlock]:
        return [b for b in self.content if isinstance(b, ToolResultBlock)]

    @property
    def has_images(self) -> bool:
        return any(isinstance(b, ImageBlock) for b in self.content)

    @property
    def is_tool_result(self) -> bool:
        return self.role == Role.USER and bool(self.tool_results_blocks)


# =============================================================================
# History normalisation (operate in place on any list of turns)
# =============================================================================


def sanitize_turns(turns: list[Turn]) -> int:
    """Replace orphaned tool-use blocks so the provider accepts the history.

    An assistant turn's tool uses are orphaned when the next turn does not
    carry a tool result for every one of them. The turn keeps its own text,
    or gets the interruption placeholder when it has none.

    Returns:
        Number of turns rewritten.
    """
    fixed = 0
    for i in range(len(turns) - 1, -1, -1):
        turn = turns[i]
        if turn.role != Role.ASSISTANT:
            continue

        tool_uses = turn.tool_uses
        if not tool_uses:
            continue

        nxt = turns[i + 1] if i + 1 < len(turns) else None
        if nxt is not None and nxt.is_tool_result:
            answered = {r.tool_use_id for r in nxt.tool_results_blocks}
            if all(u.id in answered for u in tool_uses):
                continue

        text_blocks = [b for b in turn.content if isinstance(b, TextBlock) and b.text.strip()]
        turn.content = list(text_blocks) if text_blocks else [TextBlock(INTERRUPTED_PLACEHOLDER)]
        fixed += 1
        logger.warning(f"Sanitize: stripped orphaned tool_use from turn at index {i}")

    return fixed


def prune_images(turns: list[Turn], keep: int) -> int:
    """Strip images from all but the most recent `keep` image-bearing turns.

    Text and tool blocks stay in place, turn order is untouched.

    Returns:
        Number of turns that lost their images.
    """
    image_indices = [i for i, turn in enumerate(turns) if turn.has_images]
    if len(image_indices) <= keep:
        return 0

    to_strip = image_indices[: len(image_indices) - keep]
    for idx in to_strip:
        turn = turns[idx]
        turn.content = [b for b in turn.content if not isinstance(b, ImageBlock)]

    logger.debug(
        f"Pruned images from {len(to_strip)} older turns (keeping last {keep})"
    )
    return len(to_strip)


def find_violation(turns: list[Turn]) -> ProtocolViolation | None:
    """Return the first alternation problem in `turns`, if any."""
    for i, turn in enumerate(turns):
        prev = turns[i - 1] if i > 0 else None

        if turn.is_tool_result:
            if prev is None or prev.role != Role.ASSISTANT:
                return ProtocolViolation("tool results without preceding assistant turn", i)
            expected = [u.id for u in prev.tool_uses]
            got = [r.tool_use_id for r in turn.tool_results_blocks]
            if expected != got:
                return ProtocolViolation(
                    f"tool results {got} do not match tool uses {expected}", i
                )
            continue

        if prev is not None and prev.role == turn.role:
            return ProtocolViolation(f"two consecutive {turn.role.value} turns", i)

        if turn.role == Role.ASSISTANT and turn.tool_uses:
            nxt = turns[i + 1] if i + 1 < len(turns) else None
            if nxt is not None and not nxt.is_tool_result:
                return ProtocolViolation("tool use without tool results", i)

    return None


class ConversationHistory:
    """Ordered sequence of turns for one session."""

    def __init__(self, turns: Iterable[Turn] | None = None) -> None:
        self._turns: list[Turn] = list(turns or [])

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[Turn]:
        return iter(self._turns)

    def __getitem__(self, index: int) -> Turn:
        return self._turns[index]

    @property
    def turns(self) -> list[Turn]:
        """Snapshot of the stored turns (list copy, same Turn objects)."""
        return list(self._turns)

    @property
    def last(self) -> Turn | None:
        return self._turns[-1] if self._turns else None

    def needs_placeholder(self) -> bool:
        """True when the next user turn would follow another user turn."""
        last = self.last
        return last is not None and last.role == Role.USER

    def append(self, turn: Turn) -> None:
        self._turns.append(turn)

    def add_user_turn(self, turn: Turn) -> None:
        """Append a user turn, closing an unanswered user turn first."""
        if self.needs_placeholder():
            self._turns.append(Turn.placeholder())
        self._turns.append(turn)

    def extend(self, turns: Iterable[Turn]) -> None:
        """Append several turns in one step."""
        self._turns.extend(turns)

    def sanitize(self) -> int:
        return sanitize_turns(self._turns)

    def prune_images(self, keep: int) -> int:
        return prune_images(self._turns, keep)

    def validate(self) -> None:
        """Raise ProtocolViolation if alternation is broken."""
        violation = find_violation(self._turns)
        if violation is not None:
            raise violation

    def clear(self) -> None:
        self._turns = []

    def get_transcript(self) -> str:
        """Plain-text transcript for logging."""
        lines = []
        for turn in self._turns:
            if turn.is_tool_result:
                continue
            speaker = "User" if turn.role == Role.USER else "Tutor"
            text = turn.text
            if text:
                lines.append(f"[{turn.timestamp.isoformat()}] {speaker}: {text}")
        return "\n".join(lines)
