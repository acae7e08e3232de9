"""Response generator protocol and data types."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from livetutor.core.conversation import ImageBlock, Turn
    from livetutor.core.profiles import ToolDefinition

OnTextDelta = Callable[[str], Awaitable[None]]


@dataclass
class GenerationMetadata:
    """Metadata collected during/after one generation call."""

    model: str = ""
    first_token_ms: float | None = None
    total_tokens: int | None = None
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    finish_reason: str | None = None
    tool_calls: int = 0


class ResponseGenerator(Protocol):
    """Streaming text + tool-call completions, cancelable mid-stream."""

    async def generate(
        self,
        system_prompt: str,
        history: Sequence[Turn],
        tools: Sequence[ToolDefinition],
        images: Sequence[ImageBlock] = (),
        on_text_delta: OnTextDelta | None = None,
    ) -> Turn:
        """Run one completion and return the assistant turn.

        Text deltas are passed to `on_text_delta` in arrival order. The
        returned turn holds the full text followed by any tool-use blocks.

        Raises:
            GenerationAbortedError: abort() was called during the request.
            LLMServiceError: For provider failures.
        """
        ...

    def abort(self) -> None:
        """Cancel the in-flight call, if any. Safe to call at any time."""
        ...

    async def close(self) -> None:
        ...
