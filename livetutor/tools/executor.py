"""Dispatch table for tools the tutor model can call."""

from __future__ import annotations

import json
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import ValidationError

from livetutor.core.conversation import ToolResultBlock, ToolUseBlock
from livetutor.exceptions import ToolExecutionError
from livetutor.logging_config import get_logger
from livetutor.observability.metrics import record_tool_call

logger: Any = get_logger(__name__)

ToolHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any]]]


class ToolExecutor:
    """Maps tool names to async handlers and wraps results as tool-result blocks.

    Never raises for a bad call: unknown names, invalid arguments and
    handler failures all come back as error-shaped results the model can read.
    """

    def __init__(self) -> None:
        self._handlers: dict[str, ToolHandler] = {}

    def register(self, name: str, handler: ToolHandler) -> None:
        self._handlers[name] = handler

    @property
    def names(self) -> list[str]:
        return list(self._handlers)

    def __contains__(self, name: object) -> bool:
        return name in self._handlers

    async def execute(self, call: ToolUseBlock) -> ToolResultBlock:
        handler = self._handlers.get(call.name)
        logger.info(f"Tool: {call.name}({json.dumps(call.input)[:80]})")

        if handler is None:
            logger.warning(f"Unknown tool: {call.name}")
            result: dict[str, Any] = {"error": f"Unknown tool: {call.name}"}
            is_error = True
        else:
            try:
                result = await handler(call.input)
                is_error = False
            except ValidationError as e:
                logger.warning(f"Invalid arguments for {call.name}: {e.error_count()} errors")
                result = {"error": f"Invalid arguments for {call.name}: {_summarize(e)}"}
                is_error = True
            except ToolExecutionError as e:
                logger.warning(f"Tool {call.name} failed: {e}")
                result = {"error": str(e)}
                is_error = True
            except Exception as e:
                logger.exception(f"Tool {call.name} raised unexpectedly: {e}")
                result = {"error": f"{call.name} failed: {type(e).__name__}"}
                is_error = True

        record_tool_call(call.name, success=not is_error)
        return ToolResultBlock(
            tool_use_id=call.id,
            content=json.dumps(result),
            is_error=is_error,
        )


def _summarize(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        loc = ".".join(str(p) for p in item["loc"]) or "arguments"
        parts.append(f"{loc}: {item['msg']}")
    return "; ".join(parts)
