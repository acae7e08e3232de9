"""Groq response generator with streaming text and tool calls."""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Coroutine, Sequence
from typing import TYPE_CHECKING, Any, TypeVar

import groq
from groq import AsyncGroq

from livetutor.config import Settings, get_settings
from livetutor.core.conversation import (
    ImageBlock,
    Role,
    TextBlock,
    ToolUseBlock,
    Turn,
)
from livetutor.logging_config import get_logger
from livetutor.observability.metrics import LLM_FIRST_TOKEN
from livetutor.services.llm.exceptions import (
    GenerationAbortedError,
    LLMAuthenticationError,
    LLMConnectionError,
    LLMRateLimitError,
    LLMServiceError,
)
from livetutor.services.llm.protocol import GenerationMetadata, OnTextDelta
from livetutor.services.llm.rate_limiter import TokenBucketRateLimiter
from livetutor.services.llm.token_counter import estimate_llama_tokens, estimate_message_tokens

if TYPE_CHECKING:
    from livetutor.core.profiles import ToolDefinition

logger: Any = get_logger(__name__)

# Groq developer tier limits for the vision model
GROQ_TPM = 30000
GROQ_RPM = 30

T = TypeVar("T")


class GroqResponseGenerator:
    """Streams chat completions from Groq, one request in flight at a time.

    abort() cancels whichever step is running (the rate limiter wait or the
    task that consumes the stream); generate() then raises
    GenerationAbortedError.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        model: str | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._model = model or self._settings.groq_model
        self._client: AsyncGroq | None = None
        self._rate_limiter = TokenBucketRateLimiter(
            tokens_per_minute=GROQ_TPM,
            requests_per_minute=GROQ_RPM,
        )
        self._active_task: asyncio.Task[Any] | None = None
        self._generating = False
        self._abort_requested = False
        self.last_metadata: GenerationMetadata | None = None

    @property
    def client(self) -> AsyncGroq:
        """Lazy initialization of AsyncGroq client."""
        if self._client is None:
            self._client = AsyncGroq(
                api_key=self._settings.groq_api_key.get_secret_value(),
                timeout=30.0,
                max_retries=2,
            )
        return self._client

    @property
    def in_flight(self) -> bool:
        return self._generating

    async def generate(
        self,
        system_prompt: str,
        history: Sequence[Turn],
        tools: Sequence[ToolDefinition],
        images: Sequence[ImageBlock] = (),
        on_text_delta: OnTextDelta | None = None,
    ) -> Turn:
        """Stream one completion and return the assistant turn.

        Raises:
            GenerationAbortedError: When abort() cancelled the request
            LLMRateLimitError: When rate limit exceeded
            LLMConnectionError: When API unreachable
            LLMAuthenticationError: When API key invalid
            LLMServiceError: For other API errors
        """
        if self.in_flight:
            raise LLMServiceError("A generation is already in flight")

        api_messages = self.format_messages(system_prompt, history, images)
        api_tools = self.format_tools(tools)

        estimated_total = estimate_message_tokens(api_messages) + self._settings.llm_max_tokens
        metadata = GenerationMetadata(model=self._model)

        self._generating = True
        self._abort_requested = False
        try:
            await self._run_abortable(self._rate_limiter.acquire(estimated_total))
            text, tool_uses = await self._run_abortable(
                self._stream(api_messages, api_tools, on_text_delta, metadata, estimated_total)
            )
        finally:
            self._generating = False

        self.last_metadata = metadata
        content: list[Any] = []
        if text:
            content.append(TextBlock(text))
        content.extend(tool_uses)
        return Turn(role=Role.ASSISTANT, content=content)

    def abort(self) -> None:
        if not self._generating:
            return
        self._abort_requested = True
        if self._active_task is not None and not self._active_task.done():
            self._active_task.cancel()

    async def _run_abortable(self, coro: Coroutine[Any, Any, T]) -> T:
        """Await one step of a generation as a task abort() can cancel."""
        if self._abort_requested:
            coro.close()
            logger.debug("Generation aborted before request")
            raise GenerationAbortedError("Generation aborted")

        task = asyncio.create_task(coro)
        self._active_task = task
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            logger.debug("Generation aborted mid-stream")
            raise GenerationAbortedError("Generation aborted") from None
        finally:
            self._active_task = None

    async def _stream(
        self,
        api_messages: list[dict],
        api_tools: list[dict],
        on_text_delta: OnTextDelta | None,
        metadata: GenerationMetadata,
        estimated_total: int,
    ) -> tuple[str, list[ToolUseBlock]]:
        """Consume the stream, forwarding text and accumulating tool calls."""
        start_time = time.perf_counter()
        first_token_received = False
        text_parts: list[str] = []
        # Tool call fragments arrive keyed by index
        calls: dict[int, dict[str, str]] = {}

        request: dict[str, Any] = {
            "messages": api_messages,
            "model": self._model,
            "temperature": self._settings.llm_temperature,
            "max_tokens": self._settings.llm_max_tokens,
            "stream": True,
        }
        if api_tools:
            request["tools"] = api_tools
            request["tool_choice"] = "auto"

        try:
            stream = await self.client.chat.completions.create(**request)

            async for chunk in stream:  # type: ignore[union-attr]
                if not first_token_received:
                    metadata.first_token_ms = (time.perf_counter() - start_time) * 1000
                    first_token_received = True
                    LLM_FIRST_TOKEN.observe(metadata.first_token_ms / 1000)
                    logger.debug(f"First token latency: {metadata.first_token_ms:.1f}ms")

                if chunk.choices:
                    choice = chunk.choices[0]
                    delta = choice.delta

                    if delta.content:
                        text_parts.append(delta.content)
                        if on_text_delta is not None:
                            await on_text_delta(delta.content)

                    for call in delta.tool_calls or []:
                        slot = calls.setdefault(call.index, {"id": "", "name": "", "arguments": ""})
                        if call.id:
                            slot["id"] = call.id
                        if call.function is not None:
                            if call.function.name:
                                slot["name"] += call.function.name
                            if call.function.arguments:
                                slot["arguments"] += call.function.arguments

                    if choice.finish_reason:
                        metadata.finish_reason = choice.finish_reason

                # Groq provides usage in x_groq extension
                if (
                    hasattr(chunk, "x_groq")
                    and chunk.x_groq
                    and hasattr(chunk.x_groq, "usage")
                    and chunk.x_groq.usage
                ):
                    usage = chunk.x_groq.usage
                    metadata.prompt_tokens = usage.prompt_tokens
                    metadata.completion_tokens = usage.completion_tokens
                    metadata.total_tokens = usage.total_tokens
                    self._rate_limiter.record_usage(estimated_total, usage.total_tokens)

        except groq.RateLimitError as e:
            logger.warning(f"Groq rate limit hit: {e}")
            raise LLMRateLimitError(
                "Rate limit exceeded",
                retry_after=self._extract_retry_after(e),
            ) from e

        except groq.APIConnectionError as e:
            logger.error(f"Groq connection error: {e.__cause__}")
            raise LLMConnectionError("Failed to connect to Groq API") from e

        except groq.AuthenticationError as e:
            logger.error("Groq authentication failed")
            raise LLMAuthenticationError("Invalid Groq API key") from e

        except groq.APIStatusError as e:
            logger.error(f"Groq API error: {e.status_code} - {e.message}")
            raise LLMServiceError(f"Groq API error: {e.status_code}") from e

        tool_uses = [self._to_tool_use(idx, calls[idx]) for idx in sorted(calls)]
        metadata.tool_calls = len(tool_uses)
        return "".join(text_parts), tool_uses

    def _to_tool_use(self, index: int, call: dict[str, str]) -> ToolUseBlock:
        try:
            arguments = json.loads(call["arguments"]) if call["arguments"] else {}
        except json.JSONDecodeError:
            logger.warning(f"Unparseable arguments for tool {call['name']}: {call['arguments']!r}")
            arguments = {}
        if not isinstance(arguments, dict):
            arguments = {}
        return ToolUseBlock(
            id=call["id"] or f"call_{index}",
            name=call["name"],
            input=arguments,
        )

    def format_messages(
        self,
        system_prompt: str,
        history: Sequence[Turn],
        images: Sequence[ImageBlock] = (),
    ) -> list[dict]:
        """Translate turns into Groq (OpenAI-style) chat messages.

        Tool-result turns become one `tool` message per result. Extra
        `images` are attached to the final user message.
        """
        api_messages: list[dict] = [{"role": "system", "content": system_prompt}]

        for turn in history:
            if turn.is_tool_result:
                for result in turn.tool_results_blocks:
                    api_messages.append({
                        "role": "tool",
                        "tool_call_id": result.tool_use_id,
                        "content": result.content,
                    })
                continue

            if turn.role == Role.ASSISTANT:
                message: dict[str, Any] = {"role": "assistant", "content": turn.text}
                tool_uses = turn.tool_uses
                if tool_uses:
                    message["tool_calls"] = [
                        {
                            "id": use.id,
                            "type": "function",
                            "function": {"name": use.name, "arguments": json.dumps(use.input)},
                        }
                        for use in tool_uses
                    ]
                api_messages.append(message)
                continue

            if turn.has_images:
                api_messages.append({"role": "user", "content": self._format_parts(turn.content)})
            else:
                api_messages.append({"role": "user", "content": turn.text})

        if images:
            self._attach_images(api_messages, images)

        return api_messages

    def _format_parts(self, blocks: Sequence[Any]) -> list[dict]:
        parts: list[dict] = []
        for block in blocks:
            if isinstance(block, ImageBlock):
                parts.append({
                    "type": "image_url",
                    "image_url": {"url": f"data:{block.media_type};base64,{block.data}"},
                })
            elif isinstance(block, TextBlock):
                parts.append({"type": "text", "text": block.text})
        return parts

    def _attach_images(self, api_messages: list[dict], images: Sequence[ImageBlock]) -> None:
        for message in reversed(api_messages):
            if message["role"] != "user":
                continue
            content = message["content"]
            if isinstance(content, str):
                content = [{"type": "text", "text": content}]
            message["content"] = self._format_parts(images) + content
            return

    def format_tools(self, tools: Sequence[ToolDefinition]) -> list[dict]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema,
                },
            }
            for tool in tools
        ]

    async def extract_json(
        self,
        messages: list[dict],
        *,
        model: str | None = None,
        max_tokens: int = 2048,
        temperature: float = 0.2,
    ) -> dict:
        """Run a non-streaming completion in JSON mode.

        Raises:
            LLMRateLimitError: When rate limit exceeded
            LLMConnectionError: When API unreachable
            LLMServiceError: For other API errors or JSON parse failure
        """
        estimated_input_tokens = sum(estimate_llama_tokens(m["content"]) for m in messages)
        estimated_total = estimated_input_tokens + max_tokens
        await self._rate_limiter.acquire(estimated_total)

        try:
            response = await self.client.chat.completions.create(  # type: ignore[call-overload]
                messages=messages,
                model=model or self._model,
                temperature=temperature,
                max_tokens=max_tokens,
                response_format={"type": "json_object"},
            )

            content = response.choices[0].message.content
            if not content:
                raise LLMServiceError("Empty response from Groq JSON completion")

            if response.usage:
                self._rate_limiter.record_usage(estimated_total, response.usage.total_tokens)

            result: dict[str, Any] = json.loads(content)
            return result

        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse JSON from Groq response: {e}")
            raise LLMServiceError(f"Invalid JSON in response: {e}") from e

        except groq.RateLimitError as e:
            logger.warning(f"Groq rate limit hit during JSON completion: {e}")
            raise LLMRateLimitError(
                "Rate limit exceeded",
                retry_after=self._extract_retry_after(e),
            ) from e

        except groq.APIConnectionError as e:
            logger.error(f"Groq connection error during JSON completion: {e.__cause__}")
            raise LLMConnectionError("Failed to connect to Groq API") from e

        except groq.AuthenticationError as e:
            logger.error("Groq authentication failed during JSON completion")
            raise LLMAuthenticationError("Invalid Groq API key") from e

        except groq.APIStatusError as e:
            logger.error(f"Groq API error during JSON completion: {e.status_code} - {e.message}")
            raise LLMServiceError(f"Groq API error: {e.status_code}") from e

    def _extract_retry_after(self, error: groq.RateLimitError) -> float:
        """Extract retry-after from rate limit error."""
        if hasattr(error, "response") and error.response:
            retry_after = error.response.headers.get("retry-after")
            if retry_after:
                try:
                    return float(retry_after)
                except ValueError:
                    pass
        return 60.0

    async def health_check(self) -> bool:
        """Check if Groq API is reachable."""
        try:
            response = await self.client.chat.completions.create(
                messages=[{"role": "user", "content": "hi"}],
                model=self._model,
                max_tokens=1,
            )
            return bool(response.choices)
        except Exception as e:
            logger.warning(f"Groq health check failed: {e}")
            return False

    async def close(self) -> None:
        """Abort any stream and close the client connection."""
        self.abort()
        if self._client:
            await self._client.close()
            self._client = None
