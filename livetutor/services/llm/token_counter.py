"""Token estimation for rate limiting.

Groq doesn't provide a tokenizer, so we estimate based on typical Llama
tokenization patterns. Actual usage comes from the API response.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

# Llama 4 vision tiles a screenshot into a fixed budget of patches; counting
# each image as a flat block is close enough for the limiter.
IMAGE_TOKEN_ESTIMATE = 1600


def estimate_llama_tokens(text: str) -> int:
    """Estimate token count for Llama models.

    Uses a simple heuristic: ~4 characters per token for English prose,
    ~3 for code-like text with many symbols (shortcuts, JSON tool results).

    Args:
        text: Input text to estimate

    Returns:
        Estimated token count
    """
    if not text:
        return 0

    symbols = sum(1 for char in text if not char.isalnum() and not char.isspace())
    ratio = 3.0 if symbols > len(text) * 0.15 else 4.0

    # Add 10% buffer for safety
    return int((len(text) / ratio) * 1.1) + 1


def estimate_message_tokens(messages: Iterable[dict[str, Any]]) -> int:
    """Estimate tokens for OpenAI-style chat messages, images included."""
    total = 0
    for message in messages:
        content = message.get("content")
        if isinstance(content, str):
            total += estimate_llama_tokens(content)
        elif isinstance(content, list):
            for part in content:
                if part.get("type") == "image_url":
                    total += IMAGE_TOKEN_ESTIMATE
                else:
                    total += estimate_llama_tokens(part.get("text", ""))
        for call in message.get("tool_calls") or []:
            total += estimate_llama_tokens(call["function"]["arguments"])
    return total
