"""LLM services (Groq)."""

from livetutor.services.llm.exceptions import (
    GenerationAbortedError,
    LLMAuthenticationError,
    LLMConnectionError,
    LLMRateLimitError,
    LLMServiceError,
)
from livetutor.services.llm.groq import GroqResponseGenerator
from livetutor.services.llm.protocol import GenerationMetadata, OnTextDelta, ResponseGenerator
from livetutor.services.llm.rate_limiter import TokenBucketRateLimiter
from livetutor.services.llm.token_counter import estimate_llama_tokens, estimate_message_tokens

__all__ = [
    # Protocol and types
    "ResponseGenerator",
    "GenerationMetadata",
    "OnTextDelta",
    # Implementation
    "GroqResponseGenerator",
    # Utilities
    "TokenBucketRateLimiter",
    "estimate_llama_tokens",
    "estimate_message_tokens",
    # Exceptions
    "LLMServiceError",
    "LLMRateLimitError",
    "LLMConnectionError",
    "LLMAuthenticationError",
    "GenerationAbortedError",
]
