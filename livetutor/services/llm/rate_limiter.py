"""Token bucket rate limiter for Groq."""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

from livetutor.logging_config import get_logger

logger: Any = get_logger(__name__)


@dataclass
class TokenBucketRateLimiter:
    """Token bucket rate limiter with both TPM and RPM limits.

    Tokens are reserved from an estimate before each request and the
    difference is settled once the API reports real usage.
    """

    tokens_per_minute: int = 30000
    requests_per_minute: int = 30
    max_wait: float = 30.0

    # Internal state
    _token_bucket: float = field(default=0.0, init=False, repr=False)
    _request_bucket: float = field(default=0.0, init=False, repr=False)
    _last_refill: float = field(default_factory=time.monotonic, init=False, repr=False)
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        # Start with full buckets
        self._token_bucket = float(self.tokens_per_minute)
        self._request_bucket = float(self.requests_per_minute)

    async def acquire(self, estimated_tokens: int) -> None:
        """Reserve tokens from the bucket, waiting if necessary.

        Waits are capped at `max_wait`; a live conversation is better served
        by an occasional 429 than by a long silence.
        """
        async with self._lock:
            self._refill()

            token_wait = self._calculate_wait(
                estimated_tokens, self._token_bucket, self.tokens_per_minute
            )
            request_wait = self._calculate_wait(
                1, self._request_bucket, self.requests_per_minute
            )

            wait_time = max(token_wait, request_wait)

            if wait_time > self.max_wait:
                logger.warning(f"Rate limit would require {wait_time:.1f}s wait, capping")
                wait_time = self.max_wait

            if wait_time > 0:
                logger.debug(f"Rate limiter waiting {wait_time:.2f}s")
                await asyncio.sleep(wait_time)
                self._refill()

            self._token_bucket -= estimated_tokens
            self._request_bucket -= 1

    def record_usage(self, estimated_tokens: int, actual_tokens: int) -> None:
        """Settle a reservation against the usage the API reported."""
        self._token_bucket = min(
            float(self.tokens_per_minute),
            self._token_bucket + (estimated_tokens - actual_tokens),
        )
        logger.debug(f"Tokens used: {actual_tokens} (estimated {estimated_tokens})")

    def _refill(self) -> None:
        """Refill buckets based on time elapsed."""
        now = time.monotonic()
        elapsed = now - self._last_refill
        self._last_refill = now

        token_refill = (elapsed / 60) * self.tokens_per_minute
        request_refill = (elapsed / 60) * self.requests_per_minute

        self._token_bucket = min(self.tokens_per_minute, self._token_bucket + token_refill)
        self._request_bucket = min(self.requests_per_minute, self._request_bucket + request_refill)

    def _calculate_wait(self, needed: float, available: float, rate: float) -> float:
        if available >= needed:
            return 0.0
        deficit = needed - available
        return (deficit / rate) * 60

    @property
    def available_tokens(self) -> int:
        """Current available tokens (for monitoring)."""
        self._refill()
        return int(self._token_bucket)
