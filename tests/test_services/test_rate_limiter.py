"""Tests for rate limiter."""

import time

import pytest

from livetutor.services.llm.rate_limiter import TokenBucketRateLimiter


class TestTokenBucketRateLimiter:
    """Test suite for rate limiter."""

    @pytest.fixture
    def limiter(self):
        """Create rate limiter with test settings."""
        return TokenBucketRateLimiter(
            tokens_per_minute=100,
            requests_per_minute=10,
        )

    def test_init_full_buckets(self, limiter):
        """Test that buckets start full."""
        assert limiter.available_tokens == 100

    @pytest.mark.asyncio
    async def test_acquire_within_limit(self, limiter):
        """Test acquiring tokens within limit."""
        start = time.monotonic()
        await limiter.acquire(50)
        elapsed = time.monotonic() - start

        # Should not wait
        assert elapsed < 0.1

    @pytest.mark.asyncio
    async def test_acquire_depletes_bucket(self, limiter):
        """Test that acquiring depletes the bucket."""
        await limiter.acquire(80)
        assert limiter.available_tokens < 30

    @pytest.mark.asyncio
    async def test_record_usage_refunds_overestimate(self, limiter):
        """Unused reservation goes back into the bucket."""
        await limiter.acquire(80)
        limiter.record_usage(80, 20)
        assert limiter.available_tokens >= 79

    @pytest.mark.asyncio
    async def test_record_usage_never_overfills(self, limiter):
        limiter.record_usage(500, 0)
        assert limiter.available_tokens == 100

    @pytest.mark.asyncio
    async def test_wait_is_capped(self):
        limiter = TokenBucketRateLimiter(
            tokens_per_minute=60, requests_per_minute=10, max_wait=0.05
        )
        start = time.monotonic()
        await limiter.acquire(600)
        assert time.monotonic() - start < 1.0

    def test_calculate_wait_no_deficit(self, limiter):
        """Test wait calculation when no deficit."""
        assert limiter._calculate_wait(50, 100, 100) == 0.0

    def test_calculate_wait_with_deficit(self, limiter):
        """Need 60, have 40, rate is 100/min: 20 tokens take 12 seconds."""
        assert limiter._calculate_wait(60, 40, 100) == pytest.approx(12.0)
