"""Bounded exponential backoff for provider reconnects."""


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    """Delay before reconnect attempt number `attempt` (1-based)."""
    if attempt <= 0:
        return 0.0
    return min(maximum, base * (2 ** (attempt - 1)))
