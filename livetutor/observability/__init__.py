"""Observability module for metrics."""

from livetutor.observability.metrics import (
    ACTIVE_SESSIONS,
    INTERRUPTIONS_TOTAL,
    LLM_FIRST_TOKEN,
    SESSION_DURATION,
    SESSION_TOTAL,
    TTS_FIRST_CHUNK,
    record_session_metrics,
)

__all__ = [
    "SESSION_TOTAL",
    "SESSION_DURATION",
    "ACTIVE_SESSIONS",
    "INTERRUPTIONS_TOTAL",
    "LLM_FIRST_TOKEN",
    "TTS_FIRST_CHUNK",
    "record_session_metrics",
]
