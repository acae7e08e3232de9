"""Prometheus metrics for livetutor.

Provides metrics for monitoring session quality, latency, and tool usage.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

# =============================================================================
# Counters
# =============================================================================

SESSION_TOTAL = Counter(
    "livetutor_session_total",
    "Total tutoring sessions handled",
    ["outcome", "tool_type"],
)

INTERRUPTIONS_TOTAL = Counter(
    "livetutor_interruptions_total",
    "Total interruptions of an active response",
    ["reason"],
)

TOOL_CALLS_TOTAL = Counter(
    "livetutor_tool_calls_total",
    "Tool invocations by the tutor model",
    ["tool", "outcome"],
)

PROACTIVE_CHECKS_TOTAL = Counter(
    "livetutor_proactive_checks_total",
    "Proactive screen checks by outcome",
    ["outcome"],
)

STALE_AUDIO_DROPPED = Counter(
    "livetutor_stale_audio_dropped_total",
    "Synthesized audio chunks discarded because their cycle was interrupted",
)

# =============================================================================
# Gauges
# =============================================================================

ACTIVE_SESSIONS = Gauge(
    "livetutor_active_sessions",
    "Currently active tutoring sessions",
)

# =============================================================================
# Histograms
# =============================================================================

SESSION_DURATION = Histogram(
    "livetutor_session_duration_seconds",
    "Session duration in seconds",
    buckets=[30, 60, 300, 600, 1200, 1800, 3600, 7200],
)

LLM_FIRST_TOKEN = Histogram(
    "livetutor_llm_first_token_seconds",
    "LLM time to first token",
    buckets=[0.1, 0.25, 0.5, 0.75, 1.0, 1.5, 2.0, 3.0, 5.0],
)

TTS_FIRST_CHUNK = Histogram(
    "livetutor_tts_first_chunk_seconds",
    "TTS time to first audio chunk",
    buckets=[0.05, 0.1, 0.25, 0.5, 0.75, 1.0, 1.5, 2.0],
)

# =============================================================================
# Helper Functions
# =============================================================================


def record_session_metrics(
    outcome: str,
    tool_type: str,
    duration_seconds: float,
) -> None:
    """Record metrics for a finished session.

    Args:
        outcome: Session outcome (completed, disconnected, error)
        tool_type: Tutor profile the session used
        duration_seconds: Total session duration
    """
    SESSION_TOTAL.labels(outcome=outcome, tool_type=tool_type).inc()
    SESSION_DURATION.observe(duration_seconds)


def record_tool_call(tool: str, success: bool) -> None:
    TOOL_CALLS_TOTAL.labels(tool=tool, outcome="ok" if success else "error").inc()


def record_proactive_check(outcome: str) -> None:
    """Outcome is one of: committed, no_guidance, cancelled, error."""
    PROACTIVE_CHECKS_TOTAL.labels(outcome=outcome).inc()


def get_metrics() -> bytes:
    """Generate Prometheus metrics output.

    Returns:
        Metrics in Prometheus text exposition format.
    """
    return generate_latest()


def get_content_type() -> str:
    """Get the content type for Prometheus metrics.

    Returns:
        Content-Type header value for Prometheus metrics.
    """
    return CONTENT_TYPE_LATEST
