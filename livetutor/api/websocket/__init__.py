"""WebSocket handlers for live tutoring sessions.

This module provides the client-facing session socket:
- session_stream_endpoint: Main WebSocket handler
- session_registry: Global session registry
"""

from livetutor.api.websocket.session_stream import (
    SessionCapacityError,
    SessionEntry,
    SessionRegistry,
    WebSocketTransport,
    build_orchestrator,
    session_registry,
    session_stream_endpoint,
)

__all__ = [
    "session_stream_endpoint",
    "session_registry",
    "SessionRegistry",
    "SessionEntry",
    "SessionCapacityError",
    "WebSocketTransport",
    "build_orchestrator",
]
