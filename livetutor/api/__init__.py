"""HTTP and WebSocket surface of the tutoring service."""
