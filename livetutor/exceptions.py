"""Session-level error taxonomy.

Provider packages derive their base errors from TransientProviderError so the
orchestrator can treat any of them as a recoverable stream failure.
"""


class LiveTutorError(Exception):
    """Base exception for livetutor."""

    pass


class TransientProviderError(LiveTutorError):
    """Network or parse failure in an external stream. Never ends the session."""

    pass


class ProtocolViolation(LiveTutorError):
    """Conversation history breaks user/assistant alternation."""

    def __init__(self, message: str, index: int) -> None:
        super().__init__(message)
        self.index = index


class ToolExecutionError(LiveTutorError):
    """Raised by a tool handler; converted into an error-shaped tool result."""

    pass


class FatalConfigurationError(LiveTutorError):
    """Required session setup is missing or invalid. Aborts session start."""

    pass
