"""livetutor - real-time voice and vision tutoring sessions."""

__version__ = "0.1.0"
