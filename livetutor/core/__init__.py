"""Core conversation engine: history, state machine, orchestration."""
