"""External provider adapters (LLM, STT, TTS)."""
