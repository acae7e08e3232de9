"""Application configuration using Pydantic Settings.

All configuration is loaded from environment variables.
See .env.example for required variables.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
    )

    # ==========================================================================
    # API Keys
    # ==========================================================================
    groq_api_key: SecretStr = Field(description="Groq API key for LLM")
    deepgram_api_key: SecretStr = Field(description="Deepgram API key for STT")
    elevenlabs_api_key: SecretStr = Field(description="ElevenLabs API key for streaming TTS")

    # ==========================================================================
    # Application
    # ==========================================================================
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", description="Logging level"
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Deployment environment"
    )
    max_concurrent_sessions: int = Field(
        default=10,
        description="Maximum live tutoring sessions per process",
    )

    # ==========================================================================
    # LLM Configuration
    # ==========================================================================
    groq_model: str = Field(
        default="meta-llama/llama-4-scout-17b-16e-instruct",
        description="Groq model used for conversation (must accept images and tools)",
    )
    groq_tutorial_model: str = Field(
        default="llama-3.3-70b-versatile",
        description="Groq model used for tutorial generation",
    )
    llm_max_tokens: int = Field(default=1024, description="Max tokens per generation call")
    llm_temperature: float = Field(default=0.7, description="Sampling temperature")
    max_context_images: int = Field(
        default=5,
        description="Image-bearing turns kept in context; older ones are stripped to text",
    )
    main_max_tool_rounds: int | None = Field(
        default=None,
        description="Tool-call rounds allowed per user-driven cycle (None = unbounded)",
    )
    proactive_max_tool_rounds: int = Field(
        default=3,
        description="Tool-call rounds allowed per proactive screen check",
    )

    # ==========================================================================
    # STT Configuration
    # ==========================================================================
    deepgram_model: str = Field(default="nova-2", description="Deepgram streaming model")
    stt_language: str = Field(default="en", description="Primary spoken language")
    stt_sample_rate: int = Field(
        default=16000,
        description="Sample rate of PCM16 microphone audio sent by the client",
    )
    stt_endpointing_ms: int = Field(
        default=500,
        description="Silence before Deepgram marks an utterance as speech_final",
    )

    # ==========================================================================
    # TTS Configuration
    # ==========================================================================
    elevenlabs_voice_id: str = Field(
        default="21m00Tcm4TlvDq8ikWAM",
        description="Default ElevenLabs voice ID",
    )
    elevenlabs_model_id: str = Field(
        default="eleven_flash_v2_5",
        description="ElevenLabs model for stream-input synthesis",
    )
    elevenlabs_output_format: str = Field(
        default="pcm_24000",
        description="ElevenLabs output format forwarded to the client",
    )

    # ==========================================================================
    # Provider Reconnects
    # ==========================================================================
    reconnect_base_delay: float = Field(
        default=1.0, description="First reconnect delay in seconds"
    )
    reconnect_max_delay: float = Field(
        default=10.0, description="Upper bound for reconnect backoff in seconds"
    )
    tts_connect_attempts: int = Field(
        default=3, description="Connection attempts per synthesis stream"
    )

    # ==========================================================================
    # Tutor Profiles
    # ==========================================================================
    default_tool_type: str = Field(
        default="blender",
        description="Tutor profile used when the client does not send a toolType",
    )
    profiles_dir: str | None = Field(
        default=None,
        description="Directory with tutor profile YAML files. Defaults to the bundled profiles",
    )

    # ==========================================================================
    # Derived Properties
    # ==========================================================================
    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Use dependency injection in FastAPI:
        settings: Settings = Depends(get_settings)
    """
    return Settings()  # type: ignore[call-arg]  # loads from env
