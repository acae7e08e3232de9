"""Tutor profiles loaded from YAML.

A profile configures one design tool the tutor can coach: system prompt,
voice, recurring screen check timing and the tools the model may call.
Bundled profiles live in livetutor/profiles/<tool_type>.yaml.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, ValidationError

from livetutor.exceptions import FatalConfigurationError
from livetutor.logging_config import get_logger
from livetutor.services.tts.protocol import VoiceSettings

logger: Any = get_logger(__name__)

BUNDLED_PROFILES_DIR = Path(__file__).resolve().parent.parent / "profiles"


class VoiceConfig(BaseModel):
    voice_id: str | None = None
    stability: float = Field(default=0.5, ge=0.0, le=1.0)
    similarity_boost: float = Field(default=0.75, ge=0.0, le=1.0)

    def to_settings(self) -> VoiceSettings:
        return VoiceSettings(
            voice_id=self.voice_id,
            stability=self.stability,
            similarity_boost=self.similarity_boost,
        )


class RecurringCheckConfig(BaseModel):
    enabled: bool = True
    interval_seconds: float = Field(default=3.0, gt=0)
    idle_threshold_seconds: float = Field(default=10.0, ge=0)


class ToolDefinition(BaseModel):
    """Tool advertised to the model. `input_schema` is JSON Schema."""

    name: str
    description: str
    input_schema: dict[str, Any] = Field(default_factory=lambda: {"type": "object"})


class TutorProfile(BaseModel):
    tool_type: str
    display_name: str
    screen_label: str = Field(description="How the check prompt refers to the user's screen")
    tutorial_subject: str = Field(description="Subject passed to the tutorial generator")
    system_prompt: str
    voice: VoiceConfig = Field(default_factory=VoiceConfig)
    recurring_check: RecurringCheckConfig = Field(default_factory=RecurringCheckConfig)
    tools: list[ToolDefinition] = Field(default_factory=list)


def load_tutor_profile(tool_type: str, profiles_dir: str | Path | None = None) -> TutorProfile:
    """Load and validate the profile for `tool_type`.

    Raises:
        FatalConfigurationError: Unknown tool type or invalid profile file.
    """
    base = Path(profiles_dir) if profiles_dir else BUNDLED_PROFILES_DIR
    if not tool_type or not tool_type.replace("_", "").replace("-", "").isalnum():
        raise FatalConfigurationError(f"Invalid tool type: {tool_type!r}")

    path = base / f"{tool_type}.yaml"
    if not path.exists():
        raise FatalConfigurationError(f"Unknown tool type: {tool_type}")

    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise FatalConfigurationError(f"Invalid profile file {path}: {e}") from e

    raw.setdefault("tool_type", tool_type)
    try:
        profile = TutorProfile.model_validate(raw)
    except ValidationError as e:
        raise FatalConfigurationError(f"Invalid profile {tool_type}: {e}") from e

    logger.info(f"Loaded tutor profile: {profile.tool_type} ({len(profile.tools)} tools)")
    return profile


@lru_cache(maxsize=16)
def cached_tutor_profile(tool_type: str, profiles_dir: str | None = None) -> TutorProfile:
    """Profiles are read-only once loaded; cache them per process."""
    return load_tutor_profile(tool_type, profiles_dir)
