"""Health check endpoints.

Provides:
- Basic health check (GET /health)
- Detailed health check with provider configuration (GET /health/detailed)
"""

from pathlib import Path

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from livetutor import __version__
from livetutor.api.websocket.session_stream import session_registry
from livetutor.config import Settings, get_settings
from livetutor.core.profiles import BUNDLED_PROFILES_DIR

router = APIRouter()


class HealthResponse(BaseModel):
    """Basic health check response."""

    status: str


class DetailedHealthResponse(BaseModel):
    """Detailed health check response."""

    status: str
    checks: dict[str, str]
    active_sessions: int
    version: str


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Basic health check endpoint.

    Returns:
        Simple status indicating the API is running.
    """
    return HealthResponse(status="healthy")


@router.get("/health/detailed", response_model=DetailedHealthResponse)
async def detailed_health_check(
    settings: Settings = Depends(get_settings),
) -> DetailedHealthResponse:
    """Detailed health check including provider configuration.

    Checks:
    - Provider API keys are present (no external calls are made)
    - The default tutor profile exists
    - Session capacity

    Returns:
        Status with individual component checks.
    """
    checks = {}

    # External services (just check if configured, don't call APIs)
    checks["groq"] = "configured" if settings.groq_api_key.get_secret_value() else "missing"
    checks["deepgram"] = (
        "configured" if settings.deepgram_api_key.get_secret_value() else "missing"
    )
    checks["elevenlabs"] = (
        "configured" if settings.elevenlabs_api_key.get_secret_value() else "missing"
    )

    profiles_dir = Path(settings.profiles_dir) if settings.profiles_dir else BUNDLED_PROFILES_DIR
    default_profile = profiles_dir / f"{settings.default_tool_type}.yaml"
    checks["default_profile"] = "ok" if default_profile.exists() else "missing"

    active = session_registry.active_count
    checks["capacity"] = "full" if active >= settings.max_concurrent_sessions else "ok"

    # Overall status
    healthy = all(value in ("configured", "ok") for value in checks.values())

    return DetailedHealthResponse(
        status="healthy" if healthy else "degraded",
        checks=checks,
        active_sessions=active,
        version=__version__,
    )
