"""FastAPI application entry point.

livetutor - real-time voice and screen-aware tutoring for creative tools.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from livetutor import __version__
from livetutor.api.routes import health, metrics
from livetutor.api.websocket.session_stream import session_registry, session_stream_endpoint
from livetutor.config import get_settings
from livetutor.logging_config import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler.

    Startup:
    - Initialize logging

    Shutdown:
    - Stop active tutoring sessions
    """
    settings = get_settings()

    setup_logging(
        level=settings.log_level,
        enable_file=settings.is_production,
    )

    yield

    await session_registry.close_all()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="LiveTutor API",
        description="Real-time voice and vision tutoring sessions",
        version=__version__,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url="/redoc" if not settings.is_production else None,
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check routes
    app.include_router(health.router, tags=["Health"])

    # Metrics endpoint for Prometheus scraping
    app.include_router(metrics.router, tags=["Observability"])

    # WebSocket endpoint for live sessions
    @app.websocket("/ws/session")
    async def session_ws(websocket: WebSocket):
        """WebSocket endpoint for one tutoring client."""
        await session_stream_endpoint(websocket)

    return app


# Application instance
app = create_app()
