"""Planning Poker Backend Application.

Main entry point for the planning poker server.  Participants connect over
a WebSocket, join a room by name, cast hidden estimates and reveal them
together.

Modules:
    - rooms: room store, participant registry, redaction, presence and the
      WebSocket protocol
    - config: YAML-backed settings

Run with:
    uvicorn planning_poker.main:app --host 0.0.0.0 --port 8080
    python -m planning_poker.main   (host/port from poker.settings.yaml)
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from planning_poker import __version__
from planning_poker.config import AppConfig, get_config
from planning_poker.rooms.router import router as rooms_router
from planning_poker.rooms.service import PokerService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
for _noisy in (
    "uvicorn.access",
    "websockets",
    "httpx",
    "httpcore",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Settings to use.  Defaults to :func:`get_config`, resolved
            when the application starts.

    Returns:
        FastAPI application with the room service wired into its lifespan.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup/shutdown events."""
        # Startup
        app_config = config or get_config()

        configured_level = getattr(logging, app_config.logging.level.upper(), None)
        if configured_level is not None:
            logging.getLogger().setLevel(configured_level)
            logger.info("Root logger level set to %s", app_config.logging.level.upper())

        service = PokerService(app_config)
        app.state.poker = service
        await service.start()

        yield  # Application runs here

        # Shutdown
        await service.stop()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Planning Poker API",
        description="Real-time planning poker rooms over WebSockets",
        version=__version__,
        lifespan=lifespan,
    )

    app.include_router(rooms_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok", "service": "planning-poker"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_config()
    uvicorn.run(
        "planning_poker.main:app",
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.logging.level.lower(),
    )
