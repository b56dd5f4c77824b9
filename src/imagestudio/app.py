"""Image Studio HTTP service: generation routes plus a health check."""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from imagestudio.api.routes import generations
from imagestudio.core import timezone  # noqa: F401
from imagestudio.core.config import Settings, configure_logging
from imagestudio.core.database import dispose_db_session, setup_db_session
from imagestudio.services.image_studio.events import EventBroadcaster, log_event_sink
from imagestudio.services.image_studio.orchestrator import GenerationOrchestrator
from imagestudio.services.image_studio.store import GenerationStore
from imagestudio.uow import create_uow_factory

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the orchestrator on startup and stop its tasks on shutdown.

    Generations left queued or in progress by a previous process are failed
    before the first request is served.
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    broadcaster = EventBroadcaster([log_event_sink])
    orchestrator = GenerationOrchestrator(
        GenerationStore(create_uow_factory(session_factory)), broadcaster, settings
    )

    app.state.session_factory = session_factory
    app.state.broadcaster = broadcaster
    app.state.orchestrator = orchestrator

    try:
        await orchestrator.recover_orphaned_generations()
    except Exception as e:
        logger.error(
            "startup.orphan_recovery_failed",
            error=str(e),
            error_type=type(e).__name__,
            message="Orphaned generations stay in their last status",
        )

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        providers=[p.id for p in settings.providers if p.enabled],
    )

    yield

    logger.info("application.shutdown", active_generations=orchestrator.active_count)
    await orchestrator.shutdown()
    await dispose_db_session(session_factory)


def create_app() -> FastAPI:
    """Build the FastAPI app with CORS, generation routes and /health."""
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Image Studio API",
        description="Queue-based image generation across hosted providers",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(generations.router)

    @app.get("/health")
    async def health_check(response: Response):
        """Report database reachability and the number of running generations.

        Returns:
            200: {"status": "healthy", "active_generations": n}
            503: {"status": "unhealthy", "error": {...}}
        """
        try:
            async with app.state.session_factory() as session:
                await session.execute(text("SELECT 1"))
        except Exception as e:
            logger.error("health_check.failed", error=str(e), error_type=type(e).__name__)
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {"type": type(e).__name__, "message": str(e)},
            }

        return {
            "status": "healthy",
            "active_generations": app.state.orchestrator.active_count,
        }

    return app


app = create_app()
