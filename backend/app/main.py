"""FastAPI application entry point."""
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.errors import generic_exception_handler, media_ladder_error_handler
from app.api.v1.router import api_router
from app.core.config import settings
from app.core.logging import get_logger, setup_logging
from app.models.video import HealthResponse
from app.services.errors import MediaLadderError
from app.services.media_service import MediaService
from app.services.progress import ProgressTracker

# Setup logging
setup_logging()
logger = get_logger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan events.

    Args:
        app: FastAPI application instance

    Yields:
        None
    """
    logger.info(f"Starting application in {settings.ENV} mode")
    logger.info(f"API v1 prefix: {settings.API_V1_PREFIX}")
    logger.info(
        f"Fallback below {settings.FALLBACK_MAX_HEIGHT + 1}p, "
        f"secondary timeout {settings.SECONDARY_BACKEND_TIMEOUT_SECONDS}s, "
        f"formats cache TTL {settings.FORMATS_CACHE_TTL_SECONDS}s"
    )

    yield

    logger.info("Shutting down application")
    app.state.media_service.shutdown()


def create_app(
    media_service: MediaService | None = None,
    progress_tracker: ProgressTracker | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        media_service: Service to serve requests with; built from settings when omitted
        progress_tracker: Store for delivery progress records; a fresh one when omitted

    Returns:
        Configured FastAPI application instance
    """
    app = FastAPI(
        title="Media Ladder API",
        description="Ranked, gap-filled quality catalogs and streaming delivery for online videos",
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # One cache-owning service per process
    app.state.media_service = media_service or MediaService.create()
    app.state.progress_tracker = progress_tracker or ProgressTracker()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["Content-Disposition", "X-Delivery-Strategy", "X-Delivery-Id"],
    )

    app.add_exception_handler(MediaLadderError, media_ladder_error_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(api_router, prefix=settings.API_V1_PREFIX)

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["health"],
        summary="Health check",
        description="Check if the service is running",
    )
    async def health_check() -> HealthResponse:
        """Health check endpoint.

        Returns:
            Health status response
        """
        return HealthResponse(status="healthy", version=VERSION)

    return app


# Create application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=settings.is_development,
        log_level=settings.LOG_LEVEL.lower(),
    )
