import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from .app_settings import app_settings

from .routes import explorer, health

from .dependencies.query_service import get_query_client, get_session_store
from .tasks.evict_sessions import setup_session_scheduler

log_level = "DEBUG" if app_settings.debug else app_settings.log_level.upper()
logging.basicConfig(level=getattr(logging, log_level, logging.INFO))
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    logger.info("Starting Holter Explorer Service")

    try:
        session_store = app.dependency_overrides.get(get_session_store, get_session_store)()
        app.state.session_store = session_store

        # Setup idle session sweep
        scheduler = setup_session_scheduler(session_store)
        scheduler.start()
        app.state.scheduler = scheduler
        logger.info(f"Session scheduler started (query service at {app_settings.query_service_url})")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}")
        raise

    yield

    # Shutdown
    logger.info("Shutting down Holter Explorer Service")
    if hasattr(app.state, 'scheduler'):
        app.state.scheduler.shutdown()
        logger.info("Session scheduler stopped")
    if hasattr(app.state, "session_store"):
        app.state.session_store.close_all()
    await app.dependency_overrides.get(get_query_client, get_query_client)().aclose()
    logger.info("Query service client closed")


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""
    app = FastAPI(
        title="Holter Explorer API",
        version="0.1.0",
        description="Multi-resolution drill-down and downsampled waveforms of ECG pod recordings",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.get_allowed_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # GZip middleware
    if app_settings.gzip_enabled:
        app.add_middleware(
            GZipMiddleware,
            minimum_size=app_settings.gzip_min_size,
            compresslevel=app_settings.gzip_level,
        )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(explorer.router, tags=["Explorer"])

    return app


# Application instance
app = create_app()
