"""
FastAPI application for the inbox triage service.

This is the main application that wires the database, classification engine,
middleware and routers together.
"""

import threading
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ..classification.engine import ClassificationEngine
from ..config import settings
from ..db.database import get_database
from ..logging_config import setup_logging
from ..tasks import TaskDispatcher
from ..version import API_VERSION
from .middleware import (
    setup_error_handling_middleware,
    setup_exception_handlers,
    setup_logging_middleware,
    setup_metrics_middleware,
)
from .routes import health, inbox, queues, review, version
from .routes import settings as settings_routes

# Setup logging on module import
setup_logging()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup creates the database tables, the search-index dispatcher and the
    shared classification engine (unless already placed on ``app.state``).
    Shutdown interrupts in-flight backoff waits and stops the dispatcher.
    """
    db = getattr(app.state, "db", None) or get_database()
    db.create_all()
    app.state.db = db

    dispatcher = TaskDispatcher(max_workers=settings.background_workers, name="search-index")
    if getattr(app.state, "engine", None) is None:
        app.state.engine = ClassificationEngine(
            db,
            dispatcher=dispatcher,
            shutdown_event=threading.Event(),
        )
    engine: ClassificationEngine = app.state.engine

    logger.info(
        "inbox_triage_api_starting",
        version=API_VERSION,
        log_level=settings.log_level,
        provider=settings.llm_provider,
        model=engine.provider.model,
    )
    yield
    logger.info("inbox_triage_api_shutting_down")

    engine.shutdown_event.set()
    dispatcher.shutdown(wait=False)


def create_app() -> FastAPI:
    """
    Create and configure FastAPI application.

    Returns:
        Configured FastAPI app instance
    """
    app = FastAPI(
        title="Inbox Triage",
        description="AI classification of captured items with auto-filing, retry bookkeeping and swipe review",
        version=API_VERSION,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Custom middleware (order matters - first added = outermost)
    setup_error_handling_middleware(app)
    setup_logging_middleware(app)
    if settings.enable_metrics:
        setup_metrics_middleware(app)
    setup_exception_handlers(app)

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(version.router, prefix="/api/v1", tags=["Version"])
    app.include_router(inbox.router, prefix="/api/v1/inbox", tags=["Inbox"])
    app.include_router(queues.router, prefix="/api/v1/queues", tags=["Queues"])
    app.include_router(review.router, prefix="/api/v1/review", tags=["Review"])
    app.include_router(settings_routes.router, prefix="/api/v1/settings", tags=["Settings"])

    return app


# Create app instance
app = create_app()


def main() -> None:
    """
    Entry point for running the API server directly.

    For development use. In production, use uvicorn directly.
    """
    import uvicorn

    uvicorn.run(
        "inbox_triage.api.app:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
