"""Task Ledger main application."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from taskledger import __version__
from taskledger.api import router
from taskledger.api.deps import validate_auth_config
from taskledger.config import settings
from taskledger.db.base import close_db, init_db
from taskledger.events import EventBus
from taskledger.middleware.trace import trace_id_middleware
from taskledger.queue import QueueAdapter, build_queue_backend
from taskledger.tasks.worker import start_worker, stop_worker

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("taskledger")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting Task Ledger server...")
    logger.info(f"Environment: {settings.env.value}")
    logger.info(f"Queue backend: {settings.queue_backend.value}")

    # Validate authentication configuration (fail fast if insecure)
    validate_auth_config()

    # Initialize database
    await init_db()
    logger.info("Database initialized")

    backend = build_queue_backend()
    app.state.queue = QueueAdapter(backend)
    app.state.bus = EventBus()

    if settings.worker_enabled:
        await start_worker(app.state.queue, app.state.bus)
        logger.info("Queue worker started")

    yield

    # Cleanup
    logger.info("Shutting down Task Ledger server...")
    if settings.worker_enabled:
        await stop_worker()
    await app.state.bus.drain()
    await backend.close()
    await close_db()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Task Ledger",
    description="Multi-tenant ledger of requested actions with approval gating and delayed execution",
    version=__version__,
    lifespan=lifespan,
)

# Trace ID middleware (correlation across logs/events)
app.middleware("http")(trace_id_middleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allowed_methods,
    allow_headers=settings.cors_allowed_headers,
)

# Include API router
app.include_router(router)


def main():
    """Entry point for the application."""
    uvicorn.run(
        "taskledger.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
