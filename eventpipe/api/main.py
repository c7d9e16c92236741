"""
FastAPI application entry point.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from eventpipe import __version__
from eventpipe.api.routes import health_router, jobs_router
from eventpipe.config import get_settings
from eventpipe.db.connection import Database
from eventpipe.errors import BackendUnavailable
from eventpipe.observability.logging import setup_logging
from eventpipe.observability.metrics import setup_metrics
from eventpipe.observability.tracing import instrument_fastapi, setup_tracing
from eventpipe.queue.backend import JobQueue
from eventpipe.queue.postgres import PostgresJobQueue

logger = logging.getLogger(__name__)


def create_app(queue: JobQueue | None = None) -> FastAPI:
    """
    Create and configure the FastAPI application.
    
    Args:
        queue: Job queue to serve. When omitted, a PostgreSQL queue is
            opened on startup and closed on shutdown.
    
    Returns:
        FastAPI: The configured application instance.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = queue is None
        if owned:
            setup_logging("api")
            setup_tracing()
            app.state.queue = PostgresJobQueue(Database.from_settings())
        else:
            app.state.queue = queue
        setup_metrics()

        logger.info("Application started")

        yield

        if owned:
            await app.state.queue.close()
        logger.info("Application shutdown")

    app = FastAPI(
        title="Event Pipeline Operator API",
        description="Inspect queued and failed event jobs",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    @app.exception_handler(BackendUnavailable)
    async def backend_unavailable_handler(request: Request, exc: BackendUnavailable) -> JSONResponse:
        logger.error("Job store unavailable", extra={"path": request.url.path, "error": str(exc)})
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"error": "backend_unavailable", "detail": exc.message},
        )

    app.include_router(health_router)
    app.include_router(jobs_router)

    if queue is None:
        instrument_fastapi(app)

    return app


def run() -> None:
    """Run the API server."""
    settings = get_settings()

    uvicorn.run(
        create_app(),
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
