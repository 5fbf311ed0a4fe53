"""FastAPI application factory and entry point.

Creates the application instance, registers middleware and routers, and
wires the long-lived job machinery (store, browser session, worker, queue,
webhook notifier) in the application lifespan.

Usage::

    # Development server (from project root)
    uvicorn listing_harvester.api.main:app --reload

The queue lives inside this process, so run a single server process per
database.  Jobs left ``queued`` by a previous process are picked up by the
queue's recovery scan on startup.
"""

from __future__ import annotations

import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from listing_harvester import __version__
from listing_harvester.config.settings import get_settings
from listing_harvester.core.exceptions import JobNotFoundError, JobValidationError
from listing_harvester.core.logging_config import configure_logging, request_id_var

# Applied at import time so records emitted during app construction are
# captured; re-applied inside create_app() with the configured level.
configure_logging("INFO")

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(application: FastAPI) -> AsyncIterator[None]:
    """Build the job machinery on startup and drain it on shutdown.

    Shutdown waits for every active job to finish before the browser and
    the database engine are released.
    """
    from listing_harvester.adapters.registry import autodiscover, list_sites  # noqa: PLC0415
    from listing_harvester.core.database import async_engine  # noqa: PLC0415
    from listing_harvester.core.job_store import SqlJobStore  # noqa: PLC0415
    from listing_harvester.workers.browser import BrowserSession  # noqa: PLC0415
    from listing_harvester.workers.job_queue import JobQueue  # noqa: PLC0415
    from listing_harvester.workers.job_worker import JobWorker  # noqa: PLC0415
    from listing_harvester.workers.webhook import WebhookNotifier  # noqa: PLC0415

    settings = get_settings()
    autodiscover()

    store = SqlJobStore()
    browser = BrowserSession()
    worker = JobWorker(store, browser)
    queue = JobQueue(store, worker, browser=browser)
    WebhookNotifier().attach(queue.events)

    application.state.job_store = store
    application.state.job_worker = worker
    application.state.job_queue = queue

    await queue.start()
    logger.info(
        "application_startup",
        app_name=settings.app_name,
        debug=settings.debug,
        log_level=settings.log_level,
        sites=[info["site"] for info in list_sites()],
        concurrency=queue.concurrency,
    )
    try:
        yield
    finally:
        logger.info("application_shutdown", active_jobs=len(queue.active_ids))
        await queue.stop()
        await async_engine.dispose()


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------


def create_app() -> FastAPI:
    """Build and configure the FastAPI application.

    Separated from the module-level ``app`` singleton so that tests can
    call ``create_app()`` with a patched settings environment.  The lifespan
    only runs under a real ASGI server, so tests attach fakes to
    ``app.state`` or ``app.dependency_overrides`` instead.

    Returns:
        A fully configured ``FastAPI`` instance.
    """
    settings = get_settings()

    configure_logging(settings.log_level, console=settings.debug)

    application = FastAPI(
        title=settings.app_name,
        description=(
            "Queue-backed browser scraping of listing sites with pagination, "
            "detail enrichment, and CSV/JSON result files."
        ),
        version=__version__,
        debug=settings.debug,
        lifespan=lifespan,
    )

    # ---- Middleware --------------------------------------------------------

    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @application.middleware("http")
    async def request_logging_middleware(
        request: Request, call_next: Callable
    ) -> Response:
        """Log every request with its status and duration under a request id."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_var.set(request_id)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.perf_counter()
        response = None
        try:
            response = await call_next(request)
        except Exception as exc:
            logger.error("unhandled_exception", exc_info=exc)
            raise
        finally:
            elapsed_ms = round((time.perf_counter() - start) * 1000, 2)
            status_code = getattr(response, "status_code", 500)
            log_fn = logger.warning if status_code >= 400 else logger.info
            log_fn("request_complete", status_code=status_code, elapsed_ms=elapsed_ms)

        response.headers["X-Request-ID"] = request_id
        return response

    # ---- Domain error mapping ---------------------------------------------

    @application.exception_handler(JobNotFoundError)
    async def job_not_found_handler(request: Request, exc: JobNotFoundError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_404_NOT_FOUND,
            content={"detail": str(exc)},
        )

    @application.exception_handler(JobValidationError)
    async def job_validation_handler(request: Request, exc: JobValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={"detail": str(exc)},
        )

    # ---- Routers -----------------------------------------------------------

    from listing_harvester.api.routes import health as health_routes  # noqa: PLC0415
    from listing_harvester.api.routes import jobs as job_routes  # noqa: PLC0415

    application.include_router(health_routes.router)
    application.include_router(job_routes.router, prefix="/api")

    return application


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

app = create_app()
"""The FastAPI application instance passed to Uvicorn."""
