"""Health check route for the Listing Harvester service.

``GET /health``
    Liveness plus dependency status: database reachability (``SELECT 1``
    through the job store), whether the job queue is running, and the
    registered site adapters.  Always returns HTTP 200; the ``status``
    field distinguishes ``"ok"`` from ``"degraded"``.

This endpoint is diagnostic and unauthenticated; it must never raise HTTP 5xx.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from listing_harvester import __version__
from listing_harvester.adapters.registry import list_sites

logger = logging.getLogger(__name__)

router = APIRouter(tags=["system"])


async def _check_database(request: Request) -> str:
    """Ping the store attached to the app.

    Returns:
        ``"ok"`` if the query succeeds, ``"error"`` otherwise.
    """
    store = getattr(request.app.state, "job_store", None)
    ping = getattr(store, "ping", None)
    if ping is None:
        return "unavailable"
    try:
        await ping()
        return "ok"
    except Exception:
        logger.exception("Health check: database unreachable")
        return "error"


def _check_queue(request: Request) -> str:
    queue = getattr(request.app.state, "job_queue", None)
    if queue is None:
        return "unavailable"
    if queue.is_paused:
        return "paused"
    return "running" if queue.is_running else "stopped"


@router.get("/health", include_in_schema=True)
async def health(request: Request) -> JSONResponse:
    """Return process health including database and queue status.

    Returns:
        JSON with keys: ``status``, ``version``, ``database``, ``queue``,
        ``sites``, ``timestamp``.
    """
    db_status = await _check_database(request)
    queue_status = _check_queue(request)
    overall = "ok" if db_status == "ok" and queue_status == "running" else "degraded"

    payload = {
        "status": overall,
        "version": __version__,
        "database": db_status,
        "queue": queue_status,
        "sites": [info["site"] for info in list_sites()],
        "timestamp": datetime.now(UTC).isoformat(),
    }
    logger.info("system_health_check", extra={"health": payload})
    return JSONResponse(payload)
