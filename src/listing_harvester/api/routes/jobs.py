"""Job submission and status routes.

Every route here sits behind :func:`~listing_harvester.api.dependencies.require_api_key`.

Routes:
    POST   /api/jobs                - create + enqueue a scrape or enrich job
    POST   /api/scrape              - alias of POST /api/jobs
    POST   /api/enrich              - create + enqueue an enrichment job
    GET    /api/jobs                - list jobs, newest first (paginated)
    GET    /api/jobs/{job_id}       - status view with live progress counters
    GET    /api/jobs/{job_id}/data  - extracted items of a completed job
    GET    /api/jobs/{job_id}/logs  - persisted job log rows
    GET    /api/queue/stats         - queue snapshot plus counts per status

Status reads are polled by clients while a job runs, so they carry
``no-cache`` headers to keep intermediaries from serving stale progress.
"""

from __future__ import annotations

import uuid
from typing import Annotated, Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from listing_harvester.adapters.registry import is_registered, list_sites
from listing_harvester.api.dependencies import (
    PaginationParams,
    get_job_queue,
    get_job_store,
    get_pagination,
    require_api_key,
)
from listing_harvester.config.settings import Settings, get_settings
from listing_harvester.core.job_store import JobStore, build_job
from listing_harvester.core.models.jobs import JobStatus, JobType, ScrapeJob
from listing_harvester.core.schemas.jobs import (
    EnrichJobCreate,
    JobCreate,
    JobDataResponse,
    JobListResponse,
    JobLogRead,
    JobRead,
    JobSubmitResponse,
    QueueStatsRead,
)
from listing_harvester.workers.exporters import load_results
from listing_harvester.workers.job_queue import JobQueue
from listing_harvester.workers.job_worker import QueueJob

logger = structlog.get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_api_key)])

_NO_CACHE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _no_cache(response: Response) -> None:
    response.headers.update(_NO_CACHE_HEADERS)


def _require_known_site(site: str) -> None:
    if not is_registered(site):
        known = ", ".join(info["site"] for info in list_sites()) or "none"
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Unknown site '{site}'. Registered sites: {known}.",
        )


async def _get_job_or_404(job_id: uuid.UUID, store: JobStore) -> ScrapeJob:
    """Fetch a job by primary key or raise HTTP 404."""
    job = await store.get_job(str(job_id))
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job '{job_id}' not found.",
        )
    return job


async def _submit(job: ScrapeJob, store: JobStore, queue: JobQueue) -> JobSubmitResponse:
    """Insert the row, then hand the job to the queue.

    The row is written first so the recovery scan can still pick the job
    up if this process dies before dispatch.
    """
    await store.create_job(job)
    await queue.enqueue(QueueJob.from_record(job))
    logger.info(
        "job_submitted",
        job_id=str(job.id),
        site=job.site,
        job_type=job.job_type,
        format=job.format,
    )
    noun = "Enrichment job" if job.job_type == JobType.ENRICH.value else "Scraping job"
    return JobSubmitResponse(
        job_id=job.id,
        status=job.status,
        message=f"{noun} queued successfully",
    )


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


@router.post(
    "/jobs",
    response_model=JobSubmitResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["jobs"],
)
@router.post(
    "/scrape",
    response_model=JobSubmitResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["jobs"],
)
async def create_job(
    payload: JobCreate,
    store: Annotated[JobStore, Depends(get_job_store)],
    queue: Annotated[JobQueue, Depends(get_job_queue)],
) -> JobSubmitResponse:
    """Create a job in ``queued`` status and enqueue it.

    Raises:
        HTTPException 422: If ``site`` has no registered adapter.
    """
    _require_known_site(payload.site)
    job = build_job(
        site=payload.site,
        parameters=payload.parameters,
        format=payload.format,
        job_type=payload.job_type,
        headless=payload.headless,
        webhook_url=payload.webhook_url,
    )
    return await _submit(job, store, queue)


@router.post(
    "/enrich",
    response_model=JobSubmitResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["jobs"],
)
async def create_enrich_job(
    payload: EnrichJobCreate,
    store: Annotated[JobStore, Depends(get_job_store)],
    queue: Annotated[JobQueue, Depends(get_job_queue)],
) -> JobSubmitResponse:
    """Create an enrichment job over ``item_urls`` and enqueue it."""
    _require_known_site(payload.site)
    job = build_job(
        site=payload.site,
        parameters=payload.to_parameters(),
        format=payload.format,
        job_type=JobType.ENRICH,
        headless=payload.headless,
        webhook_url=payload.webhook_url,
    )
    return await _submit(job, store, queue)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("/jobs", response_model=JobListResponse, tags=["jobs"])
async def list_jobs(
    response: Response,
    store: Annotated[JobStore, Depends(get_job_store)],
    pagination: Annotated[PaginationParams, Depends(get_pagination)],
    job_status: Annotated[Optional[JobStatus], Query(alias="status")] = None,
    site: Optional[str] = None,
) -> JobListResponse:
    """List jobs newest first, optionally filtered by status and site."""
    _no_cache(response)
    jobs = await store.list_jobs(
        status=job_status,
        site=site,
        limit=pagination.limit,
        offset=pagination.offset,
    )
    return JobListResponse(
        jobs=[JobRead.model_validate(job) for job in jobs],
        limit=pagination.limit,
        offset=pagination.offset,
    )


@router.get("/jobs/{job_id}", response_model=JobRead, tags=["jobs"])
async def get_job(
    job_id: uuid.UUID,
    response: Response,
    store: Annotated[JobStore, Depends(get_job_store)],
) -> JobRead:
    """Return one job including its live ``pages_scraped`` / ``items_extracted``."""
    _no_cache(response)
    job = await _get_job_or_404(job_id, store)
    return JobRead.model_validate(job)


@router.get("/jobs/{job_id}/data", response_model=JobDataResponse, tags=["jobs"])
async def get_job_data(
    job_id: uuid.UUID,
    store: Annotated[JobStore, Depends(get_job_store)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> JobDataResponse:
    """Return the extracted items of a completed job.

    Raises:
        HTTPException 404: Unknown job, or its result file is gone.
        HTTPException 409: The job has not completed.
    """
    job = await _get_job_or_404(job_id, store)
    if job.status != JobStatus.COMPLETED.value:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Job '{job_id}' is {job.status}; data is available once it completes.",
        )
    try:
        items = load_results(settings.data_dir, str(job.id))
    except FileNotFoundError:
        logger.warning("job_result_file_missing", job_id=str(job.id))
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Result file for job '{job_id}' not found.",
        ) from None
    return JobDataResponse(job_id=job.id, count=len(items), items=items)


@router.get("/jobs/{job_id}/logs", response_model=list[JobLogRead], tags=["jobs"])
async def get_job_logs(
    job_id: uuid.UUID,
    store: Annotated[JobStore, Depends(get_job_store)],
    limit: Annotated[int, Query(ge=1, le=5000)] = 500,
) -> list[JobLogRead]:
    await _get_job_or_404(job_id, store)
    logs = await store.list_job_logs(str(job_id), limit=limit)
    return [JobLogRead.model_validate(log) for log in logs]


@router.get("/queue/stats", response_model=QueueStatsRead, tags=["queue"])
async def queue_stats(
    store: Annotated[JobStore, Depends(get_job_store)],
    queue: Annotated[JobQueue, Depends(get_job_queue)],
) -> QueueStatsRead:
    """Return the in-memory queue snapshot plus persisted counts per status.

    A store failure leaves ``jobs_by_status`` empty rather than failing
    the request; the in-memory figures are still meaningful.
    """
    stats = queue.get_stats()
    try:
        counts = await store.count_jobs_by_status()
    except Exception as exc:  # noqa: BLE001
        logger.warning("queue_stats_store_unavailable", error=str(exc))
        counts = {}
    return QueueStatsRead(
        pending=stats.pending,
        active=stats.active,
        concurrency=stats.concurrency,
        saturation=stats.saturation,
        running=stats.running,
        paused=stats.paused,
        jobs_by_status=counts,
    )
