"""Best-effort webhook delivery on job completion or failure.

Payload shape (JSON body of a single POST)::

    {
        "jobId": "3f0c...",
        "status": "completed",             # completed | failed
        "site": "theknot",
        "timestamp": "2026-10-19T12:00:00+00:00",
        "data": {                          # completed only
            "count": 30,
            "itemsExtracted": 30,
            "pagesScraped": 3,
            "durationMs": 41250,
            "resultFilePath": "data/3f0c....json",
            "venues": [{"name": ..., "location": ..., "rating": ..., "reviews": ...,
                        "price": ..., "url": ...}, ...]
        },
        "error": {"message": "..."}        # failed only
    }

A non-2xx response or a transport error is logged and reported as
``False``; it never changes the job's status.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

import httpx
import structlog

from listing_harvester.config.settings import get_settings
from listing_harvester.core.event_bus import QueueEvent, QueueEventBus
from listing_harvester.core.models.base import utcnow
from listing_harvester.core.models.jobs import JobStatus

if TYPE_CHECKING:
    from listing_harvester.workers.job_worker import QueueJob, WorkerResult

logger = structlog.get_logger(__name__)

USER_AGENT = "ListingHarvester/1.0"


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------


def _venue_preview(item: dict[str, Any]) -> dict[str, Any]:
    return {
        "name": item.get("name"),
        "location": item.get("location"),
        "rating": item.get("rating") if item.get("rating") is not None else "New",
        "reviews": item.get("reviews") or 0,
        "price": item.get("price"),
        "url": item.get("url"),
    }


def build_completed_payload(
    job: QueueJob,
    result: WorkerResult,
    *,
    preview_limit: Optional[int] = None,
) -> dict[str, Any]:
    """Payload for a completed job with a capped item preview."""
    limit = preview_limit if preview_limit is not None else get_settings().webhook_preview_limit
    return {
        "jobId": job.id,
        "status": JobStatus.COMPLETED.value,
        "site": job.site,
        "timestamp": utcnow().isoformat(),
        "data": {
            "count": len(result.items),
            "itemsExtracted": result.items_extracted,
            "pagesScraped": result.pages_scraped,
            "durationMs": result.duration_ms,
            "resultFilePath": result.result_file_path,
            "venues": [_venue_preview(item) for item in result.items[:limit]],
        },
    }


def build_failed_payload(job: QueueJob, error_message: str) -> dict[str, Any]:
    return {
        "jobId": job.id,
        "status": JobStatus.FAILED.value,
        "site": job.site,
        "timestamp": utcnow().isoformat(),
        "error": {"message": error_message},
    }


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


async def send_webhook_notification(
    url: str,
    payload: dict[str, Any],
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout: Optional[float] = None,
) -> bool:
    """POST ``payload`` to ``url`` once.

    Args:
        url: Callback URL.
        payload: JSON-serialisable body.
        client: Optional shared client; a short-lived one is created otherwise.
        timeout: Request timeout in seconds (default ``settings.webhook_timeout_seconds``).

    Returns:
        True on a 2xx response, False on any other status or transport error.
    """
    effective_timeout = timeout if timeout is not None else get_settings().webhook_timeout_seconds
    headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
    job_id = payload.get("jobId")

    try:
        if client is not None:
            response = await client.post(url, json=payload, headers=headers, timeout=effective_timeout)
        else:
            async with httpx.AsyncClient(timeout=effective_timeout) as own_client:
                response = await own_client.post(url, json=payload, headers=headers)
    except httpx.HTTPError as exc:
        logger.warning("webhook_delivery_error", job_id=job_id, url=url, error=str(exc))
        return False

    if not response.is_success:
        logger.warning(
            "webhook_delivery_rejected",
            job_id=job_id,
            url=url,
            status_code=response.status_code,
        )
        return False

    logger.info("webhook_delivered", job_id=job_id, url=url, status_code=response.status_code)
    return True


class WebhookNotifier:
    """Event-bus subscriber that POSTs terminal job states.

    Usage::

        notifier = WebhookNotifier()
        notifier.attach(queue.events)
    """

    def __init__(
        self,
        *,
        client: Optional[httpx.AsyncClient] = None,
        preview_limit: Optional[int] = None,
    ) -> None:
        self._client = client
        self._preview_limit = preview_limit

    def attach(self, events: QueueEventBus) -> None:
        events.subscribe((QueueEvent.JOB_COMPLETED, QueueEvent.JOB_FAILED), self.handle)

    async def handle(self, event: QueueEvent, data: dict[str, Any]) -> Optional[bool]:
        job: QueueJob = data["job"]
        if not job.webhook_url:
            return None
        if event is QueueEvent.JOB_COMPLETED:
            payload = build_completed_payload(
                job, data["result"], preview_limit=self._preview_limit
            )
        else:
            payload = build_failed_payload(job, data.get("error") or "Unknown error")
        return await send_webhook_notification(job.webhook_url, payload, client=self._client)
