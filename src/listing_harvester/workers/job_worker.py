"""Job worker: executes one job end-to-end against a site adapter.

The worker owns every store write for the job it is running:

1. ``queued -> running`` with ``started_at``.
2. The protocol for the job type, checkpointing ``pages_scraped`` /
   ``items_extracted`` as it goes.
3. ``running -> completed`` with ``finished_at``, ``duration_ms``, final
   counts, and ``result_file_path``; or ``running -> failed`` with
   ``finished_at`` and ``error_message``.

Scrape protocol (``job_type="scrape"``)
    Navigate to the adapter's listing URL (retried with backoff on
    transient errors), resolve the page budget against the adapter's
    page count, then extract / checkpoint / paginate until the budget is
    spent or the adapter reports no next page.  The listing rate-limit
    window is slept between pages, never before the first.

Enrichment protocol (``job_type="enrich"``)
    Visit each ``item_urls`` entry through the adapter's detail extractor
    and overlay the result on any previously known data for that URL.  A
    failing item is recorded with an ``enrichment_error`` marker and the
    job carries on.  The detail rate-limit window is slept between items.

Any exception escaping a protocol triggers a best-effort full-page
screenshot under ``{data_dir}/screenshots/{id}-error.png`` before the job
is marked failed and the exception re-raised to the queue.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Optional

import structlog

from listing_harvester.adapters.base import PageBudget, ScrapedItem, SiteAdapter
from listing_harvester.adapters.registry import get_adapter
from listing_harvester.config.settings import get_settings
from listing_harvester.core.exceptions import JobValidationError
from listing_harvester.core.logging_config import job_id_var
from listing_harvester.core.models.base import utcnow
from listing_harvester.core.models.jobs import ExportFormat, JobStatus, JobType
from listing_harvester.core.schemas.jobs import item_urls_from_parameters
from listing_harvester.workers.exporters import save_results
from listing_harvester.workers.rate_limiter import polite_delay
from listing_harvester.workers.retry import is_retryable_error, retry_with_backoff

if TYPE_CHECKING:
    from listing_harvester.adapters.base import PageController
    from listing_harvester.core.job_store import JobStore
    from listing_harvester.core.models.jobs import ScrapeJob
    from listing_harvester.workers.browser import BrowserSession

logger = structlog.get_logger(__name__)

#: Key added to an enrichment item whose detail extraction failed.
ENRICHMENT_ERROR_KEY = "enrichment_error"


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


@dataclass
class QueueJob:
    """In-memory projection of a job used for dispatch.

    Not authoritative: the ``jobs`` row is.  Built from a row with
    :meth:`from_record`.
    """

    id: str
    site: str
    parameters: dict[str, Any] = field(default_factory=dict)
    format: ExportFormat = ExportFormat.JSON
    headless: bool = True
    job_type: JobType = JobType.SCRAPE
    webhook_url: Optional[str] = None

    @classmethod
    def from_record(cls, record: ScrapeJob) -> QueueJob:
        return cls(
            id=str(record.id),
            site=record.site,
            parameters=dict(record.parameters or {}),
            format=ExportFormat(record.format),
            headless=bool(record.headless),
            job_type=JobType(record.job_type),
            webhook_url=record.webhook_url,
        )


@dataclass
class WorkerResult:
    """Outcome of a successful run.

    Attributes:
        items: Extracted (or enriched) items, in order.
        pages_scraped: Listing pages processed; 0 for enrichment jobs.
        items_extracted: ``len(items)``.
        items_failed: Enrichment items carrying an error marker.
        result_file_path: Requested-format result file.
        duration_ms: Wall time from ``started_at`` to ``finished_at``.
    """

    items: list[ScrapedItem]
    pages_scraped: int
    items_extracted: int
    items_failed: int = 0
    result_file_path: Optional[str] = None
    duration_ms: Optional[int] = None


# ---------------------------------------------------------------------------
# Worker
# ---------------------------------------------------------------------------


class JobWorker:
    """Runs jobs against a shared :class:`BrowserSession`.

    One worker instance serves every concurrently active job; all per-job
    state lives in local variables of :meth:`run`.

    Args:
        store: Job store used for status, checkpoints, logs and screenshots.
        browser: Shared browser session.
        adapter_lookup: ``site -> SiteAdapter`` resolver.  Defaults to the
            adapter registry.
        data_dir: Result file directory (default ``settings.data_dir``).
        timeout_ms: Default Playwright operation timeout.
        rate_limiting_enabled: Apply adapter politeness windows.
        navigation_max_retries: Attempts for the initial listing navigation.
        navigation_initial_delay: First navigation backoff delay in seconds.
    """

    def __init__(
        self,
        store: JobStore,
        browser: BrowserSession,
        *,
        adapter_lookup: Callable[[str], SiteAdapter] = get_adapter,
        data_dir: Optional[Path] = None,
        timeout_ms: Optional[int] = None,
        rate_limiting_enabled: Optional[bool] = None,
        navigation_max_retries: Optional[int] = None,
        navigation_initial_delay: Optional[float] = None,
    ) -> None:
        settings = get_settings()
        self._store = store
        self._browser = browser
        self._adapter_lookup = adapter_lookup
        self._data_dir = Path(data_dir) if data_dir is not None else settings.data_dir
        self._timeout_ms = timeout_ms if timeout_ms is not None else settings.browser_timeout_ms
        self._rate_limiting_enabled = (
            rate_limiting_enabled
            if rate_limiting_enabled is not None
            else settings.rate_limiting_enabled
        )
        self._nav_retries = (
            navigation_max_retries
            if navigation_max_retries is not None
            else settings.navigation_max_retries
        )
        self._nav_initial_delay = (
            navigation_initial_delay
            if navigation_initial_delay is not None
            else settings.navigation_initial_delay_seconds
        )

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def run(self, job: QueueJob) -> WorkerResult:
        """Execute ``job`` and persist its terminal state.

        Raises:
            Exception: Whatever made the job fail, after the ``failed``
                status has been written.
        """
        token = job_id_var.set(job.id)
        try:
            started_at = utcnow()
            await self._store.update_job_status(job.id, JobStatus.RUNNING, started_at=started_at)
            await self._log(
                job.id,
                "info",
                f"Job started: {job.job_type.value} on {job.site}",
                parameters=job.parameters,
            )

            try:
                result = await self.execute(job)
            except Exception as exc:
                await self._mark_failed(job, exc)
                raise

            finished_at = utcnow()
            result.duration_ms = int((finished_at - started_at).total_seconds() * 1000)
            await self._store.update_job_status(
                job.id,
                JobStatus.COMPLETED,
                finished_at=finished_at,
                duration_ms=result.duration_ms,
                pages_scraped=result.pages_scraped,
                items_extracted=result.items_extracted,
                result_file_path=result.result_file_path,
            )
            await self._log(
                job.id,
                "info",
                f"Job completed: {result.items_extracted} items from {result.pages_scraped} pages",
                duration_ms=result.duration_ms,
            )
            return result
        finally:
            job_id_var.reset(token)

    async def _mark_failed(self, job: QueueJob, exc: BaseException) -> None:
        message = str(exc) or type(exc).__name__
        try:
            await self._store.update_job_status(
                job.id,
                JobStatus.FAILED,
                finished_at=utcnow(),
                error_message=message,
            )
        except Exception as store_exc:  # noqa: BLE001
            logger.error(
                "job_fail_status_write_failed",
                job_id=job.id,
                error=str(store_exc),
                exc_info=True,
            )
        await self._log(job.id, "error", f"Job failed: {message}", error_type=type(exc).__name__)

    async def execute(self, job: QueueJob) -> WorkerResult:
        """Run the protocol for ``job.job_type`` and save the result files.

        Does not touch the job's status; :meth:`run` does.
        """
        adapter = self._adapter_lookup(job.site)
        page = await self._browser.new_page(headless=job.headless, timeout_ms=self._timeout_ms)
        try:
            if job.job_type is JobType.ENRICH:
                result = await self._execute_enrichment(job, adapter, page)
            else:
                result = await self._execute_scrape(job, adapter, page)
            path = save_results(result.items, job.id, job.format, self._data_dir)
            result.result_file_path = str(path)
            return result
        except Exception:
            await self._capture_error_screenshot(job, page)
            raise
        finally:
            await self._browser.release_page(page)

    # ------------------------------------------------------------------
    # Protocols
    # ------------------------------------------------------------------

    async def _execute_scrape(
        self,
        job: QueueJob,
        adapter: SiteAdapter,
        page: PageController,
    ) -> WorkerResult:
        budget = PageBudget.from_parameters(job.parameters)
        url = adapter.build_url(job.parameters)
        await self._log(job.id, "info", f"Navigating to {url}")

        await retry_with_backoff(
            lambda: page.goto(url, wait_until="domcontentloaded", timeout=self._timeout_ms),
            max_retries=self._nav_retries,
            initial_delay=self._nav_initial_delay,
            retry_if=is_retryable_error,
        )

        total_available = await adapter.get_total_pages(page)
        pages_to_scrape = budget.pages_to_scrape(total_available)
        await self._log(
            job.id,
            "info",
            f"Scraping {pages_to_scrape} of {total_available} available pages",
            budget="all" if budget.is_all else budget.cap,
        )

        items: list[ScrapedItem] = []
        pages_scraped = 0
        while True:
            page_items = await adapter.extract_data(page)
            items.extend(page_items)
            pages_scraped += 1
            await self._checkpoint(job.id, pages_scraped=pages_scraped, items_extracted=len(items))
            await self._log(
                job.id,
                "info",
                f"Page {pages_scraped}/{pages_to_scrape}: {len(page_items)} items ({len(items)} total)",
            )

            if pages_scraped >= pages_to_scrape:
                break
            # Site-reported totals can be wrong; the control check is authoritative.
            if not await adapter.has_next_page(page):
                await self._log(job.id, "info", "No next page, stopping early")
                break

            waited_ms = await polite_delay(
                adapter.get_rate_limit(), enabled=self._rate_limiting_enabled
            )
            if waited_ms:
                await self._log(job.id, "debug", f"Waited {waited_ms} ms before next page")
            await adapter.go_to_next_page(page)

        return WorkerResult(
            items=items,
            pages_scraped=pages_scraped,
            items_extracted=len(items),
        )

    async def _execute_enrichment(
        self,
        job: QueueJob,
        adapter: SiteAdapter,
        page: PageController,
    ) -> WorkerResult:
        urls = item_urls_from_parameters(job.parameters)
        if not urls:
            raise JobValidationError("Enrichment job has no item_urls to visit")

        raw_original = job.parameters.get("original_data", job.parameters.get("originalData")) or []
        known_by_url: dict[str, ScrapedItem] = {
            item["url"]: item
            for item in raw_original
            if isinstance(item, dict) and item.get("url")
        }

        enriched: list[ScrapedItem] = []
        failed = 0
        for index, url in enumerate(urls):
            known = dict(known_by_url.get(url, {}))
            await self._log(job.id, "info", f"Enriching {index + 1}/{len(urls)}: {url}")
            try:
                details = await adapter.extract_detailed_data(page, url)
                enriched.append({**known, **details, "url": url})
            except Exception as exc:  # noqa: BLE001
                failed += 1
                message = str(exc) or type(exc).__name__
                enriched.append({**known, "url": url, ENRICHMENT_ERROR_KEY: message})
                await self._log(job.id, "warning", f"Failed to enrich {url}: {message}")

            await self._checkpoint(job.id, items_extracted=len(enriched))

            if index < len(urls) - 1:
                await polite_delay(
                    adapter.get_detail_rate_limit(), enabled=self._rate_limiting_enabled
                )

        await self._log(
            job.id,
            "info",
            f"Enrichment finished: {len(urls) - failed}/{len(urls)} successful",
        )
        return WorkerResult(
            items=enriched,
            pages_scraped=0,
            items_extracted=len(enriched),
            items_failed=failed,
        )

    # ------------------------------------------------------------------
    # Best-effort helpers
    # ------------------------------------------------------------------

    async def _checkpoint(self, job_id: str, **progress: int) -> None:
        """Publish progress counters; a failed write is logged, not raised."""
        try:
            await self._store.update_job_status(job_id, None, **progress)
        except Exception as exc:  # noqa: BLE001
            logger.warning("checkpoint_failed", job_id=job_id, error=str(exc), **progress)

    async def _capture_error_screenshot(self, job: QueueJob, page: PageController) -> Optional[Path]:
        path = self._data_dir / "screenshots" / f"{job.id}-error.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await page.screenshot(path=str(path), full_page=True)
            await self._store.add_screenshot(job.id, str(path), context="error")
        except Exception as exc:  # noqa: BLE001
            logger.warning("screenshot_failed", job_id=job.id, error=str(exc))
            return None
        await self._log(job.id, "info", f"Error screenshot saved: {path}")
        return path

    async def _log(self, job_id: str, level: str, message: str, **context: Any) -> None:
        """Emit a structured log line and persist it to ``job_logs``."""
        getattr(logger, level)(message, job_id=job_id, **context)
        try:
            await self._store.add_job_log(job_id, level, message, context or None)
        except Exception as exc:  # noqa: BLE001
            logger.warning("job_log_write_failed", job_id=job_id, error=str(exc))
