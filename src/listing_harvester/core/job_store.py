"""Persistence contract for jobs and the PostgreSQL implementation of it.

The queue and the worker never touch SQLAlchemy directly; they depend on
the :class:`JobStore` protocol so tests can substitute an in-memory store.

Usage::

    from listing_harvester.core.job_store import SqlJobStore, build_job

    store = SqlJobStore()
    job = await store.create_job(build_job(site="theknot", parameters={"max_pages": 3}))
    await store.update_job_status(str(job.id), JobStatus.RUNNING, started_at=utcnow())
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Any, Optional, Protocol

import sqlalchemy as sa
from sqlalchemy import func, select, update

from listing_harvester.core.exceptions import JobNotFoundError
from listing_harvester.core.models.base import utcnow
from listing_harvester.core.models.jobs import (
    ExportFormat,
    JobLog,
    JobScreenshot,
    JobStatus,
    JobType,
    ScrapeJob,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

#: Columns ``update_job_status`` may write besides ``status``.
UPDATABLE_FIELDS: frozenset[str] = frozenset({
    "pages_scraped",
    "items_extracted",
    "result_file_path",
    "error_message",
    "started_at",
    "finished_at",
    "duration_ms",
})


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class JobStore(Protocol):
    """CRUD operations the execution core requires from a store."""

    async def create_job(self, job: ScrapeJob) -> ScrapeJob: ...

    async def get_job(self, job_id: str) -> Optional[ScrapeJob]: ...

    async def update_job_status(
        self,
        job_id: str,
        status: Optional[JobStatus] = None,
        **fields: Any,
    ) -> None: ...

    async def list_jobs(
        self,
        *,
        status: Optional[JobStatus] = None,
        site: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
        oldest_first: bool = False,
    ) -> list[ScrapeJob]: ...

    async def count_jobs_by_status(self) -> dict[str, int]: ...

    async def add_job_log(
        self,
        job_id: str,
        level: str,
        message: str,
        context: Optional[dict[str, Any]] = None,
    ) -> None: ...

    async def list_job_logs(self, job_id: str, limit: int = 500) -> list[JobLog]: ...

    async def add_screenshot(
        self,
        job_id: str,
        file_path: str,
        context: Optional[str] = None,
    ) -> None: ...


def build_job(
    *,
    site: str,
    parameters: Optional[dict[str, Any]] = None,
    format: ExportFormat | str = ExportFormat.JSON,
    job_type: JobType | str = JobType.SCRAPE,
    headless: bool = True,
    webhook_url: Optional[str] = None,
) -> ScrapeJob:
    """Construct a new ``queued`` job with every column populated.

    Python-side values are set explicitly (rather than relying on server
    defaults) so the returned object is complete before it is flushed and
    can be handed straight to the queue.
    """
    return ScrapeJob(
        id=uuid.uuid4(),
        site=site,
        job_type=JobType(job_type).value,
        status=JobStatus.QUEUED.value,
        parameters=dict(parameters or {}),
        format=ExportFormat(format).value,
        headless=headless,
        webhook_url=webhook_url,
        pages_scraped=0,
        items_extracted=0,
        created_at=utcnow(),
    )


def _validate_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update job columns: {sorted(unknown)}")


# ---------------------------------------------------------------------------
# PostgreSQL implementation
# ---------------------------------------------------------------------------


class SqlJobStore:
    """``JobStore`` backed by SQLAlchemy async sessions.

    Every call opens its own short-lived session and commits before
    returning, so concurrent workers never share a session.

    Args:
        session_factory: Optional ``async_sessionmaker``.  Defaults to the
            application-wide ``AsyncSessionLocal``.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ) -> None:
        if session_factory is None:
            from listing_harvester.core.database import AsyncSessionLocal  # noqa: PLC0415

            session_factory = AsyncSessionLocal
        self._session_factory = session_factory

    async def create_job(self, job: ScrapeJob) -> ScrapeJob:
        async with self._session_factory() as session:
            session.add(job)
            await session.commit()
        return job

    async def get_job(self, job_id: str) -> Optional[ScrapeJob]:
        async with self._session_factory() as session:
            return await session.get(ScrapeJob, uuid.UUID(str(job_id)))

    async def update_job_status(
        self,
        job_id: str,
        status: Optional[JobStatus] = None,
        **fields: Any,
    ) -> None:
        """Write ``status`` and/or progress/outcome columns for one job.

        Raises:
            ValueError: If ``fields`` names a column outside ``UPDATABLE_FIELDS``.
            JobNotFoundError: If no row matched ``job_id``.
        """
        _validate_fields(fields)
        values = dict(fields)
        if status is not None:
            values["status"] = JobStatus(status).value
        if not values:
            return

        async with self._session_factory() as session:
            result = await session.execute(
                update(ScrapeJob)
                .where(ScrapeJob.id == uuid.UUID(str(job_id)))
                .values(**values)
            )
            await session.commit()
        if result.rowcount == 0:
            raise JobNotFoundError(str(job_id))

    async def list_jobs(
        self,
        *,
        status: Optional[JobStatus] = None,
        site: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
        oldest_first: bool = False,
    ) -> list[ScrapeJob]:
        """Return jobs newest-first (or oldest-first) with optional filters."""
        order = ScrapeJob.created_at.asc() if oldest_first else ScrapeJob.created_at.desc()
        stmt = select(ScrapeJob).order_by(order).limit(limit).offset(offset)
        if status is not None:
            stmt = stmt.where(ScrapeJob.status == JobStatus(status).value)
        if site is not None:
            stmt = stmt.where(ScrapeJob.site == site)

        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def count_jobs_by_status(self) -> dict[str, int]:
        stmt = select(ScrapeJob.status, func.count()).group_by(ScrapeJob.status)
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).all()
        counts = {s.value: 0 for s in JobStatus}
        counts.update({row[0]: int(row[1]) for row in rows})
        return counts

    async def add_job_log(
        self,
        job_id: str,
        level: str,
        message: str,
        context: Optional[dict[str, Any]] = None,
    ) -> None:
        async with self._session_factory() as session:
            session.add(
                JobLog(
                    job_id=uuid.UUID(str(job_id)),
                    level=level,
                    message=message,
                    context=context,
                )
            )
            await session.commit()

    async def list_job_logs(self, job_id: str, limit: int = 500) -> list[JobLog]:
        stmt = (
            select(JobLog)
            .where(JobLog.job_id == uuid.UUID(str(job_id)))
            .order_by(JobLog.created_at.asc(), JobLog.id.asc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def add_screenshot(
        self,
        job_id: str,
        file_path: str,
        context: Optional[str] = None,
    ) -> None:
        async with self._session_factory() as session:
            session.add(
                JobScreenshot(
                    job_id=uuid.UUID(str(job_id)),
                    file_path=file_path,
                    context=context,
                )
            )
            await session.commit()

    async def ping(self) -> bool:
        """Run ``SELECT 1``; used by the health endpoint."""
        async with self._session_factory() as session:
            await session.execute(sa.text("SELECT 1"))
        return True
