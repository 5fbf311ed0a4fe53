"""SQLAlchemy ORM models for scrape/enrich jobs and their diagnostics.

``ScrapeJob`` is the authoritative lifecycle record for one unit of work.
``JobLog`` and ``JobScreenshot`` hold per-job diagnostics written by the
worker while the job runs.
"""

from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Any, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import Mapped, mapped_column

from listing_harvester.core.models.base import Base, utcnow


class JobStatus(str, enum.Enum):
    """Lifecycle states of a job.

    Allowed transitions: ``queued -> running -> completed | failed``.
    Stored as plain strings guarded by a CHECK constraint.
    """

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobType(str, enum.Enum):
    """Execution protocol selected for a job."""

    SCRAPE = "scrape"
    ENRICH = "enrich"


class ExportFormat(str, enum.Enum):
    """Requested result file format.  Both formats are always written."""

    CSV = "csv"
    JSON = "json"

    @property
    def other(self) -> ExportFormat:
        return ExportFormat.JSON if self is ExportFormat.CSV else ExportFormat.CSV


class ScrapeJob(Base):
    """A scrape or enrichment job and its progress counters.

    Attributes:
        id: UUID primary key, generated at submission.
        site: Adapter registry key (e.g. ``"theknot"``).
        job_type: ``"scrape"`` or ``"enrich"``.
        status: ``"queued"``, ``"running"``, ``"completed"`` or ``"failed"``.
        parameters: Adapter parameters.  Enrichment jobs also carry
            ``item_urls`` and optionally ``original_data``.
        format: Requested result format, ``"csv"`` or ``"json"``.
        headless: Whether the browser session runs without a visible window.
        webhook_url: Optional callback URL notified on terminal states.
        pages_scraped: Listing pages processed so far.
        items_extracted: Items extracted (scrape) or processed (enrich) so far.
        result_file_path: Path of the requested-format result file; set on completion only.
        error_message: Failure description; set on failure only.
        created_at: Insert time.
        started_at: Time the worker picked the job up.
        finished_at: Time the job reached a terminal state.
        duration_ms: ``finished_at - started_at`` for completed jobs.
    """

    __tablename__ = "jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    site: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    job_type: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        server_default=sa.text("'scrape'"),
    )
    status: Mapped[str] = mapped_column(
        sa.String(20),
        nullable=False,
        server_default=sa.text("'queued'"),
    )
    parameters: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        server_default=sa.text("'{}'::jsonb"),
    )
    format: Mapped[str] = mapped_column(
        sa.String(10),
        nullable=False,
        server_default=sa.text("'json'"),
    )
    headless: Mapped[bool] = mapped_column(
        sa.Boolean,
        nullable=False,
        server_default=sa.text("true"),
    )
    webhook_url: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)

    # Progress counters
    pages_scraped: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        server_default=sa.text("0"),
    )
    items_extracted: Mapped[int] = mapped_column(
        sa.Integer,
        nullable=False,
        server_default=sa.text("0"),
    )

    # Outcome
    result_file_path: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)

    # Timing
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=sa.text("NOW()"),
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )
    finished_at: Mapped[Optional[datetime]] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=True,
    )
    duration_ms: Mapped[Optional[int]] = mapped_column(sa.Integer, nullable=True)

    __table_args__ = (
        sa.CheckConstraint(
            "status IN ('queued', 'running', 'completed', 'failed')",
            name="ck_jobs_status",
        ),
        sa.CheckConstraint("format IN ('csv', 'json')", name="ck_jobs_format"),
        sa.CheckConstraint("job_type IN ('scrape', 'enrich')", name="ck_jobs_job_type"),
        sa.Index("idx_jobs_status_created_at", "status", "created_at"),
        sa.Index("idx_jobs_site", "site"),
    )

    def __repr__(self) -> str:
        return f"<ScrapeJob id={self.id} site={self.site!r} status={self.status!r}>"


class JobLog(Base):
    """One log line recorded against a job by its worker."""

    __tablename__ = "job_logs"

    id: Mapped[int] = mapped_column(sa.BigInteger, primary_key=True, autoincrement=True)
    job_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    level: Mapped[str] = mapped_column(sa.String(10), nullable=False)
    message: Mapped[str] = mapped_column(sa.Text, nullable=False)
    context: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONB, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=sa.text("NOW()"),
    )

    __table_args__ = (
        sa.CheckConstraint(
            "level IN ('debug', 'info', 'warning', 'error')",
            name="ck_job_logs_level",
        ),
    )


class JobScreenshot(Base):
    """A diagnostic screenshot captured for a job (currently on failure only)."""

    __tablename__ = "screenshots"

    id: Mapped[int] = mapped_column(sa.BigInteger, primary_key=True, autoincrement=True)
    job_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("jobs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    file_path: Mapped[str] = mapped_column(sa.Text, nullable=False)
    context: Mapped[Optional[str]] = mapped_column(sa.String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=sa.text("NOW()"),
    )
