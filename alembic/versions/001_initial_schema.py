"""Initial schema: jobs, job_logs, screenshots.

Creates the job lifecycle table polled by clients and scanned by the queue's
recovery loop, plus the per-job log and screenshot tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create jobs, job_logs and screenshots with their indexes."""
    op.create_table(
        "jobs",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("gen_random_uuid()"),
        ),
        sa.Column("site", sa.String(100), nullable=False),
        sa.Column(
            "job_type",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'scrape'"),
        ),
        sa.Column(
            "status",
            sa.String(20),
            nullable=False,
            server_default=sa.text("'queued'"),
        ),
        sa.Column(
            "parameters",
            postgresql.JSONB(),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "format",
            sa.String(10),
            nullable=False,
            server_default=sa.text("'json'"),
        ),
        sa.Column(
            "headless",
            sa.Boolean(),
            nullable=False,
            server_default=sa.text("true"),
        ),
        sa.Column("webhook_url", sa.Text(), nullable=True),
        # Progress counters
        sa.Column(
            "pages_scraped",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        sa.Column(
            "items_extracted",
            sa.Integer(),
            nullable=False,
            server_default=sa.text("0"),
        ),
        # Outcome
        sa.Column("result_file_path", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        # Timing
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column("started_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("finished_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.CheckConstraint(
            "status IN ('queued', 'running', 'completed', 'failed')",
            name="ck_jobs_status",
        ),
        sa.CheckConstraint("format IN ('csv', 'json')", name="ck_jobs_format"),
        sa.CheckConstraint("job_type IN ('scrape', 'enrich')", name="ck_jobs_job_type"),
    )
    # Recovery scan: WHERE status = 'queued' ORDER BY created_at
    op.create_index("idx_jobs_status_created_at", "jobs", ["status", "created_at"])
    op.create_index("idx_jobs_site", "jobs", ["site"])

    op.create_table(
        "job_logs",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "job_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("level", sa.String(10), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("context", postgresql.JSONB(), nullable=True),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.CheckConstraint(
            "level IN ('debug', 'info', 'warning', 'error')",
            name="ck_job_logs_level",
        ),
    )
    op.create_index("ix_job_logs_job_id", "job_logs", ["job_id"])

    op.create_table(
        "screenshots",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column(
            "job_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("file_path", sa.Text(), nullable=False),
        sa.Column("context", sa.String(50), nullable=True),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
    )
    op.create_index("ix_screenshots_job_id", "screenshots", ["job_id"])


def downgrade() -> None:
    """Drop screenshots, job_logs and jobs."""
    op.drop_index("ix_screenshots_job_id", table_name="screenshots")
    op.drop_table("screenshots")
    op.drop_index("ix_job_logs_job_id", table_name="job_logs")
    op.drop_table("job_logs")
    op.drop_index("idx_jobs_site", table_name="jobs")
    op.drop_index("idx_jobs_status_created_at", table_name="jobs")
    op.drop_table("jobs")
