"""SQLAlchemy ORM models for Listing Harvester.

All models are imported here so that:
1. Alembic can discover them via ``Base.metadata``.
2. Application code can do ``from listing_harvester.core.models import ScrapeJob``
   without knowing which sub-module a model lives in.
"""

from __future__ import annotations

from listing_harvester.core.models.base import Base, utcnow
from listing_harvester.core.models.jobs import (
    ExportFormat,
    JobLog,
    JobScreenshot,
    JobStatus,
    JobType,
    ScrapeJob,
)

__all__ = [
    "Base",
    "ExportFormat",
    "JobLog",
    "JobScreenshot",
    "JobStatus",
    "JobType",
    "ScrapeJob",
    "utcnow",
]
