"""SQLAlchemy declarative base shared by all ORM models.

Provides:
- Base: the DeclarativeBase subclass all models inherit from
- utcnow: timezone-aware "now" used for Python-side timestamp defaults
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Shared declarative base for all Listing Harvester models."""

    # Use the PostgreSQL UUID type for all UUID columns by default.
    type_annotation_map = {
        uuid.UUID: UUID(as_uuid=True),
    }


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(tz=timezone.utc)
