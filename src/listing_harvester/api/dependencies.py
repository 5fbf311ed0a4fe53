"""FastAPI dependency injection providers.

Provides API-key authentication, pagination, and access to the long-lived
objects built during application startup (job store, job queue), which
live on ``app.state``.  Tests replace them through
``app.dependency_overrides``.

Dependency summary::

    require_api_key   - 401 unless X-API-Key matches settings.api_keys
    get_job_store     - JobStore from app.state
    get_job_queue     - JobQueue from app.state
    get_pagination    - validated limit/offset
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends, Header, HTTPException, Request, status

from listing_harvester.config.settings import Settings, get_settings
from listing_harvester.core.job_store import JobStore
from listing_harvester.workers.job_queue import JobQueue


async def require_api_key(
    settings: Annotated[Settings, Depends(get_settings)],
    x_api_key: Annotated[Optional[str], Header()] = None,
) -> str:
    """Validate the ``X-API-Key`` header against ``settings.api_keys``.

    Returns:
        The accepted key.

    Raises:
        HTTPException 401: If the header is missing or not a configured key.
    """
    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing API key. Provide it in the X-API-Key header.",
        )
    if not any(secrets.compare_digest(x_api_key, key) for key in settings.api_key_set):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid API key.",
        )
    return x_api_key


def get_job_store(request: Request) -> JobStore:
    """Return the store created in the application lifespan."""
    return request.app.state.job_store


def get_job_queue(request: Request) -> JobQueue:
    """Return the queue created in the application lifespan."""
    return request.app.state.job_queue


@dataclass
class PaginationParams:
    """Offset-pagination parameters for list endpoints.

    Attributes:
        limit: Number of records to return (1–200).
        offset: Number of records to skip.
    """

    limit: int
    offset: int


def get_pagination(limit: int = 50, offset: int = 0) -> PaginationParams:
    """Parse and validate ``limit`` / ``offset`` query parameters.

    Raises:
        HTTPException 422: If ``limit`` is outside 1–200 or ``offset`` is negative.
    """
    if not 1 <= limit <= 200:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="limit must be between 1 and 200.",
        )
    if offset < 0:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="offset must not be negative.",
        )
    return PaginationParams(limit=limit, offset=offset)
