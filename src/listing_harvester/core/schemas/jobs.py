"""Pydantic request/response schemas for the job API.

Used by :mod:`listing_harvester.api.routes.jobs` for validation,
serialisation, and OpenAPI documentation generation.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from listing_harvester.adapters.base import PageBudget
from listing_harvester.core.exceptions import JobValidationError
from listing_harvester.core.models.jobs import ExportFormat, JobType

_URL_PATTERN = r"^https?://"


def item_urls_from_parameters(parameters: dict[str, Any]) -> list[str]:
    """Return the enrichment target URLs carried in job parameters.

    ``item_urls`` is the canonical key; ``venueUrls`` is accepted for
    payloads produced by older clients.
    """
    urls = parameters.get("item_urls", parameters.get("venueUrls")) or []
    return [str(url) for url in urls if url]


class JobCreate(BaseModel):
    """Payload for submitting a scrape (or enrich) job.

    Attributes:
        site: Adapter registry key, e.g. ``"theknot"``.
        parameters: Adapter parameters (``location``, ``category``,
            ``max_pages``...).  Enrichment jobs must carry ``item_urls``.
        format: ``"csv"`` or ``"json"``.  Both files are always written;
            this selects ``result_file_path``.
        webhook_url: Optional URL POSTed on completion or failure.
        headless: Run the browser without a visible window (default True).
        job_type: ``"scrape"`` (default) or ``"enrich"``.
    """

    site: str = Field(min_length=1, max_length=100)
    parameters: dict[str, Any] = Field(default_factory=dict)
    format: ExportFormat = ExportFormat.JSON
    webhook_url: Optional[str] = Field(default=None, pattern=_URL_PATTERN)
    headless: bool = True
    job_type: JobType = JobType.SCRAPE

    @model_validator(mode="after")
    def _enrich_requires_urls(self) -> JobCreate:
        if self.job_type is JobType.ENRICH and not item_urls_from_parameters(self.parameters):
            raise ValueError("Enrichment jobs require a non-empty 'item_urls' list in parameters")
        return self

    @model_validator(mode="after")
    def _valid_page_budget(self) -> JobCreate:
        if self.job_type is JobType.SCRAPE:
            try:
                PageBudget.from_parameters(self.parameters)
            except JobValidationError as exc:
                raise ValueError(str(exc)) from exc
        return self


class EnrichJobCreate(BaseModel):
    """Payload for ``POST /api/enrich``.

    Attributes:
        item_urls: Detail-page URLs to visit, in order.  At least one.
        original_data: Previously scraped items; merged by ``url`` with the
            newly extracted detail fields.
    """

    site: str = Field(min_length=1, max_length=100)
    item_urls: list[str] = Field(min_length=1)
    original_data: Optional[list[dict[str, Any]]] = None
    format: ExportFormat = ExportFormat.JSON
    webhook_url: Optional[str] = Field(default=None, pattern=_URL_PATTERN)
    headless: bool = True

    def to_parameters(self) -> dict[str, Any]:
        params: dict[str, Any] = {"item_urls": list(self.item_urls)}
        if self.original_data is not None:
            params["original_data"] = self.original_data
        return params


class JobSubmitResponse(BaseModel):
    """Returned by the submission endpoints."""

    job_id: uuid.UUID
    status: str
    message: str


class JobRead(BaseModel):
    """Status view of one job, including live progress counters."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    site: str
    job_type: str
    status: str
    parameters: dict[str, Any]
    format: str
    headless: bool
    webhook_url: Optional[str]

    pages_scraped: int
    items_extracted: int
    result_file_path: Optional[str]
    error_message: Optional[str]

    created_at: datetime
    started_at: Optional[datetime]
    finished_at: Optional[datetime]
    duration_ms: Optional[int]


class JobListResponse(BaseModel):
    """Paginated job list, newest first."""

    jobs: list[JobRead]
    limit: int
    offset: int


class JobLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    level: str
    message: str
    context: Optional[dict[str, Any]]
    created_at: datetime


class JobDataResponse(BaseModel):
    """Extracted items of a completed job."""

    job_id: uuid.UUID
    count: int
    items: list[dict[str, Any]]


class QueueStatsRead(BaseModel):
    """Queue snapshot plus persisted job counts per status."""

    pending: int
    active: int
    concurrency: int
    saturation: float
    running: bool
    paused: bool
    jobs_by_status: dict[str, int] = Field(default_factory=dict)
