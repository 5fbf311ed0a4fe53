"""Pydantic schemas for request/response validation.

Sub-modules:
    jobs - JobCreate, EnrichJobCreate, JobRead, JobListResponse, QueueStatsRead
"""

from __future__ import annotations
