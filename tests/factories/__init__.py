"""Factory Boy factories and in-memory fakes for test data generation.

Available factories
-------------------
ScrapeJobFactory            - queued scrape job (transient ORM object)
EnrichJobFactory            - queued enrichment job with one item URL
VenueItemFactory            - listing item dict

Available fakes (``tests.factories.fakes``)
-------------------------------------------
InMemoryJobStore, FakePage, FakeBrowserSession, FakeAdapter
"""

from __future__ import annotations

from tests.factories.jobs import EnrichJobFactory, ScrapeJobFactory, VenueItemFactory

__all__ = [
    "EnrichJobFactory",
    "ScrapeJobFactory",
    "VenueItemFactory",
]
