"""Listing Harvester: browser-automation scraping jobs with a persistent queue."""

__version__ = "0.1.0"
