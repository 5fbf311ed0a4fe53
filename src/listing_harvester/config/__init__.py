"""Configuration package for Listing Harvester.

Re-exports the settings symbols so that callers can write::

    from listing_harvester.config import get_settings
"""

from __future__ import annotations

from listing_harvester.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
