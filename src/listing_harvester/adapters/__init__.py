"""Site adapters.

Each module in this package defines one :class:`~listing_harvester.adapters.base.SiteAdapter`
subclass decorated with ``@register``.  Call
:func:`~listing_harvester.adapters.registry.autodiscover` once at startup to
import them all.
"""
