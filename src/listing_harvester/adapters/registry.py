"""Adapter registry: maps ``site`` strings to ``SiteAdapter`` subclasses.

Adapters register themselves on import using the ``@register`` decorator.
The registry is a module-level singleton; :func:`autodiscover` imports every
adapter module in this package so lookups work without explicit imports.

Example, registering an adapter::

    from listing_harvester.adapters.base import SiteAdapter
    from listing_harvester.adapters.registry import register

    @register
    class ExampleAdapter(SiteAdapter):
        site = "example"
        ...

Example, looking one up::

    from listing_harvester.adapters.registry import get_adapter, list_sites

    adapter = get_adapter("theknot")
    list_sites()
    # [{"site": "theknot", "display_name": "The Knot", ...}]
"""

from __future__ import annotations

import importlib
import logging
import pkgutil
from typing import TYPE_CHECKING, Any

from listing_harvester.core.exceptions import UnknownSiteError

if TYPE_CHECKING:
    from listing_harvester.adapters.base import SiteAdapter

logger = logging.getLogger(__name__)

# Registry singleton: site -> SiteAdapter subclass
_REGISTRY: dict[str, type[SiteAdapter]] = {}

_NON_ADAPTER_MODULES = frozenset({"base", "registry"})


def register(cls: type[SiteAdapter]) -> type[SiteAdapter]:
    """Class decorator that adds ``cls`` to the registry under ``cls.site``.

    Re-registering a site overwrites the previous class and logs a warning.

    Raises:
        AttributeError: If ``cls`` does not define ``site``.
    """
    site: str = cls.site
    if site in _REGISTRY and _REGISTRY[site] is not cls:
        logger.warning(
            "Site '%s' is already registered (was %s). Overwriting with %s.",
            site,
            _REGISTRY[site].__qualname__,
            cls.__qualname__,
        )
    _REGISTRY[site] = cls
    logger.debug("Registered site adapter: site=%s class=%s", site, cls.__qualname__)
    return cls


def unregister(site: str) -> None:
    """Remove ``site`` from the registry if present."""
    _REGISTRY.pop(site, None)


def get_adapter_class(site: str) -> type[SiteAdapter]:
    """Return the adapter class registered under ``site``.

    Raises:
        UnknownSiteError: If nothing is registered for ``site``.
    """
    try:
        return _REGISTRY[site]
    except KeyError:
        registered = sorted(_REGISTRY.keys())
        raise UnknownSiteError(
            f"No adapter registered for site '{site}'. Registered sites: {registered}.",
            site=site,
        ) from None


def get_adapter(site: str) -> SiteAdapter:
    """Instantiate the adapter registered under ``site``."""
    return get_adapter_class(site)()


def is_registered(site: str) -> bool:
    return site in _REGISTRY


def list_sites() -> list[dict[str, Any]]:
    """Describe every registered adapter, ordered by site key."""
    entries = []
    for site in sorted(_REGISTRY):
        cls = _REGISTRY[site]
        adapter = cls()
        listing = adapter.get_rate_limit()
        detail = adapter.get_detail_rate_limit()
        entries.append(
            {
                "site": site,
                "display_name": cls.display_name or site,
                "rate_limit_ms": [listing.min_ms, listing.max_ms],
                "detail_rate_limit_ms": [detail.min_ms, detail.max_ms],
                "adapter_class": f"{cls.__module__}.{cls.__qualname__}",
            }
        )
    return entries


def autodiscover() -> None:
    """Import every adapter module in this package so they self-register.

    Idempotent.  A module that fails to import is logged and skipped so one
    broken adapter never hides the others.
    """
    import listing_harvester.adapters as adapters_pkg  # noqa: PLC0415

    prefix = adapters_pkg.__name__ + "."
    for _finder, module_name, _is_pkg in pkgutil.iter_modules(adapters_pkg.__path__):
        if module_name in _NON_ADAPTER_MODULES or module_name.startswith("_"):
            continue
        try:
            importlib.import_module(prefix + module_name)
        except Exception:
            logger.exception("Failed to import adapter module %s", prefix + module_name)
