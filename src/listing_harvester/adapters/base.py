"""Site adapter contract shared by every target-site implementation.

An adapter knows one website: how to build a listing URL from job
parameters, how many listing pages exist, how to pull items off a page,
how to paginate, and how to read extra fields from an item's detail page.
It also declares the politeness windows the worker must respect.  The
worker never hard-codes a delay itself.

Adapters are stateless; one instance serves every job for its site.
Site selection is a registry lookup keyed by :attr:`SiteAdapter.site`
(see :mod:`listing_harvester.adapters.registry`).

This module also defines :class:`PageBudget`, the explicit "N pages" or
"all pages" value a scrape job resolves from its parameters.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from listing_harvester.core.exceptions import JobValidationError

ScrapedItem = dict[str, Any]
"""One extracted record.  Well-known optional keys: ``name``, ``location``,
``rating``, ``reviews``, ``price``, ``url`` and, after enrichment,
``website``, ``website_clean``, ``phone``, ``email``, ``facebook``,
``instagram``, ``pinterest``, ``twitter``.  Extra keys are allowed."""


class PageController(Protocol):
    """The subset of ``playwright.async_api.Page`` the core relies on."""

    @property
    def url(self) -> str: ...

    async def goto(self, url: str, **kwargs: Any) -> Any: ...

    async def screenshot(self, **kwargs: Any) -> bytes: ...

    async def close(self) -> None: ...

    def set_default_timeout(self, timeout: float) -> None: ...


# ---------------------------------------------------------------------------
# Value types
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RateLimitWindow:
    """Inclusive ``[min_ms, max_ms]`` range an inter-request delay is drawn from."""

    min_ms: int
    max_ms: int

    def __post_init__(self) -> None:
        if self.min_ms < 0 or self.max_ms < self.min_ms:
            raise ValueError(f"Invalid rate-limit window: [{self.min_ms}, {self.max_ms}]")


#: Legacy encoding of "every available page" still accepted on input.
ALL_PAGES_SENTINEL = 999

DEFAULT_MAX_PAGES = 10


@dataclass(frozen=True)
class PageBudget:
    """How many listing pages a scrape job may visit.

    ``cap=None`` means every page the site reports; otherwise at most
    ``cap`` pages.  Use :meth:`capped` / :meth:`all_pages` to construct.
    """

    cap: Optional[int] = None

    @classmethod
    def capped(cls, pages: int) -> PageBudget:
        if pages < 1:
            raise JobValidationError(f"Page budget must be at least 1, got {pages}")
        return cls(cap=pages)

    @classmethod
    def all_pages(cls) -> PageBudget:
        return cls(cap=None)

    @property
    def is_all(self) -> bool:
        return self.cap is None

    def pages_to_scrape(self, total_available: int) -> int:
        """``total_available`` for an all-pages budget, else ``min(cap, total_available)``."""
        if self.cap is None:
            return total_available
        return min(self.cap, total_available)

    @classmethod
    def from_value(cls, value: Any, default: int = DEFAULT_MAX_PAGES) -> PageBudget:
        """Parse a ``max_pages`` parameter.

        ``None`` yields the default cap; ``"all"`` (any case) or the legacy
        ``999`` sentinel yields an all-pages budget; anything else must be a
        positive integer.

        Raises:
            JobValidationError: On a non-numeric or non-positive value.
        """
        if value is None:
            return cls.capped(default)
        if isinstance(value, str):
            if value.strip().lower() == "all":
                return cls.all_pages()
            if not value.strip().isdigit():
                raise JobValidationError(f"Invalid max_pages value: {value!r}")
            value = int(value.strip())
        if isinstance(value, bool) or not isinstance(value, int):
            raise JobValidationError(f"Invalid max_pages value: {value!r}")
        if value == ALL_PAGES_SENTINEL:
            return cls.all_pages()
        return cls.capped(value)

    @classmethod
    def from_parameters(cls, parameters: dict[str, Any]) -> PageBudget:
        """Read ``max_pages`` (or the camelCase ``maxPages``) from job parameters."""
        return cls.from_value(parameters.get("max_pages", parameters.get("maxPages")))


# ---------------------------------------------------------------------------
# Adapter ABC
# ---------------------------------------------------------------------------


class SiteAdapter(ABC):
    """Abstract base class for site adapters.

    Subclasses set the class attribute ``site`` (the registry key) and
    implement the abstract methods.  ``get_total_pages`` and the rate-limit
    getters have defaults that subclasses override when the site needs it.

    Class Attributes:
        site: Registry key used in job submissions (e.g. ``"theknot"``).
        display_name: Human-readable name for listings and logs.
        rate_limit: Window applied between listing pages.
        detail_rate_limit: Window applied between detail pages.  Falls back
            to ``rate_limit`` when unset.
    """

    site: str
    display_name: str = ""
    rate_limit: RateLimitWindow = RateLimitWindow(1000, 2000)
    detail_rate_limit: Optional[RateLimitWindow] = None

    @abstractmethod
    def build_url(self, parameters: dict[str, Any]) -> str:
        """Return the first listing URL for ``parameters``."""

    async def get_total_pages(self, page: PageController) -> int:
        """Best-effort count of listing pages; at least 1, never raises."""
        return 1

    @abstractmethod
    async def extract_data(self, page: PageController) -> list[ScrapedItem]:
        """Extract the items on the current listing page.

        Must drop items missing identity fields (``name``/``url``) and return
        an empty list, not raise, when the page holds no items.
        """

    @abstractmethod
    async def has_next_page(self, page: PageController) -> bool:
        """Return True when an enabled next-page control exists."""

    @abstractmethod
    async def go_to_next_page(self, page: PageController) -> None:
        """Navigate forward one listing page.

        Raises:
            PaginationError: If no next-page control can be found.
        """

    async def extract_detailed_data(
        self,
        page: PageController,
        item_url: str,
    ) -> ScrapedItem:
        """Navigate to ``item_url`` and return any detail fields found.

        The default implementation extracts nothing.  Implementations
        return a partial dict when individual fields are absent; raising is
        reserved for failures the caller should record against the item.
        """
        return {}

    def get_rate_limit(self) -> RateLimitWindow:
        return self.rate_limit

    def get_detail_rate_limit(self) -> RateLimitWindow:
        return self.detail_rate_limit or self.rate_limit

    def __repr__(self) -> str:
        return f"<{type(self).__name__} site={self.site!r}>"
