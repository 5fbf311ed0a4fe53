"""Site adapter for The Knot vendor marketplace (theknot.com).

Listing URL pattern::

    https://www.theknot.com/marketplace/{category}-{location}[?page=N]

e.g. ``wedding-reception-venues-seattle-wa``.  Listing cards carry name,
location, rating (a number or ``"New"``), review count, and a price
teaser.  Vendor detail pages carry a social/contact links block that the
enrichment pass reads.

Parameters understood by :meth:`TheKnotAdapter.build_url`:

- ``category``: kebab-case category slug (default ``wedding-reception-venues``)
- ``location``: ``city-state`` slug (default ``seattle-wa``)
- ``page``: start page; appended as ``?page=N`` when greater than 1
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from listing_harvester.adapters.base import RateLimitWindow, ScrapedItem, SiteAdapter
from listing_harvester.adapters.registry import register
from listing_harvester.core.exceptions import PaginationError

if TYPE_CHECKING:
    from playwright.async_api import ElementHandle, Page

logger = logging.getLogger(__name__)

BASE_URL = "https://www.theknot.com"
DEFAULT_CATEGORY = "wedding-reception-venues"
DEFAULT_LOCATION = "seattle-wa"

VENDOR_CARD_SELECTOR = '[data-testid="vendor-card-base"]'
SOCIAL_LINKS_SELECTOR = '[class*="social-links"]'

NEXT_PAGE_SELECTORS: tuple[str, ...] = (
    'a[aria-label="Go to next page"]',
    'a[aria-label*="next"]',
    'button[aria-label="Go to next page"]',
    'button[aria-label*="next"]',
    '[data-testid*="next"]',
    ".pagination a:last-child:not(.disabled)",
    'nav[aria-label*="pagination"] a:last-child',
)

_TRACKING_PARAMS = frozenset({
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_content",
    "utm_term",
    "ref",
    "source",
})

_SOCIAL_HOSTS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("facebook", ("facebook.com",)),
    ("instagram", ("instagram.com",)),
    ("pinterest", ("pinterest.com",)),
    ("twitter", ("twitter.com", "x.com")),
)

_WEBSITE_EXCLUDED_FRAGMENTS = (
    "facebook.com",
    "instagram.com",
    "pinterest.com",
    "twitter.com",
    "google.com",
    "maps.google",
)

# ---------------------------------------------------------------------------
# In-page scripts
# ---------------------------------------------------------------------------

# Three strategies, most reliable first: "Page X of Y" text, "Go to page N"
# aria labels, then numeric links inside a pagination nav.
_TOTAL_PAGES_JS = r"""
() => {
  const text = document.body ? (document.body.textContent || '') : '';
  const match = text.match(/page\s+\d+\s+of\s+(\d+)/i);
  if (match) return parseInt(match[1], 10);

  const labelled = Array.from(
    document.querySelectorAll('a[aria-label*="Go to page"], button[aria-label*="Go to page"]')
  ).map((el) => {
    const m = (el.getAttribute('aria-label') || '').match(/page (\d+)/i);
    return m ? parseInt(m[1], 10) : 0;
  }).filter((n) => n > 0);
  if (labelled.length) return Math.max(...labelled);

  const nav = document.querySelector('nav[aria-label*="pagination"], [class*="pagination"]');
  if (nav) {
    const numbers = Array.from(nav.querySelectorAll('a, button'))
      .map((el) => parseInt((el.textContent || '').trim(), 10))
      .filter((n) => !isNaN(n) && n > 0);
    if (numbers.length) return Math.max(...numbers);
  }
  return 1;
}
"""

_EXTRACT_CARDS_JS = r"""
(cards) => cards.map((card) => {
  let name = '';
  const labelledBy = card.getAttribute('aria-labelledby');
  if (labelledBy) {
    const label = document.getElementById(labelledBy);
    if (label) name = (label.textContent || '').trim();
  }

  const link = card.querySelector('a[href*="/marketplace/"]');
  const href = link ? (link.getAttribute('href') || '') : '';
  const url = !href ? '' : (href.startsWith('http') ? href : 'https://www.theknot.com' + href);

  let location = null;
  for (const el of card.querySelectorAll('[class*="location"], [class*="address"]')) {
    const clean = (el.textContent || '').replace(/Location:/gi, '').trim();
    const cityState = clean.match(/([A-Za-z\s]+),\s*([A-Z]{2})/);
    if (cityState) { location = cityState[1].trim() + ', ' + cityState[2]; break; }
    const half = Math.floor(clean.length / 2);
    if (clean.length && clean.substring(0, half) === clean.substring(half)) {
      location = clean.substring(0, half); break;
    }
    if (clean.length > 3) { location = clean; break; }
  }

  let rating = null;
  for (const el of card.querySelectorAll('*')) {
    const cls = String(el.className || '');
    if ((cls.includes('badge') || cls.includes('new') || cls.includes('review'))
        && (el.textContent || '').trim() === 'New') {
      rating = 'New'; break;
    }
  }
  if (rating === null) {
    for (const el of card.querySelectorAll('[class*="rating"], [class*="star"]')) {
      const m = (el.textContent || '').match(/([\d.]+)/);
      if (m) { const value = parseFloat(m[1]); if (!isNaN(value)) rating = value; break; }
    }
  }

  let reviews = null;
  for (const el of card.querySelectorAll('[class*="review"]')) {
    const m = (el.textContent || '').match(/\((\d+)\)|(\d+)\s*Reviews?/i);
    if (m) { reviews = parseInt(m[1] || m[2], 10); break; }
  }

  let price = null;
  for (const el of card.querySelectorAll('[class*="price"], [class*="starting"]')) {
    const text = (el.textContent || '').trim();
    if (text.toLowerCase().includes('starting') || text.includes('$')) { price = text; break; }
  }

  return { name, location, rating, reviews, price, url };
})
"""

_LINKS_JS = r"""
(elements) => elements.map((el) => el.getAttribute('href') || '')
"""

_IS_DISABLED_JS = r"""
(el) => el.hasAttribute('disabled')
  || el.classList.contains('disabled')
  || el.getAttribute('aria-disabled') === 'true'
"""


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------


def clean_url(url: str) -> str:
    """Strip ``utm_*`` and other tracking parameters from ``url``."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    query = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if key not in _TRACKING_PARAMS
    ]
    return urlunsplit(parts._replace(query=urlencode(query)))


def _is_own_profile(href: str, host: str) -> bool:
    return f"{host}/theknot" in href


def _is_theknot_url(href: str) -> bool:
    host = urlsplit(href).netloc.lower()
    return host == "theknot.com" or host.endswith(".theknot.com")


def classify_links(hrefs: list[str]) -> ScrapedItem:
    """Sort contact/social hrefs into detail fields.

    ``tel:`` and ``mailto:`` become ``phone`` / ``email``; social hosts map
    to their own keys (The Knot's own profiles are ignored); the remaining
    external link becomes ``website`` plus a tracking-free ``website_clean``.
    Later links overwrite earlier ones of the same kind.
    """
    details: ScrapedItem = {}
    for href in hrefs:
        if not href:
            continue
        if href.startswith("tel:"):
            details["phone"] = href[len("tel:"):].strip()
            continue
        if href.startswith("mailto:"):
            details["email"] = href[len("mailto:"):].strip()
            continue

        social_key: Optional[str] = None
        for key, hosts in _SOCIAL_HOSTS:
            if any(host in href for host in hosts):
                social_key = key
                if not any(_is_own_profile(href, host) for host in hosts):
                    details[key] = href
                break
        if social_key is not None:
            continue

        if (
            href.startswith("http")
            and not _is_theknot_url(href)
            and not any(fragment in href for fragment in _WEBSITE_EXCLUDED_FRAGMENTS)
        ):
            details["website"] = href
            details["website_clean"] = clean_url(href)
    return details


def normalise_card(raw: dict[str, Any]) -> ScrapedItem:
    """Drop keys the page script could not fill."""
    return {key: value for key, value in raw.items() if value not in (None, "")}


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


@register
class TheKnotAdapter(SiteAdapter):
    """The Knot marketplace listings and vendor detail pages."""

    site = "theknot"
    display_name = "The Knot"
    rate_limit = RateLimitWindow(2000, 4000)
    detail_rate_limit = RateLimitWindow(3000, 5000)

    card_timeout_ms = 10_000
    navigation_timeout_ms = 15_000
    detail_timeout_ms = 30_000
    settle_ms = 1000

    def build_url(self, parameters: dict[str, Any]) -> str:
        category = parameters.get("category") or DEFAULT_CATEGORY
        location = parameters.get("location") or DEFAULT_LOCATION
        url = f"{BASE_URL}/marketplace/{category}-{location}"
        page_number = parameters.get("page")
        if page_number and int(page_number) > 1:
            url += f"?page={int(page_number)}"
        return url

    async def get_total_pages(self, page: Page) -> int:
        try:
            await page.wait_for_timeout(2000)
            total = await page.evaluate(_TOTAL_PAGES_JS)
        except Exception as exc:  # noqa: BLE001
            logger.warning("theknot: total page detection failed: %s", exc)
            return 1
        total_pages = max(int(total or 1), 1)
        logger.info("theknot: detected %d listing pages", total_pages)
        return total_pages

    async def extract_data(self, page: Page) -> list[ScrapedItem]:
        try:
            await page.wait_for_selector(VENDOR_CARD_SELECTOR, timeout=self.card_timeout_ms)
        except Exception:  # noqa: BLE001
            logger.warning("theknot: no vendor cards on %s", page.url)
            return []

        raw_items = await page.eval_on_selector_all(VENDOR_CARD_SELECTOR, _EXTRACT_CARDS_JS)
        items = [normalise_card(raw) for raw in raw_items]
        valid = [item for item in items if item.get("name") and item.get("url")]
        logger.info(
            "theknot: extracted %d venues (%d skipped)",
            len(valid),
            len(items) - len(valid),
        )
        return valid

    async def _find_next_control(self, page: Page) -> Optional[ElementHandle]:
        for selector in NEXT_PAGE_SELECTORS:
            handle = await page.query_selector(selector)
            if handle is None:
                continue
            if not await handle.evaluate(_IS_DISABLED_JS):
                return handle
        return None

    async def has_next_page(self, page: Page) -> bool:
        try:
            return await self._find_next_control(page) is not None
        except Exception as exc:  # noqa: BLE001
            logger.warning("theknot: next-page check failed: %s", exc)
            return False

    async def go_to_next_page(self, page: Page) -> None:
        control = await self._find_next_control(page)
        if control is None:
            raise PaginationError("Next page link not found", site=self.site)

        current_url = page.url
        await control.click()

        # Whichever comes first: the URL changes or fresh cards render.
        waiters = [
            asyncio.ensure_future(
                page.wait_for_url(
                    lambda url: str(url) != current_url,
                    timeout=self.navigation_timeout_ms,
                )
            ),
            asyncio.ensure_future(
                page.wait_for_selector(VENDOR_CARD_SELECTOR, timeout=self.navigation_timeout_ms)
            ),
        ]
        done, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            task.result()

        await page.wait_for_timeout(self.settle_ms)
        logger.info("theknot: navigated to %s", page.url)

    async def extract_detailed_data(self, page: Page, item_url: str) -> ScrapedItem:
        try:
            await page.goto(item_url, wait_until="domcontentloaded", timeout=self.detail_timeout_ms)
            await page.wait_for_timeout(3000)
            if page.url != item_url:
                logger.info("theknot: %s redirected to %s", item_url, page.url)

            details: ScrapedItem = {}
            if await page.query_selector(SOCIAL_LINKS_SELECTOR) is not None:
                hrefs = await page.eval_on_selector_all(
                    f"{SOCIAL_LINKS_SELECTOR} a[href]", _LINKS_JS
                )
                details.update(classify_links(hrefs))

            # Contact links can live outside the social block.
            if "phone" not in details:
                phones = await page.eval_on_selector_all('a[href^="tel:"]', _LINKS_JS)
                if phones:
                    details["phone"] = phones[0][len("tel:"):].strip()
            if "email" not in details:
                emails = await page.eval_on_selector_all('a[href^="mailto:"]', _LINKS_JS)
                if emails:
                    details["email"] = emails[0][len("mailto:"):].strip()
        except Exception as exc:  # noqa: BLE001
            logger.warning("theknot: detail extraction failed for %s: %s", item_url, exc)
            return {}

        logger.info("theknot: extracted %d detail fields from %s", len(details), item_url)
        return details
