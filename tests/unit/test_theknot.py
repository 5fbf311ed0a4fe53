"""Unit tests for The Knot adapter.

Pure helpers are tested directly.  Page-driven methods run against
``AsyncMock`` pages that stand in for Playwright ``Page`` objects.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from listing_harvester.adapters.theknot import (
    VENDOR_CARD_SELECTOR,
    TheKnotAdapter,
    classify_links,
    clean_url,
    normalise_card,
)
from listing_harvester.core.exceptions import PaginationError


@pytest.fixture
def adapter() -> TheKnotAdapter:
    return TheKnotAdapter()


def _page(url: str = "https://www.theknot.com/marketplace/wedding-reception-venues-seattle-wa") -> MagicMock:
    page = MagicMock()
    page.url = url
    page.wait_for_timeout = AsyncMock()
    page.wait_for_selector = AsyncMock()
    page.evaluate = AsyncMock()
    page.eval_on_selector_all = AsyncMock(return_value=[])
    page.query_selector = AsyncMock(return_value=None)
    page.goto = AsyncMock()
    return page


class TestBuildUrl:
    def test_defaults(self, adapter: TheKnotAdapter) -> None:
        assert adapter.build_url({}) == (
            "https://www.theknot.com/marketplace/wedding-reception-venues-seattle-wa"
        )

    def test_category_location_and_page(self, adapter: TheKnotAdapter) -> None:
        url = adapter.build_url(
            {"category": "wedding-photographers", "location": "austin-tx", "page": 3}
        )
        assert url == "https://www.theknot.com/marketplace/wedding-photographers-austin-tx?page=3"

    def test_first_page_has_no_query(self, adapter: TheKnotAdapter) -> None:
        assert "?page" not in adapter.build_url({"page": 1})

    def test_rate_limits(self, adapter: TheKnotAdapter) -> None:
        assert (adapter.get_rate_limit().min_ms, adapter.get_rate_limit().max_ms) == (2000, 4000)
        detail = adapter.get_detail_rate_limit()
        assert (detail.min_ms, detail.max_ms) == (3000, 5000)


class TestPureHelpers:
    def test_clean_url_strips_tracking(self) -> None:
        assert (
            clean_url("https://venue.example.com/?utm_source=theknot&utm_medium=ref&id=5")
            == "https://venue.example.com/?id=5"
        )

    def test_clean_url_without_query(self) -> None:
        assert clean_url("https://venue.example.com/about") == "https://venue.example.com/about"

    def test_classify_links(self) -> None:
        details = classify_links(
            [
                "tel:+1 206-555-0100",
                "mailto:events@venue.example.com",
                "https://www.facebook.com/grandhall",
                "https://www.instagram.com/grandhall/",
                "https://www.pinterest.com/theknot/",
                "https://x.com/grandhall",
                "https://www.theknot.com/marketplace/other",
                "https://maps.google.com/?q=venue",
                "https://grandhall.example.com/?utm_campaign=knot",
            ]
        )

        assert details == {
            "phone": "+1 206-555-0100",
            "email": "events@venue.example.com",
            "facebook": "https://www.facebook.com/grandhall",
            "instagram": "https://www.instagram.com/grandhall/",
            "twitter": "https://x.com/grandhall",
            "website": "https://grandhall.example.com/?utm_campaign=knot",
            "website_clean": "https://grandhall.example.com/",
        }

    def test_normalise_card_drops_blank_values(self) -> None:
        raw = {"name": "Hall", "location": None, "price": "", "reviews": 0, "url": "u"}
        assert normalise_card(raw) == {"name": "Hall", "reviews": 0, "url": "u"}


@pytest.mark.asyncio
class TestPageMethods:
    async def test_total_pages_from_page_script(self, adapter: TheKnotAdapter) -> None:
        page = _page()
        page.evaluate.return_value = 7
        assert await adapter.get_total_pages(page) == 7

    async def test_total_pages_defaults_to_one_on_error(self, adapter: TheKnotAdapter) -> None:
        page = _page()
        page.evaluate.side_effect = RuntimeError("Execution context was destroyed")
        assert await adapter.get_total_pages(page) == 1

    async def test_extract_data_filters_items_without_identity(self, adapter: TheKnotAdapter) -> None:
        page = _page()
        page.eval_on_selector_all.return_value = [
            {"name": "Grand Hall", "location": "Seattle, WA", "rating": 4.9, "reviews": 12,
             "price": None, "url": "https://www.theknot.com/marketplace/grand-hall"},
            {"name": "", "location": None, "rating": None, "reviews": None, "price": None,
             "url": "https://www.theknot.com/marketplace/nameless"},
            {"name": "No Link Barn", "location": None, "rating": "New", "reviews": None,
             "price": None, "url": ""},
        ]

        items = await adapter.extract_data(page)

        assert items == [
            {"name": "Grand Hall", "location": "Seattle, WA", "rating": 4.9, "reviews": 12,
             "url": "https://www.theknot.com/marketplace/grand-hall"},
        ]
        page.wait_for_selector.assert_awaited_once_with(VENDOR_CARD_SELECTOR, timeout=10_000)

    async def test_extract_data_returns_empty_when_no_cards(self, adapter: TheKnotAdapter) -> None:
        page = _page()
        page.wait_for_selector.side_effect = TimeoutError("Timeout 10000ms exceeded")
        assert await adapter.extract_data(page) == []
        page.eval_on_selector_all.assert_not_awaited()

    async def test_has_next_page_skips_disabled_controls(self, adapter: TheKnotAdapter) -> None:
        disabled = MagicMock()
        disabled.evaluate = AsyncMock(return_value=True)
        page = _page()
        page.query_selector.side_effect = lambda selector: (
            disabled if selector == 'a[aria-label="Go to next page"]' else None
        )
        assert await adapter.has_next_page(page) is False

    async def test_has_next_page_finds_enabled_control(self, adapter: TheKnotAdapter) -> None:
        enabled = MagicMock()
        enabled.evaluate = AsyncMock(return_value=False)
        page = _page()
        page.query_selector.return_value = enabled
        assert await adapter.has_next_page(page) is True

    async def test_go_to_next_page_without_control_raises(self, adapter: TheKnotAdapter) -> None:
        with pytest.raises(PaginationError):
            await adapter.go_to_next_page(_page())

    async def test_detail_extraction_uses_contact_fallbacks(self, adapter: TheKnotAdapter) -> None:
        page = _page("https://www.theknot.com/marketplace/grand-hall")

        async def _links(selector: str, _script: str) -> list[str]:
            if selector.startswith('a[href^="tel:"]'):
                return ["tel:2065550100"]
            if selector.startswith('a[href^="mailto:"]'):
                return ["mailto:hi@grandhall.example.com"]
            return []

        page.eval_on_selector_all.side_effect = _links

        details = await adapter.extract_detailed_data(page, page.url)

        assert details == {"phone": "2065550100", "email": "hi@grandhall.example.com"}
        page.goto.assert_awaited_once()

    async def test_detail_extraction_failure_returns_empty(self, adapter: TheKnotAdapter) -> None:
        page = _page()
        page.goto.side_effect = RuntimeError("net::ERR_NAME_NOT_RESOLVED")
        assert await adapter.extract_detailed_data(page, "https://www.theknot.com/x") == {}
