"""Shared Playwright browser session with per-job isolated pages.

One Chromium instance is reused across jobs while its rendering mode
(``headless``) matches what the next job asks for.  A job that needs the
other mode retires the current browser and launches a fresh one.  A retired
browser is closed once the last page opened on it has been released, so a
concurrent job is never cut off mid-flight by another job's mode switch.

Each job gets its own browser context and page, so cookies and navigation
state are never shared between concurrent jobs.

Install the browser binary once per host::

    playwright install chromium
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from playwright.async_api import async_playwright

if TYPE_CHECKING:
    from playwright.async_api import Browser, Page, Playwright

logger = logging.getLogger(__name__)

DEFAULT_LAUNCH_ARGS: tuple[str, ...] = (
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
    "--disable-setuid-sandbox",
)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36"
)


async def _start_playwright() -> Playwright:
    return await async_playwright().start()


class BrowserSession:
    """Lazily launched, mode-aware Chromium session.

    Args:
        launch_args: Extra Chromium command-line switches.
        user_agent: User-Agent for every job context.
        starter: Coroutine factory returning a started ``Playwright``
            driver.  Injected by tests.
    """

    def __init__(
        self,
        *,
        launch_args: tuple[str, ...] = DEFAULT_LAUNCH_ARGS,
        user_agent: str = DEFAULT_USER_AGENT,
        starter: Callable[[], Awaitable[Any]] = _start_playwright,
    ) -> None:
        self._launch_args = list(launch_args)
        self._user_agent = user_agent
        self._starter = starter
        self._lock = asyncio.Lock()
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._headless: Optional[bool] = None
        self._open_pages: dict[Any, int] = defaultdict(int)
        self._page_browser: dict[Any, Any] = {}
        self._retired: set[Any] = set()

    @property
    def headless(self) -> Optional[bool]:
        """Mode of the current browser, or None before the first launch."""
        return self._headless

    @property
    def is_open(self) -> bool:
        return self._browser is not None

    async def _ensure_browser(self, headless: bool) -> Browser:
        if self._browser is not None and self._headless == headless:
            return self._browser

        if self._browser is not None:
            logger.info(
                "browser: mode change headless=%s -> %s, relaunching",
                self._headless,
                headless,
            )
            await self._retire(self._browser)

        if self._playwright is None:
            self._playwright = await self._starter()
        self._browser = await self._playwright.chromium.launch(
            headless=headless,
            args=self._launch_args,
        )
        self._headless = headless
        logger.info("browser: launched chromium headless=%s", headless)
        return self._browser

    async def _retire(self, browser: Browser) -> None:
        self._browser = None
        self._headless = None
        if self._open_pages.get(browser, 0) > 0:
            self._retired.add(browser)
            return
        await self._close_browser(browser)

    async def _close_browser(self, browser: Browser) -> None:
        self._open_pages.pop(browser, None)
        self._retired.discard(browser)
        try:
            await browser.close()
        except Exception as exc:  # noqa: BLE001
            logger.warning("browser: close failed: %s", exc)

    async def new_page(self, *, headless: bool, timeout_ms: int) -> Page:
        """Open an isolated page in a browser running in ``headless`` mode.

        Every page handed out must be returned via :meth:`release_page`.
        """
        async with self._lock:
            browser = await self._ensure_browser(headless)
            context = await browser.new_context(
                user_agent=self._user_agent,
                viewport={"width": 1920, "height": 1080},
            )
            page = await context.new_page()
            self._open_pages[browser] += 1
            self._page_browser[page] = browser
        page.set_default_timeout(timeout_ms)
        return page

    async def release_page(self, page: Page) -> None:
        """Close ``page`` and its context; close a retired browser once idle."""
        try:
            await page.context.close()
        except Exception as exc:  # noqa: BLE001
            logger.warning("browser: page close failed: %s", exc)

        async with self._lock:
            browser = self._page_browser.pop(page, None)
            if browser is None:
                return
            self._open_pages[browser] -= 1
            if browser in self._retired and self._open_pages[browser] <= 0:
                await self._close_browser(browser)

    async def close(self) -> None:
        """Close every browser and stop the Playwright driver."""
        async with self._lock:
            browsers = set(self._retired)
            if self._browser is not None:
                browsers.add(self._browser)
            for browser in browsers:
                await self._close_browser(browser)
            self._browser = None
            self._headless = None
            self._page_browser.clear()
            if self._playwright is not None:
                try:
                    await self._playwright.stop()
                finally:
                    self._playwright = None
        logger.info("browser: session closed")
