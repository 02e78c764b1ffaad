"""Page fetching through a headless Playwright browser.

The crawl loops only talk to the :class:`PageFetcher` protocol, so they can be
driven by a real browser (:class:`PlaywrightPageFetcher`, handed out by
:class:`BrowserSession`) or by an in-memory stand-in in tests.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, List, Mapping, Optional, Protocol

from bs4 import BeautifulSoup
from playwright.async_api import BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright_stealth import Stealth

from .config import CrawlerConfig
from .errors import FetchError, NavigationFailed, NavigationTimeout, SelectorNotFound
from .parsing import FieldSpec, make_soup, select_all, select_rows, select_text

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/129.0.0.0 Safari/537.36"
)

HIDE_WEBDRIVER_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', {
        get: () => undefined
    });
"""


class PageFetcher(Protocol):
    async def navigate(self, url: str, timeout_ms: Optional[int] = None) -> None: ...

    async def wait_for(self, selector: str, timeout_ms: Optional[int] = None) -> None: ...

    async def extract_text(self, selector: str, attribute: Optional[str] = None) -> Optional[str]: ...

    async def extract_all(
        self, row_selector: Optional[str], inner_selector: str, attribute: Optional[str] = None
    ) -> List[str]: ...

    async def extract_rows(
        self, row_selector: str, fields: Mapping[str, FieldSpec]
    ) -> List[Dict[str, Optional[str]]]: ...

    def auxiliary(self): ...

    async def close(self) -> None: ...


class PlaywrightPageFetcher:
    """PageFetcher backed by one Playwright page.

    Extraction runs BeautifulSoup over ``page.content()``; the parsed document
    is cached until the next navigation or wait.
    """

    def __init__(self, page: Page, context: BrowserContext, stealth: Stealth, timeout_ms: int = 30000):
        self._page = page
        self._context = context
        self._stealth = stealth
        self.timeout_ms = timeout_ms
        self._soup: Optional[BeautifulSoup] = None

    @property
    def url(self) -> str:
        return self._page.url

    async def navigate(self, url: str, timeout_ms: Optional[int] = None) -> None:
        timeout = timeout_ms or self.timeout_ms
        self._soup = None
        try:
            await self._page.goto(url, wait_until="networkidle", timeout=timeout)
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(f"Timed out after {timeout} ms loading {url}", url) from e
        except PlaywrightError as e:
            raise NavigationFailed(f"Failed to load {url}: {e}", url) from e

    async def wait_for(self, selector: str, timeout_ms: Optional[int] = None) -> None:
        timeout = timeout_ms or self.timeout_ms
        self._soup = None
        try:
            await self._page.wait_for_selector(selector, timeout=timeout)
        except PlaywrightTimeoutError as e:
            raise SelectorNotFound(selector, self._page.url) from e
        except PlaywrightError as e:
            raise FetchError(f"Waiting for {selector} failed: {e}", self._page.url) from e

    async def _document(self) -> BeautifulSoup:
        if self._soup is None:
            try:
                html = await self._page.content()
            except PlaywrightError as e:
                raise FetchError(f"Could not read page content: {e}", self._page.url) from e
            self._soup = make_soup(html)
        return self._soup

    async def extract_text(self, selector: str, attribute: Optional[str] = None) -> Optional[str]:
        return select_text(await self._document(), selector, attribute)

    async def extract_all(
        self, row_selector: Optional[str], inner_selector: str, attribute: Optional[str] = None
    ) -> List[str]:
        return select_all(await self._document(), row_selector, inner_selector, attribute)

    async def extract_rows(
        self, row_selector: str, fields: Mapping[str, FieldSpec]
    ) -> List[Dict[str, Optional[str]]]:
        return select_rows(await self._document(), row_selector, fields)

    @asynccontextmanager
    async def auxiliary(self) -> AsyncIterator["PlaywrightPageFetcher"]:
        """Short-lived second page in the same context, closed on exit."""
        page = await self._context.new_page()
        await self._stealth.apply_stealth_async(page)
        await page.add_init_script(HIDE_WEBDRIVER_SCRIPT)
        aux = PlaywrightPageFetcher(page, self._context, self._stealth, self.timeout_ms)
        try:
            yield aux
        finally:
            await aux.close()

    async def close(self) -> None:
        if not self._page.is_closed():
            await self._page.close()


class BrowserSession:
    """One browser process for a whole run.

    Usage::

        async with BrowserSession(config) as session:
            fetcher = await session.new_fetcher()
    """

    def __init__(self, config: CrawlerConfig):
        self.config = config
        self._playwright = None
        self._browser = None
        self._context: Optional[BrowserContext] = None
        self._stealth = Stealth(
            navigator_languages_override=("en-US", "en"),
            init_scripts_only=True,
        )

    async def __aenter__(self) -> "BrowserSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def start(self) -> None:
        config = self.config
        logger.info("🚀 Launching Chromium browser...")
        self._playwright = await async_playwright().start()
        launch_args = {"headless": config.headless}
        if config.executable_path:
            launch_args["executable_path"] = config.executable_path
        if config.proxy:
            launch_args["proxy"] = config.proxy.as_playwright()
            logger.info(f"🌐 Using proxy {config.proxy.server}")
        try:
            self._browser = await self._playwright.chromium.launch(**launch_args)
            self._context = await self._browser.new_context(
                user_agent=USER_AGENT,
                viewport={"width": 1920, "height": 1080},
                locale="en-US",
                timezone_id="America/New_York",
                color_scheme="light",
                extra_http_headers={
                    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
                    "Accept-Language": "en-US,en;q=0.9",
                    "Upgrade-Insecure-Requests": "1",
                },
            )
        except Exception:
            await self.close()
            raise
        logger.info("✅ Browser ready")

    async def new_fetcher(self) -> PlaywrightPageFetcher:
        if self._context is None:
            raise RuntimeError("BrowserSession is not started")
        page = await self._context.new_page()
        await self._stealth.apply_stealth_async(page)
        await page.add_init_script(HIDE_WEBDRIVER_SCRIPT)
        return PlaywrightPageFetcher(page, self._context, self._stealth, self.config.timeout_ms)

    async def close(self) -> None:
        """Close context, browser and Playwright; each step runs even if an earlier one raises."""
        context, browser, playwright = self._context, self._browser, self._playwright
        self._context = self._browser = self._playwright = None
        try:
            if context is not None:
                await context.close()
        finally:
            try:
                if browser is not None:
                    await browser.close()
            finally:
                if playwright is not None:
                    await playwright.stop()
                    logger.info("🔒 Browser closed")
