"""Page fetcher: rendered pages through Playwright, static pages through httpx."""
import asyncio
import logging
from typing import Optional

import httpx
from playwright.async_api import Browser, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from leaflet_ingest.config import config
from leaflet_ingest.errors import FetchError
from leaflet_ingest.parse.models import FetchMode, WaitStrategy

logger = logging.getLogger(__name__)


class PageFetcher:
    """Fetches seed pages; owns one HTTP client and, lazily, one browser."""

    def __init__(
        self,
        timeout_ms: int | None = None,
        user_agent: str | None = None,
        wait_strategy: WaitStrategy | None = None,
        headless: bool | None = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout_ms = timeout_ms or config.TIMEOUT_MS
        self.user_agent = user_agent or config.USER_AGENT
        self.wait_strategy = wait_strategy or WaitStrategy(config.WAIT_STRATEGY)
        self.headless = config.HEADLESS if headless is None else headless
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._browser_lock = asyncio.Lock()

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            http2=True,
            timeout=self.timeout_ms / 1000,
            follow_redirects=True,
            headers={"User-Agent": self.user_agent},
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing browser: {e}")
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def fetch(
        self,
        url: str,
        mode: FetchMode = FetchMode.RENDERED,
        wait_strategy: WaitStrategy | None = None,
        wait_for_selector: str | None = None,
    ) -> str:
        """Return the HTML for ``url``; raises FetchError."""
        if mode is FetchMode.STATIC:
            return await self._fetch_static(url)
        return await self._fetch_rendered(url, wait_strategy or self.wait_strategy, wait_for_selector)

    async def _fetch_static(self, url: str) -> str:
        if self._client is None:
            raise RuntimeError("PageFetcher used outside of its context manager")
        try:
            response = await self._get(url)
        except (httpx.TimeoutException, httpx.NetworkError) as e:
            raise FetchError(url, f"network error: {e!r}") from e
        except httpx.HTTPError as e:
            raise FetchError(url, f"http error: {e!r}") from e

        if not response.is_success:
            raise FetchError(url, f"HTTP {response.status_code}", status_code=response.status_code)
        return response.text

    @retry(
        stop=stop_after_attempt(config.MAX_RETRIES),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        reraise=True,
    )
    async def _get(self, url: str) -> httpx.Response:
        logger.debug(f"GET {url}")
        return await self._client.get(url)

    async def _get_browser(self) -> Browser:
        async with self._browser_lock:
            if self._browser is None:
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(headless=self.headless)
                logger.debug("Launched headless Chromium")
            return self._browser

    async def _fetch_rendered(
        self, url: str, wait_strategy: WaitStrategy, wait_for_selector: str | None
    ) -> str:
        try:
            browser = await self._get_browser()
        except PlaywrightError as e:
            raise FetchError(url, f"browser launch failed: {e}") from e

        context = await browser.new_context(user_agent=self.user_agent)
        try:
            page = await context.new_page()
            response = await page.goto(
                url,
                wait_until=wait_strategy.playwright_value,
                timeout=self.timeout_ms,
            )
            if response is not None and not response.ok:
                raise FetchError(url, f"HTTP {response.status}", status_code=response.status)
            if wait_for_selector:
                await page.wait_for_selector(wait_for_selector, timeout=self.timeout_ms)
            return await page.content()
        except PlaywrightTimeoutError as e:
            raise FetchError(url, f"timed out after {self.timeout_ms} ms") from e
        except PlaywrightError as e:
            raise FetchError(url, f"navigation failed: {e}") from e
        finally:
            await context.close()
