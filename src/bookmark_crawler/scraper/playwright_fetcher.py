"""Page crawl through a pooled Playwright browser context.

:func:`crawl_page` borrows a context from the
:class:`~bookmark_crawler.scraper.browser_pool.BrowserContextPool`, loads
the page, captures its HTML and (optionally) a PNG screenshot, and always
hands the context back.  When the pool has no context to give, it degrades
to :func:`~bookmark_crawler.scraper.http_fetcher.fetch_browserless`.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from playwright.async_api import BrowserContext
from playwright.async_api import Error as PlaywrightError

from bookmark_crawler.config.settings import Settings
from bookmark_crawler.core.cancellation import CancellationToken
from bookmark_crawler.core.exceptions import TransientNetworkError
from bookmark_crawler.scraper.adblock import AdBlocker
from bookmark_crawler.scraper.browser_pool import BrowserContextPool
from bookmark_crawler.scraper.config import NETWORK_IDLE_CEILING_SEC
from bookmark_crawler.scraper.http_fetcher import CrawlResult, fetch_browserless

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CrawlOptions:
    navigate_timeout_sec: float = 30
    screenshot_timeout_sec: float = 5
    store_screenshot: bool = True
    full_page_screenshot: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> "CrawlOptions":
        return cls(
            navigate_timeout_sec=settings.crawler_navigate_timeout_sec,
            screenshot_timeout_sec=settings.crawler_screenshot_timeout_sec,
            store_screenshot=settings.crawler_store_screenshot,
            full_page_screenshot=settings.crawler_full_page_screenshot,
        )


async def crawl_page(
    url: str,
    *,
    pool: BrowserContextPool,
    client: httpx.AsyncClient,
    options: CrawlOptions,
    adblocker: Optional[AdBlocker] = None,
    cancellation: Optional[CancellationToken] = None,
    job_id: str = "-",
) -> CrawlResult:
    """Crawl *url* with a pooled browser context, or plain HTTP if none is available.

    Raises:
        TransientNetworkError: If navigation (or the fallback GET) fails.
        JobCancelledError: If *cancellation* fires while the page is loading.
    """
    context = await pool.acquire_context()
    if context is None:
        logger.info("crawler[%s]: no browser context available, falling back to browserless", job_id)
        return await fetch_browserless(url, client=client)

    try:
        return await _crawl_in_context(
            context,
            url,
            options=options,
            adblocker=adblocker,
            cancellation=cancellation,
            job_id=job_id,
        )
    finally:
        await pool.release_context(context)


async def _crawl_in_context(
    context: BrowserContext,
    url: str,
    *,
    options: CrawlOptions,
    adblocker: Optional[AdBlocker],
    cancellation: Optional[CancellationToken],
    job_id: str,
) -> CrawlResult:
    page = await context.new_page()
    try:
        if adblocker is not None:
            await adblocker.enable(page)

        logger.info("crawler[%s]: navigating to %s", job_id, url)
        try:
            response = await page.goto(
                url,
                timeout=options.navigate_timeout_sec * 1000,
                wait_until="domcontentloaded",
            )
        except PlaywrightError as exc:
            raise TransientNetworkError(f"Navigation to {url} failed: {exc}", url=url) from exc

        # Pages with long-polling or websockets never go network-idle.
        try:
            await asyncio.wait_for(
                page.wait_for_load_state("networkidle", timeout=NETWORK_IDLE_CEILING_SEC * 1000),
                timeout=NETWORK_IDLE_CEILING_SEC,
            )
        except (asyncio.TimeoutError, PlaywrightError):
            pass
        logger.info("crawler[%s]: finished waiting for the page to load", job_id)

        if cancellation is not None:
            cancellation.raise_if_cancelled("capture")

        html = await page.content()

        screenshot: bytes | None = None
        if options.store_screenshot:
            try:
                screenshot = await asyncio.wait_for(
                    page.screenshot(type="png", full_page=options.full_page_screenshot),
                    timeout=options.screenshot_timeout_sec,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "crawler[%s]: screenshot timed out after %ss, "
                    "consider increasing CRAWLER_SCREENSHOT_TIMEOUT_SEC",
                    job_id,
                    options.screenshot_timeout_sec,
                )
            except PlaywrightError as exc:
                logger.warning("crawler[%s]: failed to capture the screenshot: %s", job_id, exc)

        return CrawlResult(
            html=html,
            status_code=response.status if response is not None else 0,
            final_url=page.url,
            screenshot=screenshot,
        )
    finally:
        try:
            await page.close()
        except PlaywrightError as exc:
            logger.debug("crawler[%s]: failed to close page: %s", job_id, exc)
