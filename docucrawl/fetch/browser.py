"""Headless-browser fetch engine built on crawl4ai."""
from __future__ import annotations

import asyncio
import contextlib
import time
from typing import AsyncIterator

import structlog
from crawl4ai import AsyncWebCrawler, BrowserConfig, CacheMode, CrawlerRunConfig

from docucrawl.fetch.fetcher import FetchedPage, PageFetcher
from docucrawl.observability.tracing import log_fetch_result
from docucrawl.orchestrator.errors import FetchError, FetchTimeout
from docucrawl.parse.visible_text import extract_page

LOGGER = structlog.get_logger(__name__)


class BrowserPageFetcher(PageFetcher):
    """Renders pages in Chromium, scrolling through them to load lazy content."""

    def __init__(self, crawler: AsyncWebCrawler) -> None:
        self._crawler = crawler

    def _run_config(self, timeout: float) -> CrawlerRunConfig:
        return CrawlerRunConfig(
            cache_mode=CacheMode.BYPASS,
            wait_until="domcontentloaded",
            wait_for="css:body",
            page_timeout=int(timeout * 1000),
            scan_full_page=True,
            scroll_delay=0.1,
            verbose=False,
        )

    async def fetch(self, url: str, *, timeout: float) -> FetchedPage:
        start = time.perf_counter()
        try:
            result = await self._crawler.arun(url=url, config=self._run_config(timeout))
        except asyncio.TimeoutError as exc:
            raise FetchTimeout(url, timeout) from exc
        except Exception as exc:  # playwright navigation errors arrive untyped
            raise FetchError(url, str(exc)) from exc
        if not result.success:
            message = result.error_message or "navigation failed"
            if "timeout" in message.lower():
                raise FetchTimeout(url, timeout)
            raise FetchError(url, message)
        links, text = extract_page(result.html or "", result.url or url)
        log_fetch_result(
            url=url,
            links=len(links),
            text_chars=len(text),
            elapsed_ms=int((time.perf_counter() - start) * 1000),
        )
        return FetchedPage(url=url, links=links, text=text)


@contextlib.asynccontextmanager
async def open_browser_fetcher(*, user_agent: str) -> AsyncIterator[BrowserPageFetcher]:
    """Launch one headless browser shared by all fetches inside the context."""
    config = BrowserConfig(headless=True, user_agent=user_agent, verbose=False)
    async with AsyncWebCrawler(config=config) as crawler:
        LOGGER.info("browser_started", user_agent=user_agent)
        yield BrowserPageFetcher(crawler)
