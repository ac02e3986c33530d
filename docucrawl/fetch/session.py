"""Factories for page fetch engines."""
from __future__ import annotations

import contextlib
from typing import AsyncIterator

import httpx

from docucrawl.fetch.fetcher import HttpPageFetcher, PageFetcher


@contextlib.asynccontextmanager
async def create_page_fetcher(
    *,
    engine: str,
    user_agent: str,
    timeout: float,
    max_connections: int = 10,
) -> AsyncIterator[PageFetcher]:
    """Yield a configured `PageFetcher` for the duration of the context."""
    if engine == "browser":
        # crawl4ai pulls in playwright; only import it when a browser is wanted.
        from docucrawl.fetch.browser import open_browser_fetcher

        async with open_browser_fetcher(user_agent=user_agent) as fetcher:
            yield fetcher
        return
    if engine != "http":
        raise ValueError(f"Unknown fetch engine: {engine}")
    headers = {"User-Agent": user_agent}
    limits = httpx.Limits(max_connections=max_connections, max_keepalive_connections=max_connections)
    async with httpx.AsyncClient(
        headers=headers,
        limits=limits,
        timeout=timeout,
        follow_redirects=True,
    ) as client:
        yield HttpPageFetcher(client)
