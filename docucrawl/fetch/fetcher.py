"""Page fetcher contract and the plain-HTTP engine."""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import List

import httpx
import structlog

from docucrawl.observability.tracing import log_fetch_result
from docucrawl.orchestrator.errors import FetchError, FetchTimeout
from docucrawl.parse.visible_text import extract_page

LOGGER = structlog.get_logger(__name__)


@dataclass(slots=True)
class FetchedPage:
    """Links discovered on a page and its visible text."""

    url: str
    links: List[str] = field(default_factory=list)
    text: str = ""


class PageFetcher:
    """Fetch one URL and return its links and visible text.

    Implementations raise ``FetchTimeout`` when the page does not load in
    ``timeout`` seconds and ``FetchError`` for any other failure.
    """

    async def fetch(self, url: str, *, timeout: float) -> FetchedPage:
        raise NotImplementedError


class HttpPageFetcher(PageFetcher):
    """Fetches raw HTML with httpx; no JavaScript is executed."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def fetch(self, url: str, *, timeout: float) -> FetchedPage:
        start = time.perf_counter()
        try:
            response = await self._client.get(url, timeout=timeout)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise FetchTimeout(url, timeout) from exc
        except httpx.HTTPError as exc:
            raise FetchError(url, str(exc) or exc.__class__.__name__) from exc
        links, text = extract_page(response.text, str(response.url))
        log_fetch_result(
            url=url,
            links=len(links),
            text_chars=len(text),
            elapsed_ms=int((time.perf_counter() - start) * 1000),
        )
        return FetchedPage(url=url, links=links, text=text)
