import asyncio
from types import SimpleNamespace

import httpx
import pytest

from docucrawl.fetch.browser import BrowserPageFetcher
from docucrawl.fetch.fetcher import HttpPageFetcher
from docucrawl.fetch.session import create_page_fetcher
from docucrawl.orchestrator.errors import FetchError, FetchTimeout
from docucrawl.parse.visible_text import extract_page

PAGE = """
<html>
  <head><title>Guide</title><script>var hidden = 1;</script></head>
  <body>
    <nav><a href="/docs/intro">Intro</a> <a href="setup#step-2">Setup</a></nav>
    <main>
      <h1>Getting   started</h1>
      <p>Install the package.</p>
      <div style="display: none">secret banner</div>
      <p hidden>old text</p>
      <span aria-hidden="true">icon</span>
      <style>.x { color: red }</style>
      <a href="mailto:team@a.test">Mail</a>
      <a href="https://b.test/">Elsewhere</a>
      <a href="/docs/intro">Intro again</a>
    </main>
  </body>
</html>
"""


def test_extract_page_returns_visible_text_and_absolute_links():
    links, text = extract_page(PAGE, "https://a.test/docs/")
    assert links == [
        "https://a.test/docs/intro",
        "https://a.test/docs/setup#step-2",
        "https://b.test/",
    ]
    assert text == "Intro Setup Getting started Install the package. Mail Elsewhere Intro again"


def _fetch(handler, url="https://a.test/docs/"):
    async def _run():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            return await HttpPageFetcher(client).fetch(url, timeout=1.0)

    return asyncio.run(_run())


def test_http_fetcher_parses_successful_response():
    page = _fetch(lambda request: httpx.Response(200, text=PAGE, request=request))
    assert page.url == "https://a.test/docs/"
    assert "https://a.test/docs/intro" in page.links
    assert page.text.startswith("Intro Setup")


def test_http_fetcher_maps_status_errors():
    with pytest.raises(FetchError) as excinfo:
        _fetch(lambda request: httpx.Response(404, request=request))
    assert not isinstance(excinfo.value, FetchTimeout)
    assert excinfo.value.url == "https://a.test/docs/"


def test_http_fetcher_maps_timeouts():
    def _slow(request):
        raise httpx.ReadTimeout("read timed out", request=request)

    with pytest.raises(FetchTimeout) as excinfo:
        _fetch(_slow)
    assert excinfo.value.timeout == 1.0


def test_http_fetcher_maps_connection_errors():
    def _refused(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(FetchError) as excinfo:
        _fetch(_refused)
    assert "connection refused" in excinfo.value.reason


def test_http_engine_factory_yields_http_fetcher():
    async def _run():
        async with create_page_fetcher(engine="http", user_agent="docucrawl-test", timeout=1.0) as fetcher:
            return fetcher

    assert isinstance(asyncio.run(_run()), HttpPageFetcher)


def test_unknown_engine_is_rejected():
    async def _run():
        async with create_page_fetcher(engine="curl", user_agent="docucrawl-test", timeout=1.0):
            pass

    with pytest.raises(ValueError):
        asyncio.run(_run())


class DummyCrawler:
    """Stands in for crawl4ai's AsyncWebCrawler; ``arun`` returns or raises ``outcome``."""

    def __init__(self, outcome):
        self._outcome = outcome
        self.configs = []

    async def arun(self, *, url, config):
        self.configs.append(config)
        if isinstance(self._outcome, BaseException):
            raise self._outcome
        return self._outcome


def _browser_fetch(outcome, url="https://a.test/docs/"):
    crawler = DummyCrawler(outcome)

    async def _run():
        return await BrowserPageFetcher(crawler).fetch(url, timeout=2.5)

    return crawler, _run


def test_browser_fetcher_extracts_rendered_page():
    result = SimpleNamespace(success=True, error_message=None, html=PAGE, url="https://a.test/docs/")
    crawler, run = _browser_fetch(result)
    page = asyncio.run(run())
    assert page.links[0] == "https://a.test/docs/intro"
    assert page.text.startswith("Intro Setup Getting started")
    assert crawler.configs[0].page_timeout == 2500


def test_browser_timeout_message_is_a_fetch_timeout():
    result = SimpleNamespace(
        success=False, error_message="Page.goto: Timeout 2500ms exceeded.", html=None, url=None
    )
    _crawler, run = _browser_fetch(result)
    with pytest.raises(FetchTimeout) as excinfo:
        asyncio.run(run())
    assert excinfo.value.timeout == 2.5


def test_browser_navigation_failure_is_a_fetch_error():
    result = SimpleNamespace(
        success=False, error_message="net::ERR_NAME_NOT_RESOLVED", html=None, url=None
    )
    _crawler, run = _browser_fetch(result)
    with pytest.raises(FetchError) as excinfo:
        asyncio.run(run())
    assert not isinstance(excinfo.value, FetchTimeout)
    assert excinfo.value.reason == "net::ERR_NAME_NOT_RESOLVED"


def test_browser_raised_timeout_is_a_fetch_timeout():
    _crawler, run = _browser_fetch(asyncio.TimeoutError())
    with pytest.raises(FetchTimeout):
        asyncio.run(run())


def test_browser_raised_exception_is_a_fetch_error():
    _crawler, run = _browser_fetch(RuntimeError("Target page, context or browser has been closed"))
    with pytest.raises(FetchError) as excinfo:
        asyncio.run(run())
    assert not isinstance(excinfo.value, FetchTimeout)
    assert "browser has been closed" in excinfo.value.reason
