"""Exception hierarchy shared by the crawl orchestration core."""
from __future__ import annotations


class CrawlError(Exception):
    """Base class for crawl orchestration errors."""


class InvalidInput(CrawlError, ValueError):
    """Raised when a crawl job is requested with an unusable seed URL."""


class JobNotFound(CrawlError, LookupError):
    """Raised when a job id does not exist in the store."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Crawl job not found: {job_id}")


class FetchError(CrawlError):
    """Navigation, network or render failure for a single URL."""

    def __init__(self, url: str, reason: str) -> None:
        self.url = url
        self.reason = reason
        super().__init__(f"Failed to fetch {url}: {reason}")


class FetchTimeout(FetchError):
    """The fetch did not finish inside its time window; the entry is retried."""

    def __init__(self, url: str, timeout: float) -> None:
        self.timeout = timeout
        super().__init__(url, f"timed out after {timeout:.1f}s")


class StoreUnavailable(CrawlError):
    """The persistence layer could not be reached or refused the operation."""
