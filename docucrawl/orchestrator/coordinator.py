"""Job-level operations: start, cancel, progress and tree views."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional
from urllib.parse import urlsplit

import structlog

from docucrawl.orchestrator.errors import InvalidInput
from docucrawl.orchestrator.jobs import OPEN_STATUSES, CrawlJob, EntryStatus, JobContext
from docucrawl.orchestrator.queue import WorkQueue
from docucrawl.orchestrator.scope import normalize_url
from docucrawl.orchestrator.settings import CrawlerSettings
from docucrawl.orchestrator.tree import UrlTreeNode, build_tree
from docucrawl.orchestrator.worker import Dispatcher

LOGGER = structlog.get_logger(__name__)

SOURCE_TYPE = "docu_scrape"


@dataclass(frozen=True)
class StartedJob:
    job_id: str
    source_id: str


@dataclass(frozen=True)
class JobProgress:
    """Aggregate view of a job's queue."""

    discovered_count: int
    completed_count: int
    is_complete: bool
    counts: Dict[str, int]

    def as_dict(self) -> Dict[str, object]:
        return {
            "discovered_count": self.discovered_count,
            "completed_count": self.completed_count,
            "is_complete": self.is_complete,
            "counts": dict(self.counts),
        }


class CrawlCoordinator:
    """Entry point used by callers outside the crawl core."""

    def __init__(
        self,
        *,
        queue: WorkQueue,
        dispatcher: Optional[Dispatcher] = None,
        defaults: Optional[CrawlerSettings] = None,
    ) -> None:
        self._queue = queue
        self._dispatcher = dispatcher
        self._defaults = defaults or CrawlerSettings()

    async def start(self, source_url: str, settings: Optional[CrawlerSettings] = None) -> StartedJob:
        """Create a job seeded at ``source_url`` and dispatch its first worker."""
        if not source_url or not source_url.strip():
            raise InvalidInput("A start URL is required")
        seed_url = normalize_url(source_url)
        if seed_url is None:
            raise InvalidInput(f"Start URL must be an absolute http(s) URL: {source_url!r}")
        settings = settings or self._defaults

        source = await asyncio.to_thread(
            self._queue.get_or_create_source,
            seed_url,
            source_type=SOURCE_TYPE,
            name=urlsplit(seed_url).hostname or seed_url,
        )
        job = await asyncio.to_thread(
            self._queue.create_job, source_id=source.id, seed_url=seed_url, settings=settings
        )
        await asyncio.to_thread(self._queue.insert_if_absent, job.id, seed_url)
        if self._dispatcher is not None:
            self._dispatcher.submit(job.context())
        LOGGER.info("job_started", job_id=job.id, source_id=source.id, seed_url=seed_url)
        return StartedJob(job_id=job.id, source_id=source.id)

    async def resume(self, job_id: str) -> JobContext:
        """Dispatch a worker for an existing job, e.g. after a stalled chain."""
        context = await asyncio.to_thread(self._queue.load_context, job_id)
        if self._dispatcher is not None:
            self._dispatcher.submit(context)
        return context

    async def cancel(self, job_id: str) -> int:
        """Cancel the job; calling it again or after completion changes nothing."""
        return await asyncio.to_thread(self._queue.cancel, job_id)

    async def status(self, job_id: str) -> JobProgress:
        await asyncio.to_thread(self._queue.get_job, job_id)
        counts = await asyncio.to_thread(self._queue.status_counts, job_id)
        open_count = sum(counts[status] for status in OPEN_STATUSES)
        return JobProgress(
            discovered_count=sum(counts.values()),
            completed_count=counts[EntryStatus.COMPLETED],
            is_complete=open_count == 0,
            counts={status.value: count for status, count in counts.items()},
        )

    async def tree(self, job_id: str) -> UrlTreeNode:
        entries = await asyncio.to_thread(self._queue.snapshot, job_id)
        return build_tree(entries)

    async def content(self, entry_id: str) -> Optional[str]:
        return await asyncio.to_thread(self._queue.get_content, entry_id)

    async def jobs(self, source_id: str) -> List[CrawlJob]:
        return await asyncio.to_thread(self._queue.list_jobs, source_id)
