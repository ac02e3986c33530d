"""Bounded-lifetime crawl worker.

A worker claims URLs of one job, fetches them and queues in-scope links
until the queue drains, the job is cancelled, enough siblings are already
busy, or its wall-clock budget runs out. In the last case it dispatches a
successor before returning so the job continues in a fresh invocation.
"""
from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Protocol

import structlog

from docucrawl.fetch.fetcher import FetchedPage, PageFetcher
from docucrawl.observability.metrics import MetricsRegistry, record_duration
from docucrawl.observability.tracing import clear_context, set_context, span
from docucrawl.orchestrator.dispatch import TaskDispatcher
from docucrawl.orchestrator.errors import FetchTimeout
from docucrawl.orchestrator.jobs import EntryStatus, JobContext, QueueEntry
from docucrawl.orchestrator.queue import WorkQueue
from docucrawl.orchestrator.scope import is_indexable, normalize_url
from docucrawl.orchestrator.settings import RuntimeConfig

LOGGER = structlog.get_logger(__name__)


class Dispatcher(Protocol):
    def submit(self, context: JobContext) -> object:
        ...


class ExitReason(str, Enum):
    CANCELLED = "cancelled"
    SATURATED = "saturated"
    DRAINED = "drained"
    BUDGET = "budget"


@dataclass
class WorkerReport:
    """Outcome of one worker invocation."""

    worker_id: str
    job_id: str
    reason: Optional[ExitReason] = None
    processed: int = 0
    completed: int = 0
    failed: int = 0
    requeued: int = 0
    links_enqueued: int = 0
    successor_dispatched: bool = False

    def as_log(self) -> Dict[str, object]:
        payload = asdict(self)
        payload["reason"] = self.reason.value if self.reason else None
        return payload


class CrawlWorker:
    """One invocation of the crawl loop for a single job."""

    def __init__(
        self,
        *,
        queue: WorkQueue,
        fetcher: PageFetcher,
        dispatcher: Dispatcher,
        config: RuntimeConfig,
        metrics: Optional[MetricsRegistry] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._queue = queue
        self._fetcher = fetcher
        self._dispatcher = dispatcher
        self._config = config
        self._metrics = metrics or MetricsRegistry()
        self._clock = clock

    async def _store(self, func, *args, **kwargs):
        return await asyncio.to_thread(func, *args, **kwargs)

    async def run(self, context: JobContext) -> WorkerReport:
        """Work on the job until an exit condition is met and return a report.

        Store failures propagate to the caller and no successor is dispatched.
        """
        report = WorkerReport(worker_id=uuid.uuid4().hex[:8], job_id=context.job_id)
        set_context(job_id=context.job_id, worker_id=report.worker_id)
        try:
            with record_duration(self._metrics, "worker_duration_ms"):
                report.reason = await self._loop(context, report)
            if report.reason is ExitReason.BUDGET:
                self._dispatcher.submit(context)
                report.successor_dispatched = True
                self._metrics.incr("successors_dispatched")
            LOGGER.info("worker_exit", **report.as_log())
        finally:
            clear_context()
        return report

    async def _loop(self, context: JobContext, report: WorkerReport) -> ExitReason:
        started = self._clock()
        budget = self._config.invocation_budget_seconds
        max_parallel = context.settings.max_parallel_scrapers
        while True:
            reclaimed = await self._store(
                self._queue.reclaim_stuck, context.job_id, self._config.stale_after_seconds
            )
            if reclaimed:
                self._metrics.incr("entries_reclaimed", reclaimed)

            if await self._store(self._queue.is_cancelled, context.job_id):
                return ExitReason.CANCELLED

            processing = await self._store(self._queue.count_processing, context.job_id)
            if processing >= max_parallel:
                return ExitReason.SATURATED

            if budget - (self._clock() - started) <= 0:
                return ExitReason.BUDGET

            entry = await self._store(self._queue.try_claim_next, context.job_id)
            if entry is None:
                return ExitReason.DRAINED
            self._metrics.incr("claims")

            if processing + 1 < max_parallel:
                self._dispatcher.submit(context)
                self._metrics.incr("siblings_dispatched")

            time_left = budget - (self._clock() - started)
            if time_left <= 0:
                await self._store(self._queue.requeue, entry.id, refund_attempt=True)
                report.requeued += 1
                return ExitReason.BUDGET

            window = min(time_left, self._config.fetch_timeout_seconds)
            await self._process(context, entry, window, report)

    async def _process(
        self,
        context: JobContext,
        entry: QueueEntry,
        window: float,
        report: WorkerReport,
    ) -> None:
        report.processed += 1
        try:
            with span(name="fetch", url=entry.url):
                page = await asyncio.wait_for(
                    self._fetcher.fetch(entry.url, timeout=window), timeout=window
                )
        except (asyncio.TimeoutError, FetchTimeout):
            await self._handle_timeout(entry, window, report)
            return
        except Exception as exc:  # FetchError or any other non-timeout failure is terminal
            await self._handle_failure(entry, exc, report)
            return

        self._metrics.incr("pages_fetched")
        report.links_enqueued += await self._enqueue_links(context, page)
        await self._store(self._queue.set_content, entry.id, page.text)
        completed = await self._store(
            self._queue.set_status, entry.id, EntryStatus.COMPLETED, expected=EntryStatus.PROCESSING
        )
        if not completed:
            LOGGER.info("entry_claim_lost", entry_id=entry.id, url=entry.url)
            return
        report.completed += 1
        self._metrics.incr("pages_completed")
        LOGGER.info("entry_completed", entry_id=entry.id, url=entry.url)

    async def _enqueue_links(self, context: JobContext, page: FetchedPage) -> int:
        candidates = []
        for link in page.links:
            normalized = normalize_url(link)
            if normalized is None or normalized in candidates:
                continue
            if is_indexable(normalized, context.seed_url, context.settings):
                candidates.append(normalized)
        enqueued = 0
        for url in candidates:
            if await self._store(self._queue.insert_if_absent, context.job_id, url):
                enqueued += 1
        self._metrics.incr("links_enqueued", enqueued)
        return enqueued

    async def _handle_timeout(self, entry: QueueEntry, window: float, report: WorkerReport) -> None:
        self._metrics.incr("fetch_timeouts")
        # A window shortened by the invocation budget says nothing about the page.
        budget_cut = window < self._config.fetch_timeout_seconds
        max_attempts = self._config.max_attempts
        if not budget_cut and max_attempts and entry.attempts >= max_attempts:
            await self._store(
                self._queue.set_status,
                entry.id,
                EntryStatus.FAILED,
                expected=EntryStatus.PROCESSING,
            )
            report.failed += 1
            LOGGER.warning(
                "entry_timeout_exhausted",
                entry_id=entry.id,
                url=entry.url,
                attempts=entry.attempts,
            )
            return
        await self._store(self._queue.requeue, entry.id, refund_attempt=budget_cut)
        report.requeued += 1
        LOGGER.warning(
            "entry_timeout_requeued",
            entry_id=entry.id,
            url=entry.url,
            attempts=entry.attempts,
            budget_cut=budget_cut,
            window_seconds=round(window, 3),
        )

    async def _handle_failure(self, entry: QueueEntry, error: Exception, report: WorkerReport) -> None:
        self._metrics.incr("fetch_failures")
        await self._store(
            self._queue.set_status, entry.id, EntryStatus.FAILED, expected=EntryStatus.PROCESSING
        )
        report.failed += 1
        LOGGER.warning("entry_failed", entry_id=entry.id, url=entry.url, error=str(error))


def worker_dispatcher(
    *,
    queue: WorkQueue,
    fetcher: PageFetcher,
    config: RuntimeConfig,
    metrics: Optional[MetricsRegistry] = None,
) -> TaskDispatcher:
    """Build a dispatcher whose every submission runs a fresh `CrawlWorker`."""
    dispatcher = TaskDispatcher()
    registry = metrics or MetricsRegistry()

    async def _run(context: JobContext) -> WorkerReport:
        worker = CrawlWorker(
            queue=queue,
            fetcher=fetcher,
            dispatcher=dispatcher,
            config=config,
            metrics=registry,
        )
        return await worker.run(context)

    dispatcher.bind(_run)
    return dispatcher
