"""Definitions for crawl jobs, queue entries and their lifecycle."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from docucrawl.orchestrator.settings import CrawlerSettings


class JobStatus(str, Enum):
    RUNNING = "RUNNING"
    CANCELLED = "CANCELLED"


class EntryStatus(str, Enum):
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


# Entries in these states still have work pending for the job.
OPEN_STATUSES = frozenset({EntryStatus.QUEUED, EntryStatus.PROCESSING})


def from_epoch(value: float) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


@dataclass(slots=True)
class DataSource:
    """Origin site that groups crawl jobs."""

    id: str
    name: str
    url: str
    type: str = "docu_scrape"


@dataclass(slots=True)
class CrawlJob:
    """One crawl run rooted at a single seed URL."""

    id: str
    source_id: str
    seed_url: str
    status: JobStatus
    settings: CrawlerSettings
    created_at: datetime

    @property
    def is_cancelled(self) -> bool:
        return self.status is JobStatus.CANCELLED

    def context(self) -> "JobContext":
        """Return the transient context handed to workers for this job."""
        return JobContext(job_id=self.id, seed_url=self.seed_url, settings=self.settings)


@dataclass(slots=True)
class QueueEntry:
    """One URL's crawl record within a job."""

    id: str
    job_id: str
    url: str
    status: EntryStatus
    attempts: int
    updated_at: datetime
    content: Optional[str] = None


@dataclass(frozen=True, slots=True)
class JobContext:
    """Everything a worker invocation needs to continue a job."""

    job_id: str
    seed_url: str
    settings: CrawlerSettings
