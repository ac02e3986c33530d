"""Persistent work queue shared by every worker of a crawl job."""
from __future__ import annotations

import contextlib
import sqlite3
import time
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

import orjson
import structlog

from docucrawl.orchestrator.errors import JobNotFound, StoreUnavailable
from docucrawl.orchestrator.jobs import (
    CrawlJob,
    DataSource,
    EntryStatus,
    JobContext,
    JobStatus,
    QueueEntry,
    from_epoch,
)
from docucrawl.orchestrator.settings import CrawlerSettings
from docucrawl.storage.schema import connect, migrate

LOGGER = structlog.get_logger(__name__)

_ENTRY_COLUMNS = "id, job_id, url, status, content, attempts, updated_at"


def _entry_from_row(row: sqlite3.Row) -> QueueEntry:
    return QueueEntry(
        id=row["id"],
        job_id=row["job_id"],
        url=row["url"],
        status=EntryStatus(row["status"]),
        attempts=row["attempts"],
        updated_at=from_epoch(row["updated_at"]),
        content=row["content"],
    )


def _job_from_row(row: sqlite3.Row) -> CrawlJob:
    return CrawlJob(
        id=row["id"],
        source_id=row["source_id"],
        seed_url=row["seed_url"],
        status=JobStatus(row["status"]),
        settings=CrawlerSettings.model_validate(orjson.loads(row["settings_json"])),
        created_at=from_epoch(row["created_at"]),
    )


def _seconds(value: timedelta | float) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value)


class WorkQueue:
    """SQLite-backed queue of per-job URL entries.

    Every public method opens its own connection, so one instance can be
    shared across threads and several processes can point at the same file.
    Writes that touch more than one statement run under ``BEGIN IMMEDIATE``,
    which serialises them against all other writers of the database.
    """

    def __init__(self, *, path: Path, clock: Callable[[], float] = time.time) -> None:
        self._path = path
        self._clock = clock
        try:
            migrate(path)
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Cannot initialise store at {path}: {exc}") from exc

    @contextlib.contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        try:
            connection = connect(self._path)
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Cannot open store at {self._path}: {exc}") from exc
        try:
            yield connection
        except sqlite3.IntegrityError:
            raise
        except sqlite3.DatabaseError as exc:
            raise StoreUnavailable(str(exc)) from exc
        finally:
            connection.close()

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._connection() as connection:
            connection.execute("BEGIN IMMEDIATE")
            try:
                yield connection
            except BaseException:
                connection.execute("ROLLBACK")
                raise
            connection.execute("COMMIT")

    # -- data sources and jobs -------------------------------------------

    def get_or_create_source(self, url: str, *, source_type: str, name: str) -> DataSource:
        """Return the data source registered for ``url``, creating it if needed."""
        with self._connection() as connection:
            connection.execute(
                """
                INSERT INTO data_source (id, name, url, type) VALUES (?, ?, ?, ?)
                ON CONFLICT(url) DO NOTHING
                """,
                (uuid.uuid4().hex, name, url, source_type),
            )
            row = connection.execute(
                "SELECT id, name, url, type FROM data_source WHERE url = ?", (url,)
            ).fetchone()
        return DataSource(id=row["id"], name=row["name"], url=row["url"], type=row["type"])

    def create_job(self, *, source_id: str, seed_url: str, settings: CrawlerSettings) -> CrawlJob:
        """Insert a RUNNING job for the data source."""
        job_id = uuid.uuid4().hex
        now = self._clock()
        with self._connection() as connection:
            connection.execute(
                """
                INSERT INTO crawl_job (id, source_id, seed_url, status, settings_json, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    job_id,
                    source_id,
                    seed_url,
                    JobStatus.RUNNING.value,
                    orjson.dumps(settings.to_payload()).decode(),
                    now,
                ),
            )
        LOGGER.info("job_created", job_id=job_id, source_id=source_id, seed_url=seed_url)
        return CrawlJob(
            id=job_id,
            source_id=source_id,
            seed_url=seed_url,
            status=JobStatus.RUNNING,
            settings=settings,
            created_at=from_epoch(now),
        )

    def get_job(self, job_id: str) -> CrawlJob:
        with self._connection() as connection:
            row = connection.execute("SELECT * FROM crawl_job WHERE id = ?", (job_id,)).fetchone()
        if row is None:
            raise JobNotFound(job_id)
        return _job_from_row(row)

    def load_context(self, job_id: str) -> JobContext:
        """Rebuild the worker context of a job from its persisted row."""
        return self.get_job(job_id).context()

    def list_jobs(self, source_id: str) -> List[CrawlJob]:
        """Return the jobs of a data source, newest first."""
        with self._connection() as connection:
            rows = connection.execute(
                "SELECT * FROM crawl_job WHERE source_id = ? ORDER BY created_at DESC, rowid DESC",
                (source_id,),
            ).fetchall()
        return [_job_from_row(row) for row in rows]

    # -- queue operations ------------------------------------------------

    def try_claim_next(self, job_id: str) -> Optional[QueueEntry]:
        """Claim one random QUEUED entry of a running job, or return None."""
        now = self._clock()
        with self._transaction() as connection:
            row = connection.execute(
                """
                SELECT e.id FROM queue_entry AS e
                JOIN crawl_job AS j ON j.id = e.job_id
                WHERE e.job_id = ? AND e.status = ? AND j.status = ?
                ORDER BY RANDOM()
                LIMIT 1
                """,
                (job_id, EntryStatus.QUEUED.value, JobStatus.RUNNING.value),
            ).fetchone()
            if row is None:
                return None
            connection.execute(
                """
                UPDATE queue_entry
                SET status = ?, updated_at = ?, attempts = attempts + 1
                WHERE id = ?
                """,
                (EntryStatus.PROCESSING.value, now, row["id"]),
            )
            claimed = connection.execute(
                f"SELECT {_ENTRY_COLUMNS} FROM queue_entry WHERE id = ?", (row["id"],)
            ).fetchone()
        return _entry_from_row(claimed)

    def count_processing(self, job_id: str) -> int:
        with self._connection() as connection:
            row = connection.execute(
                "SELECT COUNT(*) AS count FROM queue_entry WHERE job_id = ? AND status = ?",
                (job_id, EntryStatus.PROCESSING.value),
            ).fetchone()
        return int(row["count"])

    def insert_if_absent(self, job_id: str, url: str) -> bool:
        """Queue ``url`` for a running job unless the job already knows it."""
        now = self._clock()
        with self._connection() as connection:
            cursor = connection.execute(
                """
                INSERT INTO queue_entry (id, job_id, url, status, attempts, created_at, updated_at)
                SELECT ?, id, ?, ?, 0, ?, ? FROM crawl_job WHERE id = ? AND status = ?
                ON CONFLICT(job_id, url) DO NOTHING
                """,
                (
                    uuid.uuid4().hex,
                    url,
                    EntryStatus.QUEUED.value,
                    now,
                    now,
                    job_id,
                    JobStatus.RUNNING.value,
                ),
            )
            return cursor.rowcount == 1

    def set_status(
        self,
        entry_id: str,
        status: EntryStatus,
        *,
        expected: Optional[EntryStatus] = None,
    ) -> bool:
        """Move an entry to ``status``; with ``expected`` only from that state."""
        query = "UPDATE queue_entry SET status = ?, updated_at = ? WHERE id = ?"
        params: tuple = (status.value, self._clock(), entry_id)
        if expected is not None:
            query += " AND status = ?"
            params += (expected.value,)
        with self._connection() as connection:
            cursor = connection.execute(query, params)
            return cursor.rowcount == 1

    def requeue(self, entry_id: str, *, refund_attempt: bool = False) -> Optional[EntryStatus]:
        """Return a PROCESSING entry to the queue, or cancel it if its job was cancelled.

        With ``refund_attempt`` the claim is not counted against the entry's attempts.
        """
        with self._transaction() as connection:
            row = connection.execute(
                """
                SELECT j.status AS job_status FROM queue_entry AS e
                JOIN crawl_job AS j ON j.id = e.job_id
                WHERE e.id = ? AND e.status = ?
                """,
                (entry_id, EntryStatus.PROCESSING.value),
            ).fetchone()
            if row is None:
                return None
            target = (
                EntryStatus.CANCELLED
                if row["job_status"] == JobStatus.CANCELLED.value
                else EntryStatus.QUEUED
            )
            connection.execute(
                """
                UPDATE queue_entry
                SET status = ?, updated_at = ?, attempts = MAX(attempts - ?, 0)
                WHERE id = ?
                """,
                (target.value, self._clock(), 1 if refund_attempt else 0, entry_id),
            )
        return target

    def set_content(self, entry_id: str, text: str) -> None:
        with self._connection() as connection:
            connection.execute("UPDATE queue_entry SET content = ? WHERE id = ?", (text, entry_id))

    def get_content(self, entry_id: str) -> Optional[str]:
        with self._connection() as connection:
            row = connection.execute(
                "SELECT content FROM queue_entry WHERE id = ?", (entry_id,)
            ).fetchone()
        return None if row is None else row["content"]

    def is_cancelled(self, job_id: str) -> bool:
        with self._connection() as connection:
            row = connection.execute(
                "SELECT status FROM crawl_job WHERE id = ?", (job_id,)
            ).fetchone()
        if row is None:
            raise JobNotFound(job_id)
        return row["status"] == JobStatus.CANCELLED.value

    def cancel(self, job_id: str) -> int:
        """Cancel the job and every QUEUED entry; returns the entries cancelled."""
        with self._transaction() as connection:
            cursor = connection.execute(
                "UPDATE crawl_job SET status = ? WHERE id = ?",
                (JobStatus.CANCELLED.value, job_id),
            )
            if cursor.rowcount == 0:
                raise JobNotFound(job_id)
            cursor = connection.execute(
                """
                UPDATE queue_entry SET status = ?, updated_at = ?
                WHERE job_id = ? AND status = ?
                """,
                (EntryStatus.CANCELLED.value, self._clock(), job_id, EntryStatus.QUEUED.value),
            )
            cancelled = cursor.rowcount
        LOGGER.info("job_cancelled", job_id=job_id, entries_cancelled=cancelled)
        return cancelled

    def reclaim_stuck(self, job_id: str, stale_after: timedelta | float) -> int:
        """Return PROCESSING entries idle for longer than ``stale_after`` to the queue."""
        now = self._clock()
        cutoff = now - _seconds(stale_after)
        with self._connection() as connection:
            cursor = connection.execute(
                """
                UPDATE queue_entry
                SET status = CASE
                        WHEN (SELECT status FROM crawl_job WHERE id = queue_entry.job_id) = ?
                        THEN ? ELSE ?
                    END,
                    updated_at = ?
                WHERE job_id = ? AND status = ? AND updated_at < ?
                """,
                (
                    JobStatus.CANCELLED.value,
                    EntryStatus.CANCELLED.value,
                    EntryStatus.QUEUED.value,
                    now,
                    job_id,
                    EntryStatus.PROCESSING.value,
                    cutoff,
                ),
            )
            reclaimed = cursor.rowcount
        if reclaimed:
            LOGGER.info("entries_reclaimed", job_id=job_id, count=reclaimed)
        return reclaimed

    def snapshot(self, job_id: str) -> List[QueueEntry]:
        """Read every entry of the job without their content, in insertion order."""
        with self._connection() as connection:
            rows = connection.execute(
                """
                SELECT id, job_id, url, status, NULL AS content, attempts, updated_at
                FROM queue_entry WHERE job_id = ? ORDER BY created_at, rowid
                """,
                (job_id,),
            ).fetchall()
        return [_entry_from_row(row) for row in rows]

    def status_counts(self, job_id: str) -> Dict[EntryStatus, int]:
        counts = {status: 0 for status in EntryStatus}
        with self._connection() as connection:
            rows = connection.execute(
                "SELECT status, COUNT(*) AS count FROM queue_entry WHERE job_id = ? GROUP BY status",
                (job_id,),
            ).fetchall()
        for row in rows:
            counts[EntryStatus(row["status"])] = int(row["count"])
        return counts
