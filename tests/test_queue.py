import sqlite3
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from docucrawl.orchestrator import queue as queue_module
from docucrawl.orchestrator.errors import JobNotFound, StoreUnavailable
from docucrawl.orchestrator.jobs import EntryStatus, JobStatus
from docucrawl.orchestrator.queue import WorkQueue
from docucrawl.orchestrator.settings import CrawlerSettings


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _job(queue: WorkQueue, seed: str = "https://a.test/", settings=None):
    source = queue.get_or_create_source(seed, source_type="docu_scrape", name="a.test")
    return queue.create_job(source_id=source.id, seed_url=seed, settings=settings or CrawlerSettings())


def _statuses(queue: WorkQueue, job_id: str):
    return {entry.url: entry.status for entry in queue.snapshot(job_id)}


def test_insert_if_absent_under_concurrent_duplicates(tmp_path):
    queue = WorkQueue(path=tmp_path / "crawl.db")
    job = _job(queue)
    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: queue.insert_if_absent(job.id, "https://a.test/x"), range(40)))
    assert sum(results) == 1
    assert [entry.url for entry in queue.snapshot(job.id)] == ["https://a.test/x"]


def test_same_url_may_exist_once_per_job(tmp_path):
    queue = WorkQueue(path=tmp_path / "crawl.db")
    first = _job(queue)
    second = _job(queue)
    assert first.source_id == second.source_id
    assert queue.insert_if_absent(first.id, "https://a.test/x")
    assert queue.insert_if_absent(second.id, "https://a.test/x")
    assert not queue.insert_if_absent(first.id, "https://a.test/x")


def test_concurrent_claims_never_share_an_entry(tmp_path):
    queue = WorkQueue(path=tmp_path / "crawl.db")
    job = _job(queue)
    for index in range(20):
        queue.insert_if_absent(job.id, f"https://a.test/page-{index}")

    def _claim_all():
        claimed = []
        while True:
            entry = queue.try_claim_next(job.id)
            if entry is None:
                return claimed
            claimed.append(entry.id)

    with ThreadPoolExecutor(max_workers=6) as pool:
        batches = list(pool.map(lambda _: _claim_all(), range(6)))
    ids = [entry_id for batch in batches for entry_id in batch]
    assert len(ids) == 20
    assert len(set(ids)) == 20
    assert queue.count_processing(job.id) == 20
    assert queue.try_claim_next(job.id) is None


def test_claim_marks_processing_and_counts_attempts(tmp_path):
    clock = FakeClock()
    queue = WorkQueue(path=tmp_path / "crawl.db", clock=clock)
    job = _job(queue)
    queue.insert_if_absent(job.id, "https://a.test/")
    clock.now = 1_005.0
    entry = queue.try_claim_next(job.id)
    assert entry.status is EntryStatus.PROCESSING
    assert entry.attempts == 1
    assert entry.updated_at.timestamp() == 1_005.0
    assert queue.requeue(entry.id) is EntryStatus.QUEUED
    assert queue.try_claim_next(job.id).attempts == 2


def test_completion_is_idempotent(tmp_path):
    queue = WorkQueue(path=tmp_path / "crawl.db")
    job = _job(queue)
    queue.insert_if_absent(job.id, "https://a.test/")
    entry = queue.try_claim_next(job.id)
    for text in ("first", "second"):
        queue.set_content(entry.id, text)
        assert queue.set_status(entry.id, EntryStatus.COMPLETED)
    assert _statuses(queue, job.id) == {"https://a.test/": EntryStatus.COMPLETED}
    assert queue.get_content(entry.id) == "second"


def test_set_status_with_expected_state(tmp_path):
    queue = WorkQueue(path=tmp_path / "crawl.db")
    job = _job(queue)
    queue.insert_if_absent(job.id, "https://a.test/")
    entry = queue.try_claim_next(job.id)
    queue.set_status(entry.id, EntryStatus.COMPLETED)
    assert not queue.set_status(entry.id, EntryStatus.FAILED, expected=EntryStatus.PROCESSING)
    assert queue.requeue(entry.id) is None
    assert _statuses(queue, job.id)["https://a.test/"] is EntryStatus.COMPLETED


def test_reclaim_stuck_only_touches_stale_entries(tmp_path):
    clock = FakeClock(1_000.0)
    queue = WorkQueue(path=tmp_path / "crawl.db", clock=clock)
    job = _job(queue)
    queue.insert_if_absent(job.id, "https://a.test/old")
    stale = queue.try_claim_next(job.id)
    clock.now = 1_070.0
    queue.insert_if_absent(job.id, "https://a.test/new")
    fresh = queue.try_claim_next(job.id)
    clock.now = 1_080.0

    assert queue.reclaim_stuck(job.id, timedelta(seconds=60)) == 1
    statuses = _statuses(queue, job.id)
    assert statuses[stale.url] is EntryStatus.QUEUED
    assert statuses[fresh.url] is EntryStatus.PROCESSING
    assert queue.reclaim_stuck(job.id, 60) == 0


def test_cancel_is_monotonic_and_idempotent(tmp_path):
    queue = WorkQueue(path=tmp_path / "crawl.db")
    job = _job(queue)
    for path in ("a", "b", "c"):
        queue.insert_if_absent(job.id, f"https://a.test/{path}")
    in_flight = queue.try_claim_next(job.id)

    assert queue.cancel(job.id) == 2
    assert queue.is_cancelled(job.id)
    assert queue.get_job(job.id).status is JobStatus.CANCELLED
    statuses = _statuses(queue, job.id)
    assert sorted(status.value for status in statuses.values()) == ["CANCELLED", "CANCELLED", "PROCESSING"]

    assert queue.try_claim_next(job.id) is None
    assert not queue.insert_if_absent(job.id, "https://a.test/late")
    assert queue.requeue(in_flight.id) is EntryStatus.CANCELLED
    assert queue.try_claim_next(job.id) is None
    assert queue.cancel(job.id) == 0


def test_reclaim_after_cancel_does_not_requeue(tmp_path):
    clock = FakeClock()
    queue = WorkQueue(path=tmp_path / "crawl.db", clock=clock)
    job = _job(queue)
    queue.insert_if_absent(job.id, "https://a.test/")
    queue.try_claim_next(job.id)
    queue.cancel(job.id)
    clock.now += 600
    assert queue.reclaim_stuck(job.id, 60) == 1
    assert _statuses(queue, job.id) == {"https://a.test/": EntryStatus.CANCELLED}
    assert queue.try_claim_next(job.id) is None


def test_job_settings_survive_the_store(tmp_path):
    queue = WorkQueue(path=tmp_path / "crawl.db")
    settings = CrawlerSettings(stay_on_path=True, exclude_file_types=["png", "PDF"], max_parallel_scrapers=5)
    job = _job(queue, seed="https://a.test/docs", settings=settings)
    context = queue.load_context(job.id)
    assert context.seed_url == "https://a.test/docs"
    assert context.settings == settings
    assert context.settings.exclude_file_types == ("png", "pdf")


def test_list_jobs_newest_first(tmp_path):
    clock = FakeClock()
    queue = WorkQueue(path=tmp_path / "crawl.db", clock=clock)
    first = _job(queue)
    clock.now += 10
    second = _job(queue)
    assert [job.id for job in queue.list_jobs(first.source_id)] == [second.id, first.id]
    assert queue.list_jobs("unknown") == []


def test_unknown_job_raises(tmp_path):
    queue = WorkQueue(path=tmp_path / "crawl.db")
    with pytest.raises(JobNotFound):
        queue.get_job("missing")
    with pytest.raises(JobNotFound):
        queue.is_cancelled("missing")
    with pytest.raises(JobNotFound):
        queue.cancel("missing")


def test_database_errors_surface_as_store_unavailable(tmp_path, monkeypatch):
    queue = WorkQueue(path=tmp_path / "crawl.db")
    job = _job(queue)

    def _broken(_path):
        raise sqlite3.OperationalError("unable to open database file")

    monkeypatch.setattr(queue_module, "connect", _broken)
    with pytest.raises(StoreUnavailable):
        queue.count_processing(job.id)
    with pytest.raises(StoreUnavailable):
        queue.try_claim_next(job.id)


def test_requeue_can_refund_the_claim(tmp_path):
    queue = WorkQueue(path=tmp_path / "crawl.db")
    job = _job(queue)
    queue.insert_if_absent(job.id, "https://a.test/")
    entry = queue.try_claim_next(job.id)
    assert queue.requeue(entry.id, refund_attempt=True) is EntryStatus.QUEUED
    assert queue.snapshot(job.id)[0].attempts == 0
    entry = queue.try_claim_next(job.id)
    assert queue.requeue(entry.id) is EntryStatus.QUEUED
    assert queue.snapshot(job.id)[0].attempts == 1
