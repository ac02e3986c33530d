"""Tracing helpers binding job context to every log line of a worker."""
from __future__ import annotations

import contextlib
import time
from typing import Iterator, Optional

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars

_LOGGER = structlog.get_logger("docucrawl.trace")


def set_context(*, job_id: str, worker_id: str) -> None:
    bind_contextvars(job_id=job_id, worker_id=worker_id)
    _LOGGER.debug("trace_context", job_id=job_id, worker_id=worker_id)


def clear_context() -> None:
    clear_contextvars()


@contextlib.contextmanager
def span(*, name: str, url: Optional[str] = None) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        _LOGGER.info("trace_span", span=name, url=url, elapsed_ms=elapsed_ms)


def log_fetch_result(*, url: str, links: int, text_chars: int, elapsed_ms: int) -> None:
    _LOGGER.info(
        "fetch_result",
        url=url,
        links=links,
        text_chars=text_chars,
        elapsed_ms=elapsed_ms,
    )
