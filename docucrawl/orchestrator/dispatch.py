"""Fire-and-forget dispatch of worker invocations onto the event loop."""
from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional, Set

import structlog

from docucrawl.orchestrator.jobs import JobContext

LOGGER = structlog.get_logger(__name__)

WorkerHandler = Callable[[JobContext], Awaitable[object]]


class TaskDispatcher:
    """Runs each submitted job context as an independent asyncio task.

    ``submit`` returns immediately; redundant submissions are harmless because
    every worker re-checks admission against the store before claiming work.
    """

    def __init__(self, handler: Optional[WorkerHandler] = None) -> None:
        self._handler = handler
        self._tasks: Set[asyncio.Task] = set()
        self._errors: List[BaseException] = []
        self._submitted = 0

    def bind(self, handler: WorkerHandler) -> None:
        """Attach the coroutine factory used for every dispatched invocation."""
        self._handler = handler

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    @property
    def submitted(self) -> int:
        return self._submitted

    @property
    def errors(self) -> List[BaseException]:
        return list(self._errors)

    def submit(self, context: JobContext) -> asyncio.Task:
        if self._handler is None:
            raise RuntimeError("TaskDispatcher has no handler bound")
        loop = asyncio.get_running_loop()
        self._submitted += 1
        task = loop.create_task(
            self._handler(context),
            name=f"crawl-worker-{context.job_id[:8]}-{self._submitted}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self._errors.append(error)
            LOGGER.error("worker_failed", task=task.get_name(), error=repr(error), exc_info=error)

    async def join(self) -> None:
        """Wait until no dispatched invocation is running, including their successors."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def cancel_all(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.join()
