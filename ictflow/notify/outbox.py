"""Outbox — best-effort delivery queue for collaborator calls.

Notifier, reporter and dashboard calls are submitted from the tick path
without waiting.  A single worker task drains the queue, retrying each job
with exponential backoff; jobs that exhaust their retries go to the
``ictflow.deadletter`` logger.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable

logger = logging.getLogger("ictflow.outbox")
deadletter = logging.getLogger("ictflow.deadletter")

_RETRY_BASE_DELAY = 0.5  # seconds; doubles each attempt
_DRAIN_TIMEOUT = 5.0  # seconds


@dataclass(frozen=True)
class OutboxJob:
    label: str
    func: Callable[..., Any]
    args: tuple = ()


class Outbox:
    """Queue of fire-and-forget collaborator calls.

    Args:
        max_retries: Attempts per job before it is dead-lettered.
        base_delay:  First backoff delay in seconds.
        maxsize:     Queue bound; submissions beyond it are dead-lettered.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = _RETRY_BASE_DELAY,
        maxsize: int = 10_000,
    ) -> None:
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self._queue: asyncio.Queue[OutboxJob] = asyncio.Queue(maxsize=maxsize)
        self._worker: asyncio.Task | None = None
        self.delivered = 0
        self.dead_lettered = 0

    # ── Public API ───────────────────────────────────────────────────────

    def submit(self, label: str, func: Callable[..., Any], *args) -> bool:
        """Enqueue ``func(*args)`` without blocking.

        ``func`` may be a coroutine function or a plain callable; plain
        callables run in a worker thread.  Returns ``False`` when the job
        was dead-lettered immediately because the queue is full.
        """
        job = OutboxJob(label, func, args)
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            self._dead_letter(job, "queue full")
            return False
        return True

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        """Start the worker task on the running loop (idempotent)."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self.run())

    async def run(self) -> None:
        """Drain the queue forever."""
        while True:
            job = await self._queue.get()
            try:
                await self._deliver(job)
            except asyncio.CancelledError:
                self._dead_letter(job, "shutdown")
                raise
            finally:
                self._queue.task_done()

    async def join(self) -> None:
        """Wait until every submitted job has been delivered or dead-lettered."""
        await self._queue.join()

    async def stop(self, drain_timeout: float = _DRAIN_TIMEOUT) -> None:
        """Deliver what is queued, then stop the worker.

        Jobs still queued or mid-retry after *drain_timeout* seconds are
        dead-lettered.
        """
        if self._worker is not None and not self._worker.done():
            try:
                await asyncio.wait_for(self._queue.join(), drain_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "Outbox drain timed out with %d job(s) pending", self.pending,
                )
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        while True:
            try:
                job = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._queue.task_done()
            self._dead_letter(job, "shutdown")

    # ── Internals ────────────────────────────────────────────────────────

    async def _deliver(self, job: OutboxJob) -> None:
        last_exc: Exception | None = None
        for attempt in range(self.max_retries):
            try:
                if inspect.iscoroutinefunction(job.func):
                    result = job.func(*job.args)
                else:
                    result = await asyncio.to_thread(job.func, *job.args)
                if inspect.isawaitable(result):
                    await result
                self.delivered += 1
                return
            except Exception as exc:
                last_exc = exc
                if attempt + 1 >= self.max_retries:
                    break
                delay = self.base_delay * (2 ** attempt)
                logger.warning(
                    "%s failed (%s) — retry %d/%d in %.1fs",
                    job.label, exc, attempt + 1, self.max_retries, delay,
                )
                await asyncio.sleep(delay)
        self._dead_letter(job, str(last_exc))

    def _dead_letter(self, job: OutboxJob, reason: str) -> None:
        self.dead_lettered += 1
        deadletter.error("%s dropped: %s | args=%r", job.label, reason, job.args)
