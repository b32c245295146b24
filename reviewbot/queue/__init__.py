"""In-memory queue processing one review job at a time."""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable

from reviewbot.logger import get_logger, log_failure, log_with_context

from .models import ChangeEvent, ReviewJob

logger = get_logger()

ReviewJobHandler = Callable[[ReviewJob], Awaitable[Any]]

__all__ = [
    "ChangeEvent",
    "ReviewJob",
    "configure_review_handler",
    "enqueue_review_job",
    "pending_jobs",
    "shutdown_queue",
    "wait_for_jobs",
]


class _ReviewQueue:
    def __init__(self) -> None:
        self._queue: asyncio.Queue[ReviewJob] | None = None
        self._worker: asyncio.Task[None] | None = None
        self._handler: ReviewJobHandler | None = None

    def configure_handler(self, handler: ReviewJobHandler | None) -> None:
        self._handler = handler

    def _get_queue(self) -> asyncio.Queue[ReviewJob]:
        if self._queue is None:
            self._queue = asyncio.Queue()
        return self._queue

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            loop = asyncio.get_running_loop()
            self._worker = loop.create_task(self._worker_loop())

    async def _worker_loop(self) -> None:
        queue = self._get_queue()
        while True:
            job = await queue.get()
            start_time = time.perf_counter()
            ctx_logger = log_with_context(
                logger,
                delivery_id=job.delivery_id,
                repository=job.event.repository,
                pull_number=job.event.pull_number,
            )
            ctx_logger.info("=== QUEUE: Job processing started ===")

            try:
                if self._handler is None:
                    log_failure(logger, "No review job handler configured; dropping job", delivery_id=job.delivery_id)
                else:
                    await self._handler(job)
                    processing_time = time.perf_counter() - start_time
                    ctx_logger.info(f"=== QUEUE: Job handler completed (processed in {processing_time:.3f}s) ===")
            except Exception as exc:  # pragma: no cover - worker must outlive a failed job
                processing_time = time.perf_counter() - start_time
                log_failure(
                    logger,
                    f"Unhandled exception while processing job (failed after {processing_time:.3f}s)",
                    exc,
                    delivery_id=job.delivery_id,
                    repository=job.event.repository,
                )
                logger.exception("Full exception traceback:")
            finally:
                queue.task_done()

    async def enqueue(self, job: ReviewJob) -> None:
        self._ensure_worker()
        await self._get_queue().put(job)

    async def join(self) -> None:
        await self._get_queue().join()

    async def shutdown(self) -> None:
        if self._worker is None:
            return
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:  # pragma: no cover - expected during shutdown
            pass
        finally:
            self._worker = None
            self._queue = None

    def pending(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0


_QUEUE = _ReviewQueue()


async def enqueue_review_job(job: ReviewJob) -> None:
    """Add a job to the in-memory queue, starting the worker if needed."""

    ctx_logger = log_with_context(logger, delivery_id=job.delivery_id, repository=job.event.repository)
    ctx_logger.debug(f"Adding job to queue (pending_jobs={_QUEUE.pending()})")
    await _QUEUE.enqueue(job)


def configure_review_handler(handler: ReviewJobHandler | None) -> None:
    """Configure the coroutine that processes jobs from the queue."""

    _QUEUE.configure_handler(handler)


async def wait_for_jobs() -> None:
    """Block until every queued job has been handled."""

    await _QUEUE.join()


async def shutdown_queue() -> None:
    """Gracefully stop the worker task."""

    await _QUEUE.shutdown()


def pending_jobs() -> int:
    """Return the number of jobs waiting in the queue."""

    return _QUEUE.pending()
