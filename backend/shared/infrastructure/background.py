"""
Best-effort background task queue.

Runs fire-and-forget writes (delivery status upgrades, content edits) off
the hot path. Contract: a submitted task runs at most once and its failure
is logged, never raised to the submitter; callers must tolerate the write
landing after they have already replied.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from shared.config.logging import get_logger

logger = get_logger(__name__)

TaskFn = Callable[..., Awaitable[Any]]


class BackgroundTaskQueue:
    """
    Worker pool that executes queued coroutine functions.

    Call start() during application startup (lifespan) and stop() on
    shutdown. Tasks submitted before start() run as standalone asyncio
    tasks so the queue is usable in scripts and tests without a lifespan.

    Usage:
        queue = BackgroundTaskQueue(worker_count=4)
        await queue.start()
        queue.submit(gateway.upgrade_message_status, message_id, "DELIVERED",
                     name="mark_delivered")
        await queue.drain()
    """

    DEFAULT_WORKER_COUNT = 4
    QUEUE_MAX_SIZE = 1000

    def __init__(
        self,
        worker_count: int | None = None,
        queue_max_size: int | None = None,
    ) -> None:
        self._worker_count = worker_count or self.DEFAULT_WORKER_COUNT
        self._queue_max_size = queue_max_size or self.QUEUE_MAX_SIZE
        self._queue: asyncio.Queue | None = None
        self._workers: list[asyncio.Task] = []
        self._detached: set[asyncio.Task] = set()
        self._running = False

        self._submitted = 0
        self._completed = 0
        self._failed = 0
        self._dropped = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the worker pool."""
        if self._running:
            logger.warning("Background worker pool already running")
            return

        self._queue = asyncio.Queue(maxsize=self._queue_max_size)
        self._running = True

        for i in range(self._worker_count):
            worker = asyncio.create_task(
                self._worker_loop(i),
                name=f"background_worker_{i}",
            )
            self._workers.append(worker)

        logger.info(
            "Background worker pool started",
            worker_count=self._worker_count,
            queue_max_size=self._queue_max_size,
        )

    async def stop(self, timeout: float = 5.0) -> None:
        """
        Gracefully stop the worker pool.

        Waits for queued tasks to finish or the timeout, then cancels workers.
        """
        if not self._running:
            await self._await_detached(timeout)
            return

        try:
            await asyncio.wait_for(self.drain(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Background queue drain timeout",
                remaining=self._queue.qsize() if self._queue else 0,
            )

        self._running = False
        for worker in self._workers:
            worker.cancel()

        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)

        self._workers.clear()
        self._queue = None

        logger.info(
            "Background worker pool stopped",
            completed=self._completed,
            failed=self._failed,
            dropped=self._dropped,
        )

    def submit(self, fn: TaskFn, *args: Any, name: str = "task") -> bool:
        """
        Queue fn(*args) for background execution.

        Returns:
            True if the task was accepted, False if it was dropped because
            the queue is full.
        """
        self._submitted += 1

        if not self._running or self._queue is None:
            task = asyncio.create_task(self._run(fn, args, name), name=f"background_{name}")
            self._detached.add(task)
            task.add_done_callback(self._detached.discard)
            return True

        try:
            self._queue.put_nowait((fn, args, name))
            return True
        except asyncio.QueueFull:
            self._dropped += 1
            logger.warning(
                "Background queue full - dropping task",
                task=name,
                queue_size=self._queue.qsize(),
            )
            return False

    async def drain(self) -> None:
        """Wait until every task submitted so far has finished."""
        if self._queue is not None:
            await self._queue.join()
        await self._await_detached(None)

    async def _await_detached(self, timeout: float | None) -> None:
        if not self._detached:
            return
        pending = list(self._detached)
        done, not_done = await asyncio.wait(pending, timeout=timeout)
        for task in not_done:
            task.cancel()

    async def _worker_loop(self, worker_id: int) -> None:
        while self._running:
            try:
                fn, args, name = await self._queue.get()
            except asyncio.CancelledError:
                break

            try:
                await self._run(fn, args, name, worker_id=worker_id)
            finally:
                self._queue.task_done()

    async def _run(
        self,
        fn: TaskFn,
        args: tuple,
        name: str,
        worker_id: int | None = None,
    ) -> None:
        try:
            await fn(*args)
            self._completed += 1
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._failed += 1
            logger.error(
                "Background task failed",
                task=name,
                worker_id=worker_id,
                error=str(e),
                exc_info=True,
            )

    def get_stats(self) -> dict[str, Any]:
        """Get queue statistics."""
        return {
            "running": self._running,
            "workers": len(self._workers),
            "queued": self._queue.qsize() if self._queue else 0,
            "detached": len(self._detached),
            "submitted": self._submitted,
            "completed": self._completed,
            "failed": self._failed,
            "dropped": self._dropped,
        }
