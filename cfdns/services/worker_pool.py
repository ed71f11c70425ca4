"""
cfdns/services/worker_pool.py

Responsibility: Runs submitted coroutines on a fixed number of asyncio
workers behind a bounded admission queue, handing back a TaskFuture for each.
Does NOT: know anything about DNS, IP resolution, or configuration.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from cfdns.exceptions import PoolClosedError, TaskCancelledError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Admission queue capacity as a multiple of the worker count
QUEUE_FACTOR = 5


class TaskFuture(Generic[T]):
    """
    Handle for the eventual result of a task submitted to a WorkerPool.

    Settles exactly once: with the task's return value, the exception it
    raised, or TaskCancelledError if the pool aborted it. Awaiting the
    handle never cancels the underlying task, so a caller that is itself
    cancelled gets CancelledError immediately while the pool carries on.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._future: asyncio.Future[T] = asyncio.get_running_loop().create_future()

    def done(self) -> bool:
        return self._future.done()

    async def result(self) -> T:
        """
        Waits for the task and returns its result.

        Raises:
            TaskCancelledError: If the pool aborted the task.
            Exception: Whatever the task itself raised.
        """
        return await asyncio.shield(self._future)

    def add_done_callback(self, callback: Callable[[TaskFuture[T]], None]) -> None:
        self._future.add_done_callback(lambda _: callback(self))

    # ---------------------------------------------------------------------------
    # Pool-side settlement
    # ---------------------------------------------------------------------------

    def _settle(self, task: asyncio.Task[T]) -> None:
        if self._future.done():
            return
        if task.cancelled():
            self._future.set_exception(TaskCancelledError(f"Task {self.name} was cancelled."))
        elif task.exception() is not None:
            self._future.set_exception(task.exception())
        else:
            self._future.set_result(task.result())

    def _fail(self, exc: BaseException) -> None:
        if not self._future.done():
            self._future.set_exception(exc)

    async def _wait(self) -> None:
        # Waits for settlement without raising the task's outcome.
        await asyncio.wait([self._future])


@dataclass
class _Job:
    fn: Callable[..., Awaitable[Any]]
    args: tuple[Any, ...]
    future: TaskFuture[Any]


class WorkerPool:
    """
    Bounded-concurrency executor for coroutine functions.

    At most `workers` tasks run at once; up to QUEUE_FACTOR × workers more
    wait in the admission queue, and submit() blocks once that is full so
    bursts queue rather than fan out without limit.

    Must be constructed inside a running event loop.
    """

    def __init__(self, workers: int, queue_factor: int = QUEUE_FACTOR, name: str = "pool") -> None:
        """
        Starts the worker tasks.

        Args:
            workers: Maximum number of concurrently running tasks (>= 1).
            queue_factor: Admission queue size as a multiple of workers.
            name: Label used for worker task names and log messages.

        Raises:
            ValueError: If workers or queue_factor is below 1.
        """
        if workers < 1:
            raise ValueError(f"Worker count must be at least 1, got {workers}.")
        if queue_factor < 1:
            raise ValueError(f"Queue factor must be at least 1, got {queue_factor}.")

        self.name = name
        self.workers = workers
        self._queue: asyncio.Queue[_Job] = asyncio.Queue(maxsize=workers * queue_factor)
        self._pending: set[TaskFuture[Any]] = set()
        self._running: set[asyncio.Task[Any]] = set()
        self._closed = False
        self._aborted = False
        self._submitted = 0

        loop = asyncio.get_running_loop()
        self._workers = [
            loop.create_task(self._work(), name=f"{name}-worker-{i}") for i in range(workers)
        ]
        logger.debug("Worker pool %s started with %d worker(s).", name, workers)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def pending(self) -> int:
        """Number of submitted tasks that have not settled yet."""
        return len(self._pending)

    # ---------------------------------------------------------------------------
    # Public API
    # ---------------------------------------------------------------------------

    async def submit(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        name: str | None = None,
    ) -> TaskFuture[T]:
        """
        Queues fn(*args) for execution and returns its handle.

        Blocks while the admission queue is full.

        Args:
            fn: Coroutine function to run on a worker.
            *args: Positional arguments for fn.
            name: Optional label used in logs and cancellation errors.

        Returns:
            A TaskFuture that settles with fn's outcome.

        Raises:
            PoolClosedError: If the pool was closed or aborted.
        """
        if self._closed:
            raise PoolClosedError(f"Worker pool {self.name} is closed.")

        self._submitted += 1
        future: TaskFuture[T] = TaskFuture(name or f"{self.name}-task-{self._submitted}")
        self._pending.add(future)
        future.add_done_callback(self._forget)

        try:
            await self._queue.put(_Job(fn, args, future))
        except asyncio.CancelledError:
            future._fail(TaskCancelledError(f"Submission of {future.name} was cancelled."))
            raise
        if self._aborted:
            # Aborted while this submission waited for queue space.
            self._drain_queue()
        return future

    async def wait_idle(self) -> None:
        """
        Waits until every task submitted before this call has settled.

        This is a barrier, not a drain: tasks submitted after the call
        begins are not waited for.
        """
        pending = list(self._pending)
        if pending:
            await asyncio.gather(*(future._wait() for future in pending))

    def abort(self) -> None:
        """
        Cancels every running task, fails every queued one with
        TaskCancelledError, and stops admitting new work.
        """
        if self._aborted:
            return
        self._closed = True
        self._aborted = True

        running = list(self._running)
        for task in running:
            task.cancel()
        dropped = self._drain_queue()

        logger.warning(
            "Worker pool %s aborted: %d running and %d queued task(s) cancelled.",
            self.name,
            len(running),
            dropped,
        )

    async def close(self) -> None:
        """
        Stops admission, lets outstanding work finish (unless aborted), and
        stops the workers. Safe to call more than once.
        """
        self._closed = True
        if not self._aborted:
            await self.wait_idle()

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers.clear()

        # Anything that slipped in while the workers were stopping.
        self._drain_queue()
        logger.debug("Worker pool %s closed.", self.name)

    # ---------------------------------------------------------------------------
    # Internal helpers
    # ---------------------------------------------------------------------------

    async def _work(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                if job.future.done():
                    continue
                if self._aborted:
                    job.future._fail(TaskCancelledError(f"Task {job.future.name} was cancelled."))
                    continue

                task = asyncio.ensure_future(job.fn(*job.args))
                self._running.add(task)
                try:
                    # NOTE: asyncio.wait does not cancel the task when this
                    # worker is cancelled, so it is cancelled explicitly below.
                    await asyncio.wait([task])
                except asyncio.CancelledError:
                    task.cancel()
                    job.future._fail(TaskCancelledError(f"Task {job.future.name} was cancelled."))
                    raise
                finally:
                    self._running.discard(task)
                job.future._settle(task)
            finally:
                self._queue.task_done()

    def _drain_queue(self) -> int:
        dropped = 0
        while True:
            try:
                job = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return dropped
            job.future._fail(TaskCancelledError(f"Task {job.future.name} was cancelled."))
            self._queue.task_done()
            dropped += 1

    def _forget(self, future: TaskFuture[Any]) -> None:
        self._pending.discard(future)
        # Mark the outcome as retrieved so asyncio does not warn about
        # exceptions nobody awaited; callers still see them via result().
        if not future._future.cancelled():
            future._future.exception()
