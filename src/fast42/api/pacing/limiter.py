"""Per-credential limiter: hourly reservoir plus concurrency gate.

Each API key gets one Limiter. Jobs wait in a FIFO queue; a single
admission loop per limiter asks the backend for a slot and hands it to the
oldest job still waiting. A slot is only granted when

- the hourly reservoir still has requests left (refilled once per hour),
- fewer than max_concurrent jobs are in flight,
- at least min_time has passed since the previous job started.

Only admission is ordered. Jobs of the same limiter may complete in any
order once max_concurrent > 1.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from fast42.api.exceptions import JobTimeoutError, LimiterClosedError
from fast42.api.rate_limit.schemas import LimiterSettings

from .backends import Admission, InMemoryBackend, LimiterBackend

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class Job(Generic[T]):
    """A unit of work submitted to a limiter.

    The limiter never looks at what the job does; it only decides when it
    may start. ``expiration`` bounds the time spent waiting in the queue
    (None = limiter default).
    """

    func: Callable[..., Awaitable[T] | T]
    args: tuple[Any, ...] = ()
    kwargs: dict[str, Any] = field(default_factory=dict)
    expiration: float | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    async def run(self) -> T:
        """Execute the job, awaiting its result if needed."""
        result = self.func(*self.args, **self.kwargs)
        if inspect.isawaitable(result):
            return await result
        return result


@dataclass
class PendingJob:
    """A queued job and the future that receives its admission ticket."""

    job: Job[Any]
    waiter: asyncio.Future[str]


class Limiter:
    """Schedules jobs against one credential's quota.

    Usage:
        settings = LimiterSettings.from_quota(quota, concurrent_offset=1)
        limiter = Limiter("app-1234", settings)

        response = await limiter.schedule(http.get, url, headers=headers)

        await limiter.close()
    """

    def __init__(
        self,
        limiter_id: str,
        settings: LimiterSettings,
        backend: LimiterBackend | None = None,
        *,
        expiration: float = 20.0,
        error_backoff: float = 1.0,
    ) -> None:
        """Initialize the limiter.

        Args:
            limiter_id: Stable id; limiters with the same id share counters
            settings: Reservoir and concurrency parameters
            backend: Counter store (defaults to a private InMemoryBackend)
            expiration: Default seconds a job may stay queued
            error_backoff: Seconds to pause admissions after a backend error
        """
        self._id = limiter_id
        self._settings = settings
        self._backend = backend or InMemoryBackend()
        self._expiration = expiration
        self._error_backoff = error_backoff

        self._queue: deque[PendingJob] = deque()
        self._wakeup = asyncio.Event()
        self._task: asyncio.Task[None] | None = None
        self._closed = False
        self._release_tasks: set[asyncio.Task[None]] = set()  # Prevent task GC

        # Statistics
        self._running = 0
        self._total_admitted = 0
        self._total_expired = 0

    @property
    def id(self) -> str:
        """Limiter id used to address the backend."""
        return self._id

    @property
    def settings(self) -> LimiterSettings:
        """Static limiter parameters."""
        return self._settings

    @property
    def backend(self) -> LimiterBackend:
        """Counter store of this limiter."""
        return self._backend

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    def start(self) -> None:
        """Start the admission loop (idempotent, needs a running event loop)."""
        if self._task is not None or self._closed:
            return
        self._task = asyncio.create_task(self._run(), name=f"limiter-{self._id}")
        logger.debug(
            "Limiter %s started (reservoir=%d, max_concurrent=%d, min_time=%dms)",
            self._id,
            self._settings.reservoir,
            self._settings.max_concurrent,
            self._settings.min_time_ms,
        )

    async def close(self) -> None:
        """Stop admitting jobs and fail everything still queued."""
        if self._closed:
            return
        self._closed = True

        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self._backend.remove_listener(self._id, self._wakeup.set)

        while self._queue:
            pending = self._queue.popleft()
            if not pending.waiter.done():
                pending.waiter.set_exception(
                    LimiterClosedError(f"Limiter {self._id} closed before job {pending.job.id[:8]} started")
                )

        if self._release_tasks:
            await asyncio.gather(*self._release_tasks, return_exceptions=True)

    @property
    def is_closed(self) -> bool:
        """Whether close() has been called."""
        return self._closed

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------
    async def schedule(
        self,
        func: Callable[..., Awaitable[T] | T],
        *args: Any,
        expiration: float | None = None,
        **kwargs: Any,
    ) -> T:
        """Run ``func(*args, **kwargs)`` once the limiter admits it.

        Raises:
            JobTimeoutError: If the job was still queued after ``expiration``
            LimiterClosedError: If the limiter is closed
            Exception: Any exception raised by the job itself
        """
        return await self.submit(Job(func, args, kwargs, expiration=expiration))

    async def submit(self, job: Job[T]) -> T:
        """Queue ``job``, wait for admission, then run it."""
        if self._closed:
            raise LimiterClosedError(f"Limiter {self._id} is closed")
        self.start()

        expiration = job.expiration if job.expiration is not None else self._expiration
        pending = PendingJob(job, asyncio.get_running_loop().create_future())
        self._queue.append(pending)
        self._wakeup.set()

        try:
            await asyncio.wait_for(asyncio.shield(pending.waiter), timeout=expiration)
        except TimeoutError:
            if not pending.waiter.done():
                self._abandon(pending)
                self._total_expired += 1
                logger.warning(
                    "Job %s expired after %.1fs in limiter %s queue",
                    job.id[:8],
                    expiration,
                    self._id,
                )
                raise JobTimeoutError(
                    f"Job {job.id[:8]} expired after {expiration}s waiting in limiter {self._id}",
                    limiter_id=self._id,
                ) from None
        except asyncio.CancelledError:
            self._abandon(pending)
            raise

        ticket = pending.waiter.result()
        self._running += 1
        try:
            return await job.run()
        finally:
            self._running -= 1
            await self._release(ticket)

    def _abandon(self, pending: PendingJob) -> None:
        """Take a job out of the queue; give back its slot if it had one."""
        if pending.waiter.done():
            if not pending.waiter.cancelled() and pending.waiter.exception() is None:
                task = asyncio.create_task(self._release(pending.waiter.result()))
                self._release_tasks.add(task)
                task.add_done_callback(self._release_tasks.discard)
            return
        pending.waiter.cancel()
        try:
            self._queue.remove(pending)
        except ValueError:
            pass

    async def _release(self, ticket: str) -> None:
        try:
            await self._backend.release(self._id, ticket)
        except Exception as e:
            logger.warning("Limiter %s failed to release slot: %s", self._id, e)
        self._wakeup.set()

    # -------------------------------------------------------------------------
    # Admission Loop
    # -------------------------------------------------------------------------
    async def _run(self) -> None:
        await self._register()
        # Releases by other limiters sharing this id free our capacity too
        self._backend.add_listener(self._id, self._wakeup.set)
        while not self._closed:
            self._drop_abandoned()
            if not self._queue:
                self._wakeup.clear()
                await self._wakeup.wait()
                continue

            # Clear before asking so a release during admit() is not missed
            self._wakeup.clear()
            try:
                admission = await self._backend.admit(self._id)
            except Exception as e:
                logger.warning(
                    "Limiter %s backend error, pausing admissions for %.1fs: %s",
                    self._id,
                    self._error_backoff,
                    e,
                )
                admission = Admission(False, retry_after=self._error_backoff)

            if admission:
                self._hand_over(admission)
                continue
            await self._sleep(admission.retry_after)

    async def _register(self) -> None:
        while True:
            try:
                await self._backend.register(self._id, self._settings)
                return
            except Exception as e:
                logger.warning(
                    "Limiter %s could not register with backend, retrying in %.1fs: %s",
                    self._id,
                    self._error_backoff,
                    e,
                )
                await asyncio.sleep(self._error_backoff)

    def _drop_abandoned(self) -> None:
        while self._queue and self._queue[0].waiter.done():
            self._queue.popleft()

    def _hand_over(self, admission: Admission) -> None:
        assert admission.ticket is not None
        self._drop_abandoned()
        if not self._queue:
            # Every waiter left while admit() was running
            task = asyncio.create_task(self._release(admission.ticket))
            self._release_tasks.add(task)
            task.add_done_callback(self._release_tasks.discard)
            return
        pending = self._queue.popleft()
        pending.waiter.set_result(admission.ticket)
        self._total_admitted += 1

    async def _sleep(self, timeout: float | None) -> None:
        if timeout is None:
            await self._wakeup.wait()
            return
        if timeout <= 0:
            await asyncio.sleep(0)
            return
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
        except TimeoutError:
            pass

    # -------------------------------------------------------------------------
    # Reservoir
    # -------------------------------------------------------------------------
    async def refill(self) -> bool:
        """Refill the reservoir now if the hourly interval has elapsed.

        Refills also happen on their own at admission time; this lets a
        caller (or a test) trigger the check and wake queued jobs.
        """
        refilled = await self._backend.refill_tick(self._id)
        if refilled:
            logger.info("Limiter %s reservoir refilled", self._id)
        self._wakeup.set()
        return refilled

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------
    @property
    def queue_size(self) -> int:
        """Number of jobs waiting for admission."""
        return sum(1 for pending in self._queue if not pending.waiter.done())

    @property
    def running(self) -> int:
        """Number of this limiter's jobs currently executing."""
        return self._running

    def get_stats(self) -> dict[str, int | bool | str]:
        """Get limiter statistics.

        Returns:
            Dict with queue_size, running, total_admitted, total_expired, etc.
        """
        return {
            "id": self._id,
            "queue_size": self.queue_size,
            "running": self._running,
            "max_concurrent": self._settings.max_concurrent,
            "min_time_ms": self._settings.min_time_ms,
            "total_admitted": self._total_admitted,
            "total_expired": self._total_expired,
            "is_closed": self._closed,
        }
