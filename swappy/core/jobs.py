from __future__ import annotations

import asyncio
import contextlib
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from swappy.domain.models import DerivedKind

from .config import Settings
from .errors import QueueFullError
from .logging import get_logger


@dataclass(frozen=True, slots=True)
class DerivedJob:
    job_id: str
    asset_id: str
    kind: DerivedKind
    params: dict[str, Any] = field(default_factory=dict)


JobRunner = Callable[[DerivedJob], Awaitable[Any]]


class BaseJobBackend(ABC):
    @abstractmethod
    async def enqueue(self, job: DerivedJob, runner: JobRunner) -> None: ...

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None


class ImmediateJobBackend(BaseJobBackend):
    """Runs each job to completion inside ``enqueue``."""

    async def enqueue(self, job: DerivedJob, runner: JobRunner) -> None:
        await runner(job)


class WorkerPoolJobBackend(BaseJobBackend):
    """Bounded queue serviced by a fixed set of asyncio worker tasks."""

    def __init__(self, workers: int, queue_size: int, drain_timeout_s: float = 30.0):
        self.workers = workers
        self.queue_size = queue_size
        self.drain_timeout_s = drain_timeout_s
        self.logger = get_logger(component="job_pool")
        self._queue: asyncio.Queue[tuple[DerivedJob, JobRunner]] | None = None
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    def qsize(self) -> int:
        return self._queue.qsize() if self._queue else 0

    async def start(self) -> None:
        if self._tasks:
            return
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._tasks = [
            asyncio.create_task(self._worker(index), name=f"swappy-worker-{index}") for index in range(self.workers)
        ]
        self.logger.info("job_pool_started", workers=self.workers, queue_size=self.queue_size)

    async def enqueue(self, job: DerivedJob, runner: JobRunner) -> None:
        if self._queue is None:
            await self.start()
        assert self._queue is not None
        try:
            self._queue.put_nowait((job, runner))
        except asyncio.QueueFull as exc:
            self.logger.warning("job_queue_full", job_id=job.job_id, asset_id=job.asset_id, kind=job.kind.value)
            raise QueueFullError(f"job queue is full ({self.queue_size})") from exc

    async def stop(self) -> None:
        if not self._tasks:
            return
        assert self._queue is not None
        try:
            await asyncio.wait_for(self._queue.join(), timeout=self.drain_timeout_s)
        except asyncio.TimeoutError:
            self.logger.warning("job_pool_drain_timeout", remaining=self._queue.qsize())
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._tasks = []
        self._queue = None
        self.logger.info("job_pool_stopped")

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            job, runner = await queue.get()
            try:
                await runner(job)
            except Exception:  # runners record their own failures
                self.logger.exception("job_runner_crashed", worker=index, job_id=job.job_id)
            finally:
                queue.task_done()


def get_job_backend(settings: Settings) -> BaseJobBackend:
    backend = settings.normalized_job_backend
    if backend == "immediate":
        return ImmediateJobBackend()
    if backend == "pool":
        return WorkerPoolJobBackend(
            workers=settings.job_workers,
            queue_size=settings.job_queue_size,
            drain_timeout_s=settings.job_timeout_s,
        )
    raise ValueError(f"Unsupported job backend: {settings.job_queue_backend}")


__all__ = [
    "DerivedJob",
    "JobRunner",
    "BaseJobBackend",
    "ImmediateJobBackend",
    "WorkerPoolJobBackend",
    "get_job_backend",
]
