"""Bounded worker pool feeding classification jobs to the classifier.

The queue holds at most one job per worker, so the producer blocks as soon as
every worker is busy and a job is waiting. Workers are registered when they
are spawned and the pipeline only returns once each of them has exited.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import AsyncIterable, Awaitable, Callable, Iterable, List, Optional, Union

from wildcheck.core.errors import EmptyResolverPoolError
from wildcheck.core.wildcard import ClassificationJob, ClassificationResult
from wildcheck.utils.logger import get_logger

logger = get_logger(__name__)

Handler = Callable[[ClassificationJob], Awaitable[ClassificationResult]]
Emitter = Callable[[ClassificationResult], None]
JobSource = Union[Iterable[ClassificationJob], AsyncIterable[ClassificationJob]]

_STOP = object()


@dataclass
class PipelineStats:
    """Counters for one pipeline run."""

    submitted: int = 0
    completed: int = 0
    wildcard: int = 0
    errors: int = 0


class DispatchPipeline:
    """Fixed-size async worker pool over a bounded job queue.

    Example::

        pipeline = DispatchPipeline(classifier.classify_job, workers=10, emit=print)
        stats = await pipeline.run(jobs)
    """

    def __init__(
        self,
        handler: Handler,
        workers: int = 10,
        emit: Optional[Emitter] = None,
        job_timeout: Optional[float] = None,
    ) -> None:
        """Initialise the pipeline.

        Args:
            handler: Coroutine function classifying one job.
            workers: Number of worker tasks (also the queue capacity).
            emit: Callback receiving each result as it completes.
            job_timeout: Optional deadline in seconds for a single job.
        """
        self._handler = handler
        self._worker_count = max(1, workers)
        self._emit = emit
        self._job_timeout = job_timeout
        self._workers: List[asyncio.Task[None]] = []
        self._fatal: Optional[BaseException] = None
        self.stats = PipelineStats()

    async def run(self, jobs: JobSource) -> PipelineStats:
        """Feed *jobs* to the workers and wait for all of them to drain.

        Args:
            jobs: Sync or async iterable of :class:`ClassificationJob`.

        Returns:
            :class:`PipelineStats` for the run.

        Raises:
            EmptyResolverPoolError: If the resolver pool ran dry mid-run.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._worker_count)
        self._workers = [
            asyncio.create_task(self._worker(queue), name=f"wildcheck-worker-{i}")
            for i in range(self._worker_count)
        ]
        try:
            if isinstance(jobs, AsyncIterable):
                async for job in jobs:
                    await self._submit(queue, job)
            else:
                for job in jobs:
                    await self._submit(queue, job)
        finally:
            for _ in self._workers:
                await queue.put(_STOP)
            await asyncio.gather(*self._workers)

        if self._fatal is not None:
            raise self._fatal
        return self.stats

    async def _submit(self, queue: asyncio.Queue, job: ClassificationJob) -> None:
        self.stats.submitted += 1
        await queue.put(job)

    async def _worker(self, queue: asyncio.Queue) -> None:
        """Consume jobs until the stop sentinel arrives."""
        while True:
            job = await queue.get()
            if job is _STOP:
                return
            # keep draining after a fatal error so the producer never blocks
            if self._fatal is not None:
                continue
            result = await self._process(job)
            if result is None:
                continue
            self.stats.completed += 1
            if result.is_wildcard:
                self.stats.wildcard += 1
            if self._emit is not None:
                self._emit(result)

    async def _process(self, job: ClassificationJob) -> Optional[ClassificationResult]:
        """Classify one job, degrading per-item failures to non-wildcard."""
        try:
            if self._job_timeout:
                return await asyncio.wait_for(self._handler(job), timeout=self._job_timeout)
            return await self._handler(job)
        except EmptyResolverPoolError as exc:
            if self._fatal is None:
                logger.error("Resolver pool exhausted: %s", exc)
                self._fatal = exc
            return None
        except asyncio.TimeoutError:
            logger.debug("Job for %s exceeded %ss", job.name, self._job_timeout)
        except asyncio.CancelledError:
            # only a cancellation aimed at this worker stops it
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            logger.warning("Classification of %s was cancelled", job.name)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Failed to classify %s: %s", job.name, exc)
        self.stats.errors += 1
        return ClassificationResult(job.name, job.domain, is_wildcard=False)
