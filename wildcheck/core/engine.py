"""Run orchestrator for wildcheck.

:class:`FilterEngine` groups input names by base domain, fans them out to the
classification workers, and writes each verdict in the configured output
mode as soon as it is available.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import IO, AsyncIterator, Callable, List, Optional

from wildcheck.core.config import Config
from wildcheck.core.grouper import DomainGrouper
from wildcheck.core.pipeline import DispatchPipeline, PipelineStats
from wildcheck.core.resolver_pool import PoolStats, ResolverPool
from wildcheck.core.wildcard import ClassificationJob, ClassificationResult, WildcardClassifier
from wildcheck.utils.logger import get_logger

logger = get_logger(__name__)

OUTPUT_MODES = ("tagged", "filtered")


@dataclass
class RunSummary:
    """Outcome of a complete run.

    Attributes:
        started_at: Unix timestamp when the run began.
        finished_at: Unix timestamp when the run ended.
        pipeline: Worker counters.
        pool: Resolver pool counters.
        domains: Base domains seen, in discovery order.
        wildcard_domains: Base domains found to be wildcarded.
        skipped: Input names that could not be grouped.
    """

    started_at: float
    finished_at: Optional[float] = None
    pipeline: PipelineStats = field(default_factory=PipelineStats)
    pool: PoolStats = field(default_factory=PoolStats)
    domains: List[str] = field(default_factory=list)
    wildcard_domains: List[str] = field(default_factory=list)
    skipped: int = 0

    @property
    def duration(self) -> float:
        """Elapsed run time in seconds."""
        if self.finished_at is None:
            return time.time() - self.started_at
        return self.finished_at - self.started_at


def format_result(result: ClassificationResult, mode: str) -> Optional[str]:
    """Render *result* as an output line, or ``None`` when it is filtered out.

    ``tagged`` prints every name with its verdict; ``filtered`` prints only
    non-wildcard names.
    """
    if mode == "filtered":
        return None if result.is_wildcard else result.name
    return f"{result.tag} - {result.name}"


async def read_lines(stream: IO[str]) -> AsyncIterator[str]:
    """Yield lines from a blocking text stream without stalling the loop."""
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, stream.readline)
        if not line:
            return
        yield line


class FilterEngine:
    """Classifies a stream of candidate names against a resolver pool.

    Example::

        engine = FilterEngine(pool, cfg, write=print)
        summary = await engine.run(read_lines(sys.stdin))
    """

    def __init__(
        self,
        pool: ResolverPool,
        config: Optional[Config] = None,
        write: Callable[[str], None] = print,
        target_domain: Optional[str] = None,
    ) -> None:
        """Initialise the engine.

        Args:
            pool: Ready resolver pool.
            config: Run configuration; defaults apply when ``None``.
            write: Sink receiving each output line.
            target_domain: Restrict the run to names under this base domain.

        Raises:
            DomainLookupError: If *target_domain* is invalid.
        """
        self.config = config or Config()
        self.pool = pool
        self.grouper = DomainGrouper(target_domain=target_domain)
        self.classifier = WildcardClassifier(pool, self.config.wildcard)
        self._write = write
        self._mode = self.config.general.output_mode

    async def _jobs(self, lines: AsyncIterator[str]) -> AsyncIterator[ClassificationJob]:
        async for line in lines:
            job = self.grouper.job(line)
            if job is not None:
                yield job

    def _emit(self, result: ClassificationResult) -> None:
        line = format_result(result, self._mode)
        if line is not None:
            self._write(line)

    async def run(self, lines: AsyncIterator[str]) -> RunSummary:
        """Classify every name in *lines* and write the results.

        Args:
            lines: Async iterator of raw input lines.

        Returns:
            :class:`RunSummary` for the run.

        Raises:
            EmptyResolverPoolError: If every resolver was evicted mid-run.
        """
        summary = RunSummary(started_at=time.time())
        pipeline = DispatchPipeline(
            self.classifier.classify_job,
            workers=self.config.general.threads,
            emit=self._emit,
            job_timeout=self.config.general.job_timeout,
        )
        try:
            summary.pipeline = await pipeline.run(self._jobs(lines))
        finally:
            summary.finished_at = time.time()
            summary.pool = self.pool.stats
            summary.domains = self.grouper.domains
            summary.skipped = self.grouper.skipped
            summary.wildcard_domains = [
                d for d, sig in self.classifier.signatures.items() if sig.is_wildcard
            ]

        logger.info(
            "Classified %d names (%d wildcard, %d errors) across %d domains in %.1fs",
            summary.pipeline.completed,
            summary.pipeline.wildcard,
            summary.pipeline.errors,
            len(summary.domains),
            summary.duration,
        )
        logger.debug(
            "Pool: %d queries, %d retries, %d timeouts, %d servfails, %d evictions, "
            "%d confirmations",
            summary.pool.queries,
            summary.pool.retries,
            summary.pool.timeouts,
            summary.pool.servfails,
            summary.pool.evictions,
            summary.pool.confirmations,
        )
        return summary
