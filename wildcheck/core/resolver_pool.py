"""Two-tier resolver pool for wildcheck.

:class:`ResolverPool` spreads rate-limited DNS queries over a tier of
validated candidate resolvers, backed by a small trusted baseline tier.
:func:`setup_resolver_pool` validates candidates and builds the pool.
"""

from __future__ import annotations

import asyncio
import random
import resource
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable, List, Optional, Sequence, Set, Tuple

from wildcheck.core.config import ResolversConfig
from wildcheck.core.errors import EmptyResolverPoolError
from wildcheck.core.rate_limiter import AdaptiveRateLimiter
from wildcheck.utils.dns_resolver import Answer, AnswerStatus, Resolver
from wildcheck.utils.helpers import deduplicate, normalise_resolver_address, random_label
from wildcheck.utils.logger import get_logger

logger = get_logger(__name__)

ResolverFactory = Callable[..., Resolver]

# Fraction of the open-file limit that candidate sockets may use
_FD_SHARE = 0.7
_UNLIMITED_FDS = 65536

# In-flight queries allowed per live member of each tier
_BASELINE_CONCURRENCY = 2
_CANDIDATE_CONCURRENCY = 10


@dataclass
class PoolStats:
    """Counters describing pool activity over a run."""

    queries: int = 0
    retries: int = 0
    timeouts: int = 0
    servfails: int = 0
    evictions: int = 0
    confirmations: int = 0


class ResolverTier:
    """A group of resolvers sharing rotation and quota accounting.

    Members are picked at random, weighted by the quota each has left in the
    current window. The lock guards only the pick, never a query.
    """

    def __init__(self, name: str, resolvers: Iterable[Resolver], concurrency: int) -> None:
        self.name = name
        self._resolvers: List[Resolver] = list(resolvers)
        self._lock = asyncio.Lock()
        self.semaphore = asyncio.Semaphore(max(1, concurrency * len(self._resolvers)))

    @property
    def live(self) -> List[Resolver]:
        """Members that have not been evicted."""
        return [r for r in self._resolvers if r.healthy]

    def __len__(self) -> int:
        return len(self.live)

    async def acquire(self, exclude: Set[str]) -> Optional[Resolver]:
        """Pick a live member and charge one query to its quota.

        Members in *exclude* are skipped unless nothing else is live. Waits
        for the next window when every quota is spent.

        Returns:
            The chosen :class:`Resolver`, or ``None`` if the tier is empty.
        """
        while True:
            async with self._lock:
                live = self.live
                if not live:
                    return None
                members = [r for r in live if r.address not in exclude] or live
                weights = [r.quota.remaining() for r in members]
                if any(weights):
                    chosen = random.choices(members, weights=weights)[0]
                    chosen.quota.consume()
                    return chosen
                wait = min(r.quota.seconds_until_reset() for r in members)
            await asyncio.sleep(max(wait, 0.001))

    def close(self) -> None:
        for resolver in self._resolvers:
            resolver.close()


class ResolverPool:
    """Load-balanced DNS queries over candidate and baseline resolvers.

    Bulk queries go to the candidate tier; trusted queries, and everything
    once no candidate is healthy, go to the baseline tier. NXDOMAIN answers
    from candidates can be confirmed against the baseline.

    Example::

        pool = await setup_resolver_pool(["1.1.1.1"], cfg.resolvers)
        answer = await pool.query("www.example.com", "A")
    """

    def __init__(
        self,
        candidates: Sequence[Resolver],
        baseline: Sequence[Resolver],
        global_rate_limit: int = 0,
        retries: int = 3,
        confirm_nxdomain: bool = True,
    ) -> None:
        """Initialise the pool.

        Args:
            candidates: Validated untrusted resolvers.
            baseline: Trusted resolvers whose answers are ground truth.
            global_rate_limit: Ceiling on queries/sec across the pool
                (``0`` = unlimited).
            retries: Attempts per question before reporting a timeout.
            confirm_nxdomain: Re-ask the baseline when a candidate says NXDOMAIN.

        Raises:
            EmptyResolverPoolError: If both tiers are empty.
        """
        if not candidates and not baseline:
            raise EmptyResolverPoolError("no usable resolvers after validation")
        self.candidates = ResolverTier("candidates", candidates, _CANDIDATE_CONCURRENCY)
        self.baseline = ResolverTier("baseline", baseline, _BASELINE_CONCURRENCY)
        self.global_rate_limit = global_rate_limit
        self.retries = retries
        self.confirm_nxdomain = confirm_nxdomain
        self.stats = PoolStats()
        self._limiter = AdaptiveRateLimiter(initial_qps=global_rate_limit)

    @property
    def resolvers(self) -> List[Resolver]:
        """All live resolvers, candidates first."""
        return self.candidates.live + self.baseline.live

    def __len__(self) -> int:
        return len(self.candidates) + len(self.baseline)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def query(self, name: str, qtype: str = "A", trusted: bool = False) -> Answer:
        """Resolve *name* through the pool with retry and failover.

        Args:
            name: Name to resolve.
            qtype: Record type string.
            trusted: Route the question to the baseline tier.

        Returns:
            The first definitive :class:`Answer`. When no attempt got one, a
            ``SERVFAIL`` answer if any member reported it, else ``TIMEOUT``.

        Raises:
            EmptyResolverPoolError: If every resolver has been evicted.
        """
        answer, tier = await self._query(name, qtype, trusted)
        if (
            tier is self.candidates
            and self.confirm_nxdomain
            and answer.status is AnswerStatus.NXDOMAIN
            and len(self.baseline)
        ):
            self.stats.confirmations += 1
            confirmed, _ = await self._query(name, qtype, trusted=True)
            if confirmed.definitive:
                return confirmed
        return answer

    def close(self) -> None:
        """Release every resolver channel."""
        self.candidates.close()
        self.baseline.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _active_tier(self, trusted: bool) -> ResolverTier:
        if trusted and len(self.baseline):
            return self.baseline
        if len(self.candidates):
            return self.candidates
        if len(self.baseline):
            return self.baseline
        raise EmptyResolverPoolError("every resolver has been evicted")

    async def _query(
        self, name: str, qtype: str, trusted: bool
    ) -> Tuple[Answer, ResolverTier]:
        tried: Set[str] = set()
        servfail: Optional[Answer] = None
        tier = self._active_tier(trusted)
        for attempt in range(self.retries):
            tier = self._active_tier(trusted)
            resolver = await tier.acquire(tried)
            if resolver is None:
                continue
            tried.add(resolver.address)
            if attempt:
                self.stats.retries += 1

            async with tier.semaphore:
                await self._limiter.acquire()
                self.stats.queries += 1
                answer = await resolver.query(name, qtype)

            if answer.definitive:
                resolver.record_success()
                self._limiter.record_success()
                return answer, tier

            logger.debug(
                "%s %s via %s: %s", qtype, name, resolver.address, answer.status.value
            )
            if answer.status is AnswerStatus.SERVFAIL:
                # the resolver answered; another member may reach the zone
                resolver.record_success()
                servfail = answer
                continue
            if resolver.record_failure():
                self.stats.evictions += 1
                logger.warning(
                    "Resolver %s evicted after %d consecutive failures",
                    resolver.address,
                    resolver.failures,
                )

        if servfail is not None:
            self.stats.servfails += 1
            return servfail, tier

        self.stats.timeouts += 1
        self._limiter.record_timeout()
        if not len(self):
            raise EmptyResolverPoolError("every resolver has been evicted")
        return Answer(name, qtype, AnswerStatus.TIMEOUT), tier


# ---------------------------------------------------------------------------
# Construction
# ---------------------------------------------------------------------------


def max_candidates(fd_limit: Optional[int] = None) -> int:
    """Return how many candidate resolvers the open-file limit allows."""
    if fd_limit is None:
        soft, _ = resource.getrlimit(resource.RLIMIT_NOFILE)
        fd_limit = _UNLIMITED_FDS if soft == resource.RLIM_INFINITY else soft
    return max(1, int(fd_limit * _FD_SHARE))


def effective_rate_limit(
    candidate_count: int, max_qps: Optional[int], per_resolver_qps: int
) -> int:
    """Return the global query ceiling for *candidate_count* resolvers.

    A configured ceiling is raised to at least one query/sec per candidate;
    without one, each candidate gets *per_resolver_qps*.
    """
    if max_qps is None or max_qps <= 0:
        return per_resolver_qps * candidate_count
    return max(max_qps, candidate_count)


async def check_resolver(
    resolver: Resolver,
    known_name: str,
    known_domain: str,
) -> bool:
    """Return ``True`` if *resolver* answers a known-good probe correctly.

    The resolver must resolve *known_name* and must report NXDOMAIN for a
    random name under *known_domain*; answering that one means it rewrites
    NXDOMAIN or relays a manipulating upstream.
    """
    answer = await resolver.query(known_name, "A")
    if not answer.resolved:
        return False
    answer = await resolver.query(f"{random_label()}.{known_domain}", "A")
    return answer.status is AnswerStatus.NXDOMAIN


async def validate_resolvers(
    resolvers: Sequence[Resolver],
    max_count: int,
    check: Callable[[Resolver], Awaitable[bool]],
    timeout: float,
    concurrency: int = 500,
) -> List[Resolver]:
    """Validate *resolvers* concurrently and keep the first *max_count* passes.

    One task runs per resolver; once *max_count* have passed the remaining
    tasks are cancelled and their resolvers released.

    Args:
        resolvers: Candidates to check.
        max_count: Maximum number of resolvers to keep.
        check: Coroutine function deciding whether one resolver is usable.
        timeout: Time budget for a single check.
        concurrency: Checks allowed in flight at once.

    Returns:
        Passing resolvers in completion order.
    """
    sem = asyncio.Semaphore(concurrency)

    async def _one(resolver: Resolver) -> Optional[Resolver]:
        async with sem:
            try:
                ok = await asyncio.wait_for(check(resolver), timeout=timeout)
            except asyncio.TimeoutError:
                ok = False
        return resolver if ok else None

    tasks = [asyncio.create_task(_one(r)) for r in resolvers]
    accepted: List[Resolver] = []
    try:
        for next_done in asyncio.as_completed(tasks):
            resolver = await next_done
            if resolver is not None:
                accepted.append(resolver)
                if len(accepted) >= max_count:
                    break
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    keep = {id(r) for r in accepted}
    for resolver in resolvers:
        if id(resolver) not in keep:
            resolver.close()
    return accepted


async def setup_resolver_pool(
    candidates: Iterable[str],
    config: ResolversConfig,
    timeout: float = 2.0,
    resolver_factory: ResolverFactory = Resolver,
    fd_limit: Optional[int] = None,
) -> ResolverPool:
    """Validate candidate resolvers and build the two-tier pool.

    Args:
        candidates: Raw candidate addresses (``host`` or ``host:port``).
        config: Resolver configuration section.
        timeout: Per-query timeout in seconds.
        resolver_factory: Callable building a :class:`Resolver` from an
            address and keyword settings.
        fd_limit: Open-file limit override (defaults to ``RLIMIT_NOFILE``).

    Returns:
        Ready :class:`ResolverPool`.

    Raises:
        EmptyResolverPoolError: If no candidate passes validation and the
            baseline list is empty.
    """
    addresses = deduplicate(
        a for a in (normalise_resolver_address(c) for c in candidates) if a
    )
    cap = max_candidates(fd_limit)
    if len(addresses) > cap:
        logger.warning(
            "Limiting candidate resolvers to %d of %d (open-file limit)", cap, len(addresses)
        )
        addresses = addresses[:cap]

    rate = effective_rate_limit(len(addresses), config.max_qps, config.per_resolver_qps)

    pending = [
        resolver_factory(
            address,
            rate_limit=config.per_resolver_qps,
            timeout=timeout,
            max_failures=config.max_failures,
        )
        for address in addresses
    ]

    async def _check(resolver: Resolver) -> bool:
        return await check_resolver(
            resolver, config.validation_name, config.validation_domain
        )

    validated = await validate_resolvers(
        pending,
        cap,
        _check,
        timeout=config.validation_timeout,
        concurrency=config.validation_concurrency,
    )
    logger.info("%d of %d candidate resolvers passed validation", len(validated), len(pending))

    baseline = [
        resolver_factory(
            address,
            rate_limit=config.baseline_qps,
            timeout=timeout,
            max_failures=config.max_failures,
        )
        for address in deduplicate(
            a for a in (normalise_resolver_address(b) for b in config.baseline) if a
        )
    ]
    if not validated:
        rate = effective_rate_limit(len(baseline), config.max_qps, config.baseline_qps)

    return ResolverPool(
        validated,
        baseline,
        global_rate_limit=rate,
        retries=config.retries,
        confirm_nxdomain=config.confirm_nxdomain,
    )
