"""Wildcard DNS detection for wildcheck.

A wildcarded domain answers every non-existent subdomain with the same
records. :class:`WildcardClassifier` learns that answer once per base domain
by probing random labels, stores it as a :class:`WildcardSignature`, and
compares candidate names against it. A name whose answer equals the
signature exactly is a wildcard artifact; anything else is a real host.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from functools import partial
from typing import Dict, FrozenSet, List, Optional

from wildcheck.core.config import WildcardConfig
from wildcheck.core.resolver_pool import ResolverPool
from wildcheck.utils.helpers import random_label
from wildcheck.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class WildcardSignature:
    """The answer a domain gives for names that do not exist.

    Attributes:
        domain: Base domain the signature belongs to.
        ip_set: Addresses shared by every probe (empty if none).
        cname_target: Alias target shared by every probe, if any.
        built_at: Unix timestamp of the build.
    """

    domain: str
    ip_set: FrozenSet[str] = frozenset()
    cname_target: Optional[str] = None
    built_at: float = field(default_factory=time.time)

    @property
    def is_wildcard(self) -> bool:
        """``True`` when the domain answers for arbitrary names."""
        return bool(self.ip_set) or self.cname_target is not None

    def matches(self, ips: FrozenSet[str], cname: Optional[str] = None) -> bool:
        """Return ``True`` if an answer is indistinguishable from the wildcard.

        Address sets must be equal; a subset or superset is a real record.
        A name carrying its own alias is compared on the alias alone.
        """
        if self.cname_target is not None and cname is not None:
            return cname == self.cname_target
        return bool(self.ip_set) and ips == self.ip_set


@dataclass(frozen=True)
class ClassificationJob:
    """A candidate name paired with its base domain."""

    name: str
    domain: str


@dataclass(frozen=True)
class ClassificationResult:
    """Verdict for one candidate name.

    Attributes:
        name: Candidate name.
        domain: Base domain it was classified under.
        is_wildcard: ``True`` if the name is a wildcard artifact.
        resolved: ``True`` if the name returned any address.
    """

    name: str
    domain: str
    is_wildcard: bool
    resolved: bool = False

    @property
    def tag(self) -> str:
        return "[wildcard]" if self.is_wildcard else "[non-wildcard]"


@dataclass(frozen=True)
class _Observation:
    ips: FrozenSet[str]
    cname: Optional[str]


class WildcardClassifier:
    """Builds per-domain wildcard signatures and classifies names.

    Signatures are built at most once per domain. Concurrent requests for a
    domain that is still being probed wait for that build instead of
    starting another one.

    Example::

        classifier = WildcardClassifier(pool)
        result = await classifier.classify("foo.example.com", "example.com")
        print(result.tag, result.name)
    """

    def __init__(self, pool: ResolverPool, config: Optional[WildcardConfig] = None) -> None:
        """Initialise the classifier.

        Args:
            pool: Resolver pool used for every query.
            config: Probe settings; defaults apply when ``None``.
        """
        self._pool = pool
        self._config = config or WildcardConfig()
        self._signatures: Dict[str, WildcardSignature] = {}
        self._inflight: Dict[str, "asyncio.Task[WildcardSignature]"] = {}
        self._lock = asyncio.Lock()
        self.builds = 0

    @property
    def signatures(self) -> Dict[str, WildcardSignature]:
        """Completed signatures keyed by domain."""
        return dict(self._signatures)

    # ------------------------------------------------------------------
    # Signatures
    # ------------------------------------------------------------------

    async def signature(self, domain: str) -> WildcardSignature:
        """Return the signature for *domain*, building it on first use.

        The build runs in its own task, so a caller that is cancelled or
        times out while waiting leaves it running for everyone else.

        Args:
            domain: Registrable base domain.

        Returns:
            The shared :class:`WildcardSignature` instance.
        """
        async with self._lock:
            cached = self._signatures.get(domain)
            if cached is not None:
                return cached
            build = self._inflight.get(domain)
            if build is None:
                build = asyncio.create_task(
                    self._build(domain), name=f"wildcheck-signature-{domain}"
                )
                build.add_done_callback(partial(self._finish_build, domain))
                self._inflight[domain] = build
        return await asyncio.shield(build)

    def _finish_build(self, domain: str, build: "asyncio.Task[WildcardSignature]") -> None:
        # failed or cancelled builds are not cached; the next caller retries
        del self._inflight[domain]
        if build.cancelled():
            return
        exc = build.exception()
        if exc is not None:
            logger.warning("Signature build for %s failed: %s", domain, exc)
            return
        self._signatures[domain] = build.result()

    async def _build(self, domain: str) -> WildcardSignature:
        """Probe random labels under *domain* and derive its signature."""
        self.builds += 1
        probes = [
            f"{random_label(self._config.label_length)}.{domain}"
            for _ in range(self._config.probe_count)
        ]
        observations = await asyncio.gather(*(self._probe(p) for p in probes))
        sig = self._derive(domain, [o for o in observations if o is not None])
        if sig.is_wildcard:
            logger.info(
                "Wildcard DNS on %s: ips=%s cname=%s",
                domain,
                ",".join(sorted(sig.ip_set)) or "-",
                sig.cname_target or "-",
            )
        else:
            logger.debug("No wildcard DNS on %s", domain)
        return sig

    async def _probe(self, name: str) -> Optional[_Observation]:
        """Query one synthetic name on the trusted tier."""
        answer = await self._pool.query(name, "A", trusted=True)
        if not answer.definitive:
            return None
        cname = None
        if self._config.check_cname:
            alias = await self._pool.query(name, "CNAME", trusted=True)
            if alias.resolved:
                cname = alias.records[0]
        return _Observation(ips=frozenset(answer.records), cname=cname)

    @staticmethod
    def _derive(domain: str, observations: List[_Observation]) -> WildcardSignature:
        """Turn probe observations into a signature.

        At least two probes must have answered, and every answer must agree
        on a non-empty address set or alias target.
        """
        if len(observations) < 2:
            return WildcardSignature(domain=domain)

        first = observations[0]
        same_ips = bool(first.ips) and all(o.ips == first.ips for o in observations)
        same_cname = first.cname is not None and all(
            o.cname == first.cname for o in observations
        )
        return WildcardSignature(
            domain=domain,
            ip_set=first.ips if same_ips else frozenset(),
            cname_target=first.cname if same_cname else None,
        )

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    async def classify(self, name: str, domain: str) -> ClassificationResult:
        """Decide whether *name* is a wildcard artifact of *domain*.

        Names that do not resolve, time out, or answer differently from the
        signature are reported as non-wildcard.

        Args:
            name: Candidate name.
            domain: Its registrable base domain.

        Returns:
            :class:`ClassificationResult` for *name*.
        """
        sig = await self.signature(domain)
        answer = await self._pool.query(name, "A")

        if not sig.is_wildcard or name == domain:
            return ClassificationResult(name, domain, False, answer.resolved)

        cname = None
        if sig.cname_target is not None:
            alias = await self._pool.query(name, "CNAME")
            if alias.resolved:
                cname = alias.records[0]

        ips = frozenset(answer.records) if answer.resolved else frozenset()
        is_wildcard = (answer.resolved or cname is not None) and sig.matches(ips, cname)
        return ClassificationResult(name, domain, is_wildcard, answer.resolved)

    async def classify_job(self, job: ClassificationJob) -> ClassificationResult:
        return await self.classify(job.name, job.domain)
