"""Single-endpoint async DNS resolver for wildcheck.

:class:`Resolver` is an aiodns-backed client bound to one upstream
nameserver, with its own query quota and liveness state. Every query
produces an :class:`Answer`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import aiodns

from wildcheck.core.rate_limiter import WindowQuota
from wildcheck.utils.helpers import split_address
from wildcheck.utils.logger import get_logger

logger = get_logger(__name__)


class AnswerStatus(str, Enum):
    """Outcome of a single DNS question.

    ``SERVFAIL`` reports a broken zone, not a broken resolver, so it never
    counts against the resolver that returned it.
    """

    NOERROR = "NOERROR"
    NXDOMAIN = "NXDOMAIN"
    NODATA = "NODATA"
    SERVFAIL = "SERVFAIL"
    TIMEOUT = "TIMEOUT"
    ERROR = "ERROR"


_DEFINITIVE = {AnswerStatus.NOERROR, AnswerStatus.NXDOMAIN, AnswerStatus.NODATA}

_ERROR_STATUS: Dict[int, AnswerStatus] = {
    aiodns.error.ARES_ENOTFOUND: AnswerStatus.NXDOMAIN,
    aiodns.error.ARES_ENODATA: AnswerStatus.NODATA,
    aiodns.error.ARES_ESERVFAIL: AnswerStatus.SERVFAIL,
    aiodns.error.ARES_ETIMEOUT: AnswerStatus.TIMEOUT,
}


@dataclass(frozen=True)
class Answer:
    """The answer to one DNS question.

    Attributes:
        name: Queried name.
        qtype: Record type string (``"A"``, ``"CNAME"``...).
        status: :class:`AnswerStatus` outcome.
        records: Normalised record data (addresses or alias targets).
    """

    name: str
    qtype: str
    status: AnswerStatus
    records: Tuple[str, ...] = ()

    @property
    def definitive(self) -> bool:
        """``True`` when the upstream actually answered the question."""
        return self.status in _DEFINITIVE

    @property
    def resolved(self) -> bool:
        """``True`` when the answer carries at least one record."""
        return self.status is AnswerStatus.NOERROR and bool(self.records)


class Resolver:
    """One upstream nameserver with a per-resolver rate ceiling.

    Only :attr:`healthy` changes after construction, and it goes from
    ``True`` to ``False`` at most once.

    Example::

        resolver = Resolver("1.1.1.1:53", rate_limit=15)
        answer = await resolver.query("example.com", "A")
        print(answer.status, answer.records)
    """

    def __init__(
        self,
        address: str,
        rate_limit: int = 15,
        timeout: float = 2.0,
        max_failures: int = 10,
    ) -> None:
        """Initialise the resolver (no socket is opened yet).

        Args:
            address: Normalised ``host:port`` address.
            rate_limit: Queries per second this resolver may receive.
            timeout: Per-query timeout in seconds.
            max_failures: Consecutive failures before eviction.
        """
        self.address = address
        self.host, self.port = split_address(address)
        self.rate_limit = rate_limit
        self.timeout = timeout
        self.max_failures = max_failures
        self.quota = WindowQuota(rate_limit)
        self.healthy = True
        self.failures = 0
        self._channel: Optional[aiodns.DNSResolver] = None

    def __repr__(self) -> str:
        state = "healthy" if self.healthy else "evicted"
        return f"<Resolver {self.address} {self.rate_limit}q/s {state}>"

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def query(self, name: str, qtype: str = "A") -> Answer:
        """Ask this resolver one question.

        Never raises for DNS-level failures; they are reported through
        :attr:`Answer.status`.

        Args:
            name: Name to resolve.
            qtype: Record type string.

        Returns:
            :class:`Answer` for the question.
        """
        qtype = qtype.upper()
        try:
            result = await asyncio.wait_for(
                self._lookup(name, qtype), timeout=self.timeout + 1.0
            )
        except aiodns.error.DNSError as exc:
            code = exc.args[0] if exc.args else None
            status = _ERROR_STATUS.get(code, AnswerStatus.ERROR)  # type: ignore[arg-type]
            return Answer(name, qtype, status)
        except asyncio.TimeoutError:
            return Answer(name, qtype, AnswerStatus.TIMEOUT)

        records = tuple(sorted(set(self._format_records(result, qtype))))
        if not records:
            return Answer(name, qtype, AnswerStatus.NODATA)
        return Answer(name, qtype, AnswerStatus.NOERROR, records)

    async def _lookup(self, name: str, qtype: str) -> Any:
        """Send the question upstream through aiodns."""
        if self._channel is None:
            self._channel = aiodns.DNSResolver(
                nameservers=[self.host],
                timeout=self.timeout,
                tries=1,
                udp_port=self.port,
                tcp_port=self.port,
            )
        return await self._channel.query(name, qtype)

    def close(self) -> None:
        """Cancel outstanding queries and drop the channel."""
        if self._channel is not None:
            self._channel.cancel()
            self._channel = None

    # ------------------------------------------------------------------
    # Health accounting
    # ------------------------------------------------------------------

    def record_success(self) -> None:
        """Reset the consecutive-failure counter."""
        self.failures = 0

    def record_failure(self) -> bool:
        """Count a failure; return ``True`` if it caused the eviction."""
        self.failures += 1
        if self.failures >= self.max_failures:
            return self.evict()
        return False

    def evict(self) -> bool:
        """Permanently remove the resolver from rotation.

        Returns:
            ``True`` on the first call, ``False`` if already evicted.
        """
        if not self.healthy:
            return False
        self.healthy = False
        logger.debug("Evicted resolver %s after %d failures", self.address, self.failures)
        return True

    @staticmethod
    def _format_records(result: Any, qtype: str) -> List[str]:
        """Convert aiodns result objects to lowercase strings without trailing dots."""
        out: List[str] = []
        items = result if isinstance(result, list) else [result]
        for item in items:
            if qtype in ("A", "AAAA"):
                out.append(item.host)
            elif qtype == "CNAME":
                out.append(item.cname.rstrip(".").lower())
            else:
                out.append(str(item))
        return out
