"""Shared pytest fixtures for the wildcheck test suite.

DNS is served by an in-memory :class:`FakeZone`; no test queries a real nameserver.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Dict, Iterable, List, Optional, Sequence

import aiodns
import pytest

from wildcheck.core.config import Config
from wildcheck.core.resolver_pool import ResolverPool
from wildcheck.utils.dns_resolver import Resolver


class FakeZone:
    """Explicit records plus wildcard rules, answering like aiodns would."""

    def __init__(self) -> None:
        self.records: Dict[str, Dict[str, object]] = {}
        self.wildcards: Dict[str, Dict[str, object]] = {}
        self.broken: List[str] = []

    def add(self, name: str, a: Sequence[str] = (), cname: Optional[str] = None) -> None:
        self.records[name] = {"a": list(a), "cname": cname}

    def wildcard(self, domain: str, a: Sequence[str] = (), cname: Optional[str] = None) -> None:
        self.wildcards[domain] = {"a": list(a), "cname": cname}

    def servfail(self, domain: str) -> None:
        """Answer SERVFAIL for every name under *domain*, like a lame delegation."""
        self.broken.append(domain)

    def _find(self, name: str) -> Optional[Dict[str, object]]:
        if name in self.records:
            return self.records[name]
        for domain, rec in self.wildcards.items():
            if name.endswith("." + domain):
                return rec
        return None

    def lookup(self, name: str, qtype: str):
        if any(name == d or name.endswith("." + d) for d in self.broken):
            raise aiodns.error.DNSError(aiodns.error.ARES_ESERVFAIL, "Server failed")
        rec = self._find(name)
        if rec is None:
            raise aiodns.error.DNSError(aiodns.error.ARES_ENOTFOUND, "Domain name not found")
        if qtype == "A" and rec["a"]:
            return [SimpleNamespace(host=ip, ttl=60) for ip in rec["a"]]
        if qtype == "CNAME" and rec["cname"]:
            return SimpleNamespace(cname=rec["cname"], ttl=60)
        raise aiodns.error.DNSError(aiodns.error.ARES_ENODATA, "DNS server returned answer with no data")


class FakeResolver(Resolver):
    """Resolver answering from a :class:`FakeZone`.

    ``dead`` resolvers time out on every query; ``hijack`` resolvers answer
    every A question with a fixed address, like NXDOMAIN-rewriting ISPs.
    """

    def __init__(
        self,
        address: str,
        zone: Optional[FakeZone] = None,
        dead: bool = False,
        hijack: bool = False,
        delay: float = 0.0,
        **kwargs,
    ) -> None:
        kwargs.setdefault("rate_limit", 1000)
        super().__init__(address, **kwargs)
        self.zone = zone or FakeZone()
        self.dead = dead
        self.hijack = hijack
        self.delay = delay
        self.calls: List[str] = []

    async def _lookup(self, name: str, qtype: str):
        self.calls.append(f"{qtype} {name}")
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.dead:
            raise aiodns.error.DNSError(
                aiodns.error.ARES_ETIMEOUT, "Timeout while contacting DNS servers"
            )
        if self.hijack and qtype == "A":
            return [SimpleNamespace(host="10.10.10.10", ttl=60)]
        return self.zone.lookup(name, qtype)


def build_zone() -> FakeZone:
    zone = FakeZone()
    zone.add("www.google.com", a=["142.250.1.1"])
    zone.wildcard("wild.test", a=["1.2.3.4"])
    zone.add("realhost.wild.test", a=["5.6.7.8"])
    zone.add("wild.test", a=["1.2.3.4"])
    zone.add("real.strict.test", a=["9.9.9.1"])
    zone.add("strict.test", a=["9.9.9.2"])
    zone.wildcard("alias.test", a=["7.7.7.7"], cname="lb.cdn.example.net")
    zone.add("api.alias.test", a=["7.7.7.7"], cname="api.cdn.example.net")
    return zone


def make_resolvers(
    zone: FakeZone, addresses: Iterable[str], **kwargs
) -> List[FakeResolver]:
    return [FakeResolver(address, zone=zone, **kwargs) for address in addresses]


@pytest.fixture
def sample_config() -> Config:
    """Return a default Config instance with no external dependencies."""
    return Config()


@pytest.fixture
def zone() -> FakeZone:
    return build_zone()


@pytest.fixture
def pool(zone: FakeZone) -> ResolverPool:
    """A healthy two-tier pool over the fake zone, without rate limiting."""
    return ResolverPool(
        make_resolvers(zone, ["10.0.0.1:53", "10.0.0.2:53", "10.0.0.3:53"]),
        make_resolvers(zone, ["1.1.1.1:53", "8.8.8.8:53"]),
        global_rate_limit=0,
    )
