"""Tests for wildcheck.utils.dns_resolver."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import aiodns
import pytest

from tests.conftest import FakeResolver
from wildcheck.utils.dns_resolver import Answer, AnswerStatus, Resolver


def test_resolver_parses_address():
    resolver = Resolver("1.1.1.1:5353", rate_limit=20)
    assert resolver.host == "1.1.1.1"
    assert resolver.port == 5353
    assert resolver.quota.limit == 20
    assert resolver.healthy is True
    assert "1.1.1.1:5353" in repr(resolver)


def test_answer_properties():
    assert Answer("a.example.com", "A", AnswerStatus.NOERROR, ("1.2.3.4",)).resolved
    assert Answer("a.example.com", "A", AnswerStatus.NXDOMAIN).definitive
    assert not Answer("a.example.com", "A", AnswerStatus.NXDOMAIN).resolved
    assert not Answer("a.example.com", "A", AnswerStatus.TIMEOUT).definitive
    assert not Answer("a.example.com", "A", AnswerStatus.ERROR).definitive


@pytest.mark.asyncio
async def test_query_returns_sorted_unique_addresses(zone):
    zone.add("multi.example.com", a=["5.5.5.5", "1.1.1.1", "5.5.5.5"])
    resolver = FakeResolver("10.0.0.1:53", zone=zone)
    answer = await resolver.query("multi.example.com", "a")
    assert answer.status is AnswerStatus.NOERROR
    assert answer.qtype == "A"
    assert answer.records == ("1.1.1.1", "5.5.5.5")


@pytest.mark.asyncio
async def test_query_cname_is_normalised(zone):
    zone.add("www.example.com", a=["1.1.1.1"], cname="Edge.CDN.example.net.")
    resolver = FakeResolver("10.0.0.1:53", zone=zone)
    answer = await resolver.query("www.example.com", "CNAME")
    assert answer.records == ("edge.cdn.example.net",)


@pytest.mark.asyncio
@pytest.mark.parametrize("code,status", [
    (aiodns.error.ARES_ENOTFOUND, AnswerStatus.NXDOMAIN),
    (aiodns.error.ARES_ENODATA, AnswerStatus.NODATA),
    (aiodns.error.ARES_ETIMEOUT, AnswerStatus.TIMEOUT),
    (aiodns.error.ARES_ESERVFAIL, AnswerStatus.SERVFAIL),
    (aiodns.error.ARES_EREFUSED, AnswerStatus.ERROR),
])
async def test_query_maps_errors(code, status):
    resolver = Resolver("1.1.1.1:53")
    with patch.object(
        resolver, "_lookup", AsyncMock(side_effect=aiodns.error.DNSError(code, "boom"))
    ):
        answer = await resolver.query("x.example.com", "A")
    assert answer.status is status
    assert answer.records == ()


@pytest.mark.asyncio
async def test_query_empty_result_is_nodata():
    resolver = Resolver("1.1.1.1:53")
    with patch.object(resolver, "_lookup", AsyncMock(return_value=[])):
        answer = await resolver.query("x.example.com", "A")
    assert answer.status is AnswerStatus.NODATA


@pytest.mark.asyncio
async def test_lookup_builds_channel_for_address():
    resolver = Resolver("9.9.9.9:5353", timeout=1.5)
    channel = SimpleNamespace(
        query=AsyncMock(return_value=[SimpleNamespace(host="1.2.3.4", ttl=1)]),
        cancel=lambda: None,
    )
    with patch("wildcheck.utils.dns_resolver.aiodns.DNSResolver", return_value=channel) as ctor:
        answer = await resolver.query("x.example.com")
    ctor.assert_called_once_with(
        nameservers=["9.9.9.9"], timeout=1.5, tries=1, udp_port=5353, tcp_port=5353
    )
    assert answer.records == ("1.2.3.4",)
    resolver.close()


def test_failures_evict_once():
    resolver = Resolver("1.1.1.1:53", max_failures=3)
    assert resolver.record_failure() is False
    resolver.record_success()
    assert resolver.failures == 0
    assert resolver.record_failure() is False
    assert resolver.record_failure() is False
    assert resolver.record_failure() is True
    assert resolver.healthy is False
    assert resolver.record_failure() is False
    assert resolver.evict() is False
