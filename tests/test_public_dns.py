"""Tests for wildcheck.core.public_dns."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from wildcheck.core.config import ResolversConfig
from wildcheck.core.errors import PublicDNSError
from wildcheck.core.public_dns import country_code, fetch_public_resolvers, load_public_resolvers

URL = "https://lists.example/{country}.txt"
GEO = "https://geo.example/json"


def _resp(status: int, body: str = "") -> dict:
    return {"status": status, "headers": {}, "body": body, "url": "https://lists.example"}


def _client(*responses) -> MagicMock:
    client = MagicMock()
    client.get = AsyncMock(side_effect=list(responses))
    return client


@pytest.mark.asyncio
async def test_country_code_from_geolocation() -> None:
    client = _client(_resp(200, '{"ip": "203.0.113.9", "country": "DE"}'))
    assert await country_code(client, GEO) == "de"


@pytest.mark.asyncio
async def test_country_code_bad_payload() -> None:
    assert await country_code(_client(_resp(200, "<html>")), GEO) == ""
    assert await country_code(_client(_resp(429, "{}")), GEO) == ""


@pytest.mark.asyncio
async def test_fetch_parses_list_for_country() -> None:
    body = "1.1.1.1\n# comment\n\n8.8.8.8\n1.1.1.1\nnot-an-ip\n2001:db8::1\n"
    client = _client(_resp(200, '{"country": "fr"}'), _resp(200, body))

    resolvers, error = await fetch_public_resolvers(client, URL, GEO)

    assert error is None
    assert resolvers == ["1.1.1.1:53", "8.8.8.8:53", "[2001:db8::1]:53"]
    assert client.get.await_args_list[1].args[0] == "https://lists.example/fr.txt"


@pytest.mark.asyncio
async def test_fetch_falls_back_to_default_country() -> None:
    client = MagicMock()
    client.get = AsyncMock(
        side_effect=[aiohttp.ClientError("geo down"), _resp(200, "9.9.9.9\n")]
    )
    resolvers, error = await fetch_public_resolvers(client, URL, GEO, default_country="us")
    assert error is None
    assert resolvers == ["9.9.9.9:53"]
    assert client.get.await_args_list[1].args[0] == "https://lists.example/us.txt"


@pytest.mark.asyncio
async def test_fetch_http_error_is_reported() -> None:
    client = _client(_resp(200, '{"country": "us"}'), _resp(503, "unavailable"))
    resolvers, error = await fetch_public_resolvers(client, URL, GEO)
    assert resolvers == []
    assert isinstance(error, PublicDNSError)


@pytest.mark.asyncio
async def test_fetch_network_error_is_reported() -> None:
    client = MagicMock()
    client.get = AsyncMock(
        side_effect=[_resp(200, '{"country": "us"}'), aiohttp.ClientError("reset")]
    )
    resolvers, error = await fetch_public_resolvers(client, URL, GEO)
    assert resolvers == []
    assert isinstance(error, aiohttp.ClientError)


@pytest.mark.asyncio
async def test_load_uses_config_urls() -> None:
    cfg = ResolversConfig(public_dns_url=URL, geo_url=GEO, default_country="nl")
    client = _client(_resp(500), _resp(200, "1.0.0.1\n"))
    resolvers, error = await load_public_resolvers(cfg, client=client)
    assert (resolvers, error) == (["1.0.0.1:53"], None)
    assert client.get.await_args_list[0].args[0] == GEO
    assert client.get.await_args_list[1].args[0] == "https://lists.example/nl.txt"
