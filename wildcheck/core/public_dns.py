"""Country-keyed public resolver list.

:func:`load_public_resolvers` is called once from the entry point; failures
never raise, they come back alongside an empty list so the caller can fall
back to its defaults.
"""

from __future__ import annotations

import asyncio
import json
from typing import List, Optional, Tuple

import aiohttp

from wildcheck.core.config import ResolversConfig
from wildcheck.core.errors import PublicDNSError
from wildcheck.utils.helpers import parse_resolver_lines
from wildcheck.utils.http_client import AsyncHTTPClient
from wildcheck.utils.logger import get_logger

logger = get_logger(__name__)


async def country_code(client: AsyncHTTPClient, geo_url: str) -> str:
    """Return the caller's lowercase ISO country code, or ``""`` if unknown."""
    try:
        resp = await client.get(geo_url, headers={"Accept": "application/json"})
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        logger.debug("Geolocation lookup failed: %s", exc)
        return ""
    if resp["status"] != 200:
        return ""
    try:
        data = json.loads(resp["body"])
    except ValueError:
        return ""
    code = data.get("country") if isinstance(data, dict) else None
    return code.lower() if isinstance(code, str) else ""


async def fetch_public_resolvers(
    client: AsyncHTTPClient,
    url_template: str,
    geo_url: str,
    default_country: str = "us",
) -> Tuple[List[str], Optional[Exception]]:
    """Fetch the public resolver list for the caller's country.

    Args:
        client: Open HTTP client.
        url_template: List URL with a ``{country}`` placeholder.
        geo_url: Geolocation endpoint returning JSON with a ``country`` field.
        default_country: Country used when geolocation fails.

    Returns:
        ``(resolvers, error)``; *resolvers* is empty whenever *error* is set.
    """
    cc = await country_code(client, geo_url) or default_country
    url = url_template.format(country=cc)
    try:
        resp = await client.get(url)
    except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
        logger.warning("Failed to get public DNS list: %s", exc)
        return [], exc
    if not 200 <= resp["status"] < 300:
        error = PublicDNSError(f"{url} returned HTTP {resp['status']}")
        logger.warning("Failed to get public DNS list: %s", error)
        return [], error

    resolvers = parse_resolver_lines(resp["body"].splitlines())
    logger.info("Fetched %d public resolvers for country %s", len(resolvers), cc)
    return resolvers, None


async def load_public_resolvers(
    config: ResolversConfig,
    client: Optional[AsyncHTTPClient] = None,
) -> Tuple[List[str], Optional[Exception]]:
    """Fetch the public resolver list once, opening a client if needed."""
    if client is not None:
        return await fetch_public_resolvers(
            client, config.public_dns_url, config.geo_url, config.default_country
        )
    # public-dns.info is fetched without certificate verification
    async with AsyncHTTPClient(timeout=15, verify_ssl=False) as own_client:
        return await fetch_public_resolvers(
            own_client, config.public_dns_url, config.geo_url, config.default_country
        )
