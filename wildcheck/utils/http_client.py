"""Async HTTP client for wildcheck.

:class:`AsyncHTTPClient` is a small aiohttp wrapper with retry and backoff,
used to fetch public resolver lists and geolocation data.
"""

from __future__ import annotations

import asyncio
from types import TracebackType
from typing import Any, Dict, Optional, Type

import aiohttp
from aiohttp import ClientSession, ClientTimeout, TCPConnector

from wildcheck import __version__
from wildcheck.utils.logger import get_logger

logger = get_logger(__name__)

_USER_AGENT = f"wildcheck/{__version__}"


class AsyncHTTPClient:
    """Async HTTP client with retries.

    Usage::

        async with AsyncHTTPClient(timeout=10) as client:
            resp = await client.get("https://example.com")
            print(resp["status"], resp["body"][:200])
    """

    def __init__(
        self,
        timeout: int = 10,
        retries: int = 2,
        retry_delay: float = 1.0,
        verify_ssl: bool = True,
    ) -> None:
        """Initialise the client (does *not* open a session yet).

        Args:
            timeout: Request timeout in seconds.
            retries: Number of retry attempts on transient failures.
            retry_delay: Base delay between retries (doubles each attempt).
            verify_ssl: Whether to verify TLS certificates.
        """
        self._timeout = timeout
        self._retries = retries
        self._retry_delay = retry_delay
        self._verify_ssl = verify_ssl
        self._session: Optional[ClientSession] = None

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> "AsyncHTTPClient":
        await self._create_session()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        await self.close()

    async def _create_session(self) -> None:
        """Create the underlying :class:`aiohttp.ClientSession`."""
        connector = TCPConnector(ssl=self._verify_ssl)
        self._session = ClientSession(
            connector=connector,
            timeout=ClientTimeout(total=self._timeout),
            headers={"User-Agent": _USER_AGENT},
        )

    async def close(self) -> None:
        """Close the underlying HTTP session and release connections."""
        if self._session and not self._session.closed:
            await self._session.close()

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def get(self, url: str, **kwargs: Any) -> Dict[str, Any]:
        """Perform an HTTP GET request with retry/backoff.

        Args:
            url: Target URL.
            **kwargs: Forwarded to :meth:`aiohttp.ClientSession.get`.

        Returns:
            Response dict with ``status``, ``headers``, ``body``, ``url``.

        Raises:
            aiohttp.ClientError: After all retries are exhausted.
            asyncio.TimeoutError: If the last attempt timed out.
        """
        if self._session is None:
            await self._create_session()

        last_exc: Optional[BaseException] = None
        for attempt in range(self._retries + 1):
            try:
                assert self._session is not None
                async with self._session.get(url, **kwargs) as resp:
                    body = await resp.text(errors="replace")
                    return {
                        "status": resp.status,
                        "headers": dict(resp.headers),
                        "body": body,
                        "url": str(resp.url),
                    }
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                last_exc = exc
                if attempt < self._retries:
                    backoff = self._retry_delay * (2 ** attempt)
                    logger.debug(
                        "Request to %s failed (attempt %d/%d): %s, retrying in %.1fs",
                        url,
                        attempt + 1,
                        self._retries + 1,
                        exc,
                        backoff,
                    )
                    await asyncio.sleep(backoff)

        raise last_exc or aiohttp.ClientError(f"Request failed: {url}")
