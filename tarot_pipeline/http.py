"""
Pooled aiohttp session shared by the backend clients.

Each client keeps one ClientSession for its lifetime so TCP/TLS connections
are reused between turns; aclose() releases it and is safe to call twice.
"""
from typing import Optional

import aiohttp

from logging_setup import StructuredLogger


class PooledHttpClient:
    """Base for clients that talk to one HTTP backend."""

    def __init__(
        self,
        *,
        logger: StructuredLogger,
        total_timeout: float = 20.0,
        connect_timeout: float = 5.0,
        pool_size: int = 10,
    ):
        self._logger = logger
        self._total_timeout = total_timeout
        self._connect_timeout = connect_timeout
        self._pool_size = pool_size
        self._http_session: Optional[aiohttp.ClientSession] = None

    def _get_or_create_session(self) -> aiohttp.ClientSession:
        if self._http_session is None or self._http_session.closed:
            connector = aiohttp.TCPConnector(
                limit=self._pool_size,
                limit_per_host=self._pool_size,
                ttl_dns_cache=300,
            )
            timeout = aiohttp.ClientTimeout(
                total=self._total_timeout,
                connect=self._connect_timeout,
            )
            self._http_session = aiohttp.ClientSession(connector=connector, timeout=timeout)
            self._logger.debug(
                "HTTP connection pool created",
                pool_size=self._pool_size,
                total_timeout_ms=int(self._total_timeout * 1000),
            )
        return self._http_session

    async def warmup(self) -> None:
        """Create the pool ahead of the first real request."""
        self._get_or_create_session()

    async def aclose(self) -> None:
        if self._http_session is not None:
            session, self._http_session = self._http_session, None
            if not session.closed:
                await session.close()
