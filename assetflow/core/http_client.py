"""
Centralized HTTP client configuration.

Every aiohttp session the pipeline opens goes through HttpClient so that
headers, timeouts, connection limits and the optional HTTP proxy are shared.
"""

from __future__ import annotations

import logging
import socket
from typing import Dict, Optional

import aiohttp
from aiohttp import ClientTimeout, TCPConnector

logger = logging.getLogger(__name__)


USER_AGENT = "assetflow/1.0 (+aiohttp)"

# Headers for JSON API requests
API_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "application/json",
    "Accept-Language": "en-US,en;q=0.9",
}

# Headers for asset downloads
MEDIA_HEADERS = {
    "User-Agent": USER_AGENT,
    "Accept": "*/*",
    "Accept-Encoding": "identity;q=1, *;q=0",
}


class HttpClientConfig:
    """Configuration for HTTP sessions."""

    def __init__(
        self,
        *,
        connect_timeout: int = 30,
        read_timeout: int = 300,
        total_timeout: Optional[int] = None,
        max_connections_per_host: int = 6,
        max_total_connections: int = 20,
        proxy_url: Optional[str] = None,
    ):
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.total_timeout = total_timeout
        self.max_connections_per_host = max_connections_per_host
        self.max_total_connections = max_total_connections
        self.proxy_url = proxy_url or None

    @classmethod
    def from_settings(cls, settings) -> "HttpClientConfig":
        """Build from a SettingsStore; bad values fall back to defaults."""
        return cls(
            connect_timeout=settings.get_int("http_connect_timeout", 30),
            read_timeout=settings.get_int("http_read_timeout", 300),
            max_connections_per_host=settings.get_int("http_max_connections_per_host", 6),
            max_total_connections=settings.get_int("http_max_total_connections", 20),
            proxy_url=settings.get_config("http_proxy_url", None),
        )


class HttpClient:
    """
    Centralized HTTP session factory.

    Owns at most one aiohttp.ClientSession at a time; close() must be awaited
    before the event loop shuts down.
    """

    def __init__(self, config: Optional[HttpClientConfig] = None):
        self.config = config or HttpClientConfig()
        self._async_session: Optional[aiohttp.ClientSession] = None

    @property
    def proxy(self) -> Optional[str]:
        """Proxy URL to pass per request (aiohttp has no session-wide proxy for plain HTTP)."""
        return self.config.proxy_url

    async def create_async_session(
        self,
        headers: Optional[Dict[str, str]] = None,
        total_timeout: Optional[int] = None,
    ) -> aiohttp.ClientSession:
        """
        Create a configured aiohttp.ClientSession.

        Args:
            headers: Optional headers to use (defaults to API_HEADERS)
            total_timeout: Total request timeout (None for no limit)
        """
        connector = TCPConnector(
            limit=self.config.max_total_connections,
            limit_per_host=self.config.max_connections_per_host,
            ttl_dns_cache=300,
            family=socket.AF_INET,
            force_close=False,
        )

        timeout = ClientTimeout(
            total=total_timeout if total_timeout is not None else self.config.total_timeout,
            connect=self.config.connect_timeout,
            sock_read=self.config.read_timeout,
        )

        session = aiohttp.ClientSession(
            connector=connector,
            timeout=timeout,
            headers=headers or API_HEADERS,
            raise_for_status=False,
        )
        if self.config.proxy_url:
            logger.info(f"Async session using proxy: {self.config.proxy_url}")

        self._async_session = session
        return session

    async def get_async_session(self) -> aiohttp.ClientSession:
        """Get the existing session or create a new one."""
        if self._async_session is None or self._async_session.closed:
            return await self.create_async_session()
        return self._async_session

    async def close(self) -> None:
        if self._async_session is not None and not self._async_session.closed:
            await self._async_session.close()
        self._async_session = None
