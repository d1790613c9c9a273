"""
HTTP transport and the admission gate that bounds in-flight requests.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import aiohttp
from aiohttp import ClientTimeout

# Network failures; raised while opening a response they are transport
# errors, raised from read() they are body download errors.
FETCH_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError)


class WebFetcher:
    """
    Fetches resources over aiohttp behind a counting semaphore.

    ``slot()`` is the admission gate: at most ``max_concurrent_requests``
    callers hold it at once. ``request()`` returns the session's response
    context manager, so a test double only has to provide ``get(url)``.
    """

    def __init__(self, user_agent: str, request_timeout: int = 30,
                 max_concurrent_requests: int = 20, session: Optional[Any] = None):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_concurrent_requests = max_concurrent_requests

        self.logger = logging.getLogger(__name__)

        # Session management
        self.session = session
        self._owns_session = session is None
        self.semaphore = asyncio.Semaphore(max_concurrent_requests)

        # Statistics
        self.stats = {
            'total_requests': 0,
            'failed_requests': 0,
            'total_bytes_downloaded': 0,
            'in_flight': 0,
            'peak_in_flight': 0,
        }

    async def __aenter__(self):
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            timeout = ClientTimeout(total=self.request_timeout)
            headers = {'User-Agent': self.user_agent}

            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers=headers,
                connector=aiohttp.TCPConnector(
                    limit=self.max_concurrent_requests * 2,
                    ttl_dns_cache=300,
                    use_dns_cache=True
                )
            )
            self.logger.info("WebFetcher session started")

    async def close(self):
        """Close the fetcher session if this fetcher created it."""
        if self.session is not None and self._owns_session:
            await self.session.close()
            self.session = None
            self.logger.info("WebFetcher session closed")

    @asynccontextmanager
    async def slot(self):
        """Hold one admission slot for the duration of the block."""
        async with self.semaphore:
            self.stats['in_flight'] += 1
            if self.stats['in_flight'] > self.stats['peak_in_flight']:
                self.stats['peak_in_flight'] = self.stats['in_flight']
            try:
                yield
            finally:
                self.stats['in_flight'] -= 1

    def request(self, url: str):
        """
        Issue a GET. Use as ``async with fetcher.request(url) as response``.

        The response exposes ``status``, ``reason``, ``content_length`` and
        ``read()``.
        """
        self.stats['total_requests'] += 1
        return self.session.get(url)

    def record_failure(self):
        self.stats['failed_requests'] += 1

    def record_download(self, size: int):
        self.stats['total_bytes_downloaded'] += size

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()
