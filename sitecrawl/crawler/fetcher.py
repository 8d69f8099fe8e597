"""
Direct HTTP fetch strategy.
"""

import asyncio
import aiohttp
import logging
import time
from typing import Optional, Dict
from dataclasses import dataclass
from aiohttp import ClientSession, ClientTimeout, ClientError


HTML_CONTENT_TYPES = ('text/html', 'application/xhtml+xml')


@dataclass
class FetchResult:
    """Result of a fetch operation."""
    url: str
    status_code: int
    html: Optional[str] = None
    final_url: Optional[str] = None
    content_type: Optional[str] = None
    error: Optional[str] = None
    fetch_time: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None and self.html is not None


class HttpFetcher:
    """
    Fetches pages with a plain GET.

    Bad status codes, non-HTML responses, timeouts and client errors are returned
    as ``FetchResult.error``; ``fetch`` never raises.
    """

    def __init__(self, user_agent: str, request_timeout: int = 30,
                 max_concurrent_requests: int = 10,
                 max_content_size: int = 10 * 1024 * 1024):
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.max_concurrent_requests = max_concurrent_requests
        self.max_content_size = max_content_size

        self.logger = logging.getLogger(__name__)

        self.session: Optional[ClientSession] = None
        self.semaphore = asyncio.Semaphore(max_concurrent_requests)

        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'total_bytes_downloaded': 0
        }

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def start(self):
        """Initialize the fetcher session."""
        if self.session is None:
            timeout = ClientTimeout(total=self.request_timeout)
            headers = {
                'User-Agent': self.user_agent,
                'Accept': 'text/html,application/xhtml+xml',
                'Accept-Language': 'en-US,en;q=0.9',
            }

            self.session = aiohttp.ClientSession(
                timeout=timeout,
                headers=headers,
                connector=aiohttp.TCPConnector(
                    limit=self.max_concurrent_requests * 2,
                    limit_per_host=10,
                    ttl_dns_cache=300,
                    use_dns_cache=True
                )
            )
            self.logger.info("HttpFetcher session started")

    async def close(self):
        """Close the fetcher session."""
        if self.session:
            await self.session.close()
            self.session = None
            self.logger.info("HttpFetcher session closed")

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a single URL.

        Args:
            url: The URL to fetch

        Returns:
            FetchResult containing the HTML or error information
        """
        if self.session is None:
            await self.start()

        start_time = time.time()

        async with self.semaphore:
            self.stats['total_requests'] += 1
            try:
                async with self.session.get(url, allow_redirects=True) as response:
                    content_type = response.headers.get('content-type', '').lower()
                    final_url = str(response.url)

                    if not 200 <= response.status < 300:
                        return self._failure(url, f"HTTP {response.status}", start_time,
                                             status_code=response.status)

                    if not any(t in content_type for t in HTML_CONTENT_TYPES):
                        self.logger.debug(f"Skipping non-HTML content: {url} ({content_type})")
                        return self._failure(url, "Not an HTML page", start_time,
                                             status_code=response.status)

                    html = await self._read_content_safely(response)
                    if html is None:
                        return self._failure(url, "Content too large or unreadable", start_time,
                                             status_code=response.status)

                    self.stats['successful_requests'] += 1
                    self.stats['total_bytes_downloaded'] += len(html)
                    self.logger.debug(f"Fetched {url}: {response.status} ({len(html)} chars)")

                    return FetchResult(
                        url=url,
                        status_code=response.status,
                        html=html,
                        final_url=final_url,
                        content_type=content_type,
                        fetch_time=time.time() - start_time
                    )

            except asyncio.TimeoutError:
                self.logger.warning(f"Timeout fetching {url}")
                return self._failure(url, "Request timeout", start_time)

            except ClientError as e:
                self.logger.warning(f"Client error fetching {url}: {e}")
                return self._failure(url, f"Client error: {e}", start_time)

            except ValueError as e:
                # Malformed URLs are rejected by yarl before any I/O
                self.logger.warning(f"Invalid URL {url}: {e}")
                return self._failure(url, f"Invalid URL: {e}", start_time)

    def _failure(self, url: str, error: str, start_time: float, status_code: int = 0) -> FetchResult:
        self.stats['failed_requests'] += 1
        return FetchResult(
            url=url,
            status_code=status_code,
            error=error,
            fetch_time=time.time() - start_time
        )

    async def _read_content_safely(self, response) -> Optional[str]:
        """
        Read the response body with a size limit.

        Returns:
            Decoded body, or None if too large or unreadable
        """
        content_length = response.headers.get('content-length')
        if content_length and content_length.isdigit() and int(content_length) > self.max_content_size:
            self.logger.warning(f"Content too large ({content_length} bytes): {response.url}")
            return None

        content_bytes = bytearray()
        async for chunk in response.content.iter_chunked(8192):
            content_bytes.extend(chunk)
            if len(content_bytes) > self.max_content_size:
                self.logger.warning(f"Content exceeded size limit during reading: {response.url}")
                return None

        encoding = response.charset or 'utf-8'
        try:
            return content_bytes.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            for fallback_encoding in ['utf-8', 'cp1252']:
                try:
                    return content_bytes.decode(fallback_encoding)
                except UnicodeDecodeError:
                    continue

            return content_bytes.decode('utf-8', errors='ignore')

    def get_stats(self) -> Dict[str, int]:
        """Get fetcher statistics."""
        return self.stats.copy()
