"""
Per-domain request throttling.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Dict, Optional
from urllib.parse import urlparse


class DomainRateLimiter:
    """
    Keeps consecutive requests to one domain at least ``domain_delay`` seconds apart.

    The clock and sleep functions are injectable so tests can drive time by hand.
    """

    def __init__(self, domain_delay: float = 1.0,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.domain_delay = domain_delay
        self.clock = clock
        self.sleep = sleep
        self.logger = logging.getLogger(__name__)

        self.domain_last_request: Dict[str, float] = {}
        self.stats = {
            'requests': 0,
            'throttled': 0,
            'total_wait': 0.0
        }

    def _get_domain(self, url: str) -> Optional[str]:
        try:
            hostname = urlparse(url).hostname
        except ValueError:
            return None
        return hostname.lower() if hostname else None

    async def wait(self, url: str) -> float:
        """
        Wait until ``url``'s domain may be requested again, then claim the slot.

        Returns the number of seconds slept.
        """
        domain = self._get_domain(url)
        if domain is None:
            return 0.0

        waited = 0.0
        last_request = self.domain_last_request.get(domain)
        if last_request is not None:
            elapsed = self.clock() - last_request
            if elapsed < self.domain_delay:
                waited = self.domain_delay - elapsed
                self.logger.debug(f"Rate limit: waiting {waited:.3f}s for {domain}")
                await self.sleep(waited)
                self.stats['throttled'] += 1
                self.stats['total_wait'] += waited

        self.domain_last_request[domain] = self.clock()
        self.stats['requests'] += 1
        return waited

    def reset(self):
        """Forget all per-domain request times."""
        self.domain_last_request.clear()

    def get_stats(self) -> Dict[str, float]:
        stats = dict(self.stats)
        stats['domains'] = len(self.domain_last_request)
        return stats
