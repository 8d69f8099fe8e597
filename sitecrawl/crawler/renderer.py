"""
JavaScript-rendering fetch strategy backed by the shared browser pool.
"""

import logging

from .browser_pool import BrowserPool, RenderResult


class BrowserRenderer:
    """Renders pages through a ``BrowserPool`` with fixed navigation options."""

    def __init__(self, pool: BrowserPool, timeout: float = 30.0,
                 wait_until: str = 'networkidle', block_resources: bool = True):
        self.pool = pool
        self.timeout = timeout
        self.wait_until = wait_until
        self.block_resources = block_resources
        self.logger = logging.getLogger(__name__)

    async def render(self, url: str) -> RenderResult:
        result = await self.pool.render(
            url,
            timeout=self.timeout,
            wait_until=self.wait_until,
            block_resources=self.block_resources
        )
        if result.error:
            self.logger.warning(f"Browser render failed for {url}: {result.error}")
        else:
            self.logger.debug(f"Rendered {url} in {result.render_time:.2f}s ({len(result.html)} chars)")
        return result
