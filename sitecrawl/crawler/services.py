"""
Process-wide crawl services.

One ``CrawlServices`` is built at process start and handed to every
``CrawlOrchestrator``, so concurrent jobs share the HTTP session, browser pool
and render cache.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .browser_pool import BrowserPool
from .fetcher import HttpFetcher
from .renderer import BrowserRenderer
from ..storage.chunk_store import ChunkStore, FileChunkStore, SourceRegistry
from ..storage.render_cache import RedisCacheBackend, RenderCache
from ..utils.config import Config
from ..utils.monitoring import CrawlerMonitor, MetricsCollector


@dataclass
class CrawlServices:
    """Shared collaborators for crawl jobs."""
    http_fetcher: HttpFetcher
    browser_renderer: Optional[BrowserRenderer] = None
    render_cache: Optional[RenderCache] = None
    monitor: Optional[CrawlerMonitor] = None
    chunk_store: Optional[ChunkStore] = None
    source_registry: Optional[SourceRegistry] = None
    config: Optional[Config] = None

    @property
    def browser_pool(self) -> Optional[BrowserPool]:
        return self.browser_renderer.pool if self.browser_renderer else None

    @classmethod
    def create(cls, config: Config) -> 'CrawlServices':
        """Build the service graph described by ``config``."""
        monitor = CrawlerMonitor(MetricsCollector(
            enable_prometheus=config.monitoring.metrics_enabled,
            prometheus_port=config.monitoring.prometheus_port
        ))

        http_fetcher = HttpFetcher(
            user_agent=config.crawler.user_agent,
            request_timeout=config.crawler.request_timeout,
            max_concurrent_requests=config.crawler.max_concurrent_requests
        )

        browser_renderer = None
        pool_config = config.browser_pool
        if pool_config.enabled:
            pool = BrowserPool(
                max_browsers=pool_config.max_browsers,
                max_contexts_per_browser=pool_config.max_contexts_per_browser,
                browser_timeout=pool_config.browser_timeout,
                sweep_interval=pool_config.sweep_interval,
                user_agent=pool_config.user_agent,
                monitor=monitor
            )
            browser_renderer = BrowserRenderer(
                pool,
                timeout=pool_config.render_timeout,
                wait_until=pool_config.wait_until,
                block_resources=pool_config.block_resources
            )

        backend = None
        if config.cache.backend == 'redis':
            backend = RedisCacheBackend.from_config(config.redis)
        render_cache = RenderCache(
            backend=backend,
            max_memory_entries=config.cache.max_memory_entries,
            default_ttl=config.cache.default_ttl,
            sweep_interval=config.cache.sweep_interval
        )

        chunk_store = None
        if config.storage.enabled:
            chunk_store = FileChunkStore(config.storage.data_directory)

        return cls(
            http_fetcher=http_fetcher,
            browser_renderer=browser_renderer,
            render_cache=render_cache,
            monitor=monitor,
            chunk_store=chunk_store,
            source_registry=chunk_store,
            config=config
        )

    async def start(self):
        """Open sessions and start background sweeps."""
        logger = logging.getLogger(__name__)

        await self.http_fetcher.start()
        if self.browser_pool is not None:
            await self.browser_pool.start()
        if self.render_cache is not None:
            await self.render_cache.start()
        if isinstance(self.chunk_store, FileChunkStore):
            await self.chunk_store.initialize()
        if self.monitor is not None:
            self.monitor.metrics.start_prometheus_server()

        logger.info("Crawl services started")

    async def close(self):
        """Shut every service down; errors are logged so the rest still close."""
        logger = logging.getLogger(__name__)

        closers = [
            ('browser pool', self.browser_pool.shutdown if self.browser_pool else None),
            ('render cache', self.render_cache.close if self.render_cache else None),
            ('http fetcher', self.http_fetcher.close),
            ('chunk store', self.chunk_store.close if self.chunk_store else None),
        ]
        for name, closer in closers:
            if closer is None:
                continue
            try:
                await closer()
            except Exception as e:
                logger.error(f"Error closing {name}: {e}")

        logger.info("Crawl services closed")
