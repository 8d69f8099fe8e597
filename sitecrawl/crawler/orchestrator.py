"""
Crawl orchestrator: drives one breadth-first crawl job over the shared services.
"""

import inspect
import logging
import time
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from .parser import ContentExtractor, ExtractedContent, MAX_CONTENT_LENGTH
from .rate_limiter import DomainRateLimiter
from .services import CrawlServices
from .url_frontier import URLFrontier, URLTask, SubpageFilter, is_valid_start_url, normalize_url
from ..storage.chunk_store import DEFAULT_CHUNK_OVERLAP, DEFAULT_CHUNK_SIZE
from ..utils.logger import get_crawler_logger


@dataclass(frozen=True)
class CrawlJob:
    """Parameters of one crawl invocation."""
    start_url: str
    max_pages: int = 10
    crawl_subpages: bool = True
    full_page_content: bool = False
    use_cache: bool = True
    source_id: Optional[str] = None
    agent_id: Optional[str] = None
    project_id: Optional[str] = None

    @property
    def persistence_enabled(self) -> bool:
        return bool(self.source_id and self.agent_id and self.project_id)


@dataclass
class CrawlResult:
    """Extracted content of one visited URL."""
    url: str
    title: str = ''
    content: str = ''
    links: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @classmethod
    def failed(cls, url: str, error: str) -> 'CrawlResult':
        return cls(url=url, error=error)

    @classmethod
    def from_extracted(cls, url: str, extracted: ExtractedContent,
                       title: Optional[str] = None) -> 'CrawlResult':
        return cls(
            url=url,
            title=title or extracted.title,
            content=extracted.content[:MAX_CONTENT_LENGTH],
            links=list(extracted.links),
            images=list(extracted.images)
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class CrawlPhase(str, Enum):
    DISCOVERING = 'discovering'
    PROCESSING = 'processing'


@dataclass
class ProgressEvent:
    """Progress report passed to ``on_progress``."""
    current: int
    total: int
    current_url: str
    phase: CrawlPhase
    discovered_links: List[str] = field(default_factory=list)
    completed_page: Optional[CrawlResult] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'current': self.current,
            'total': self.total,
            'current_url': self.current_url,
            'phase': self.phase.value,
            'discovered_links': list(self.discovered_links),
            'completed_page': self.completed_page.to_dict() if self.completed_page else None,
        }


ProgressCallback = Callable[[ProgressEvent], Union[None, Awaitable[None]]]


@dataclass
class CrawlStats:
    """Statistics for one crawl job."""
    start_time: float = field(default_factory=time.time)
    pages_crawled: int = 0
    cache_hits: int = 0
    http_pages: int = 0
    browser_pages: int = 0
    errors: int = 0
    chunks_saved: int = 0
    persistence_errors: int = 0
    rate_limit_wait: float = 0.0

    @property
    def elapsed_time(self) -> float:
        return time.time() - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        stats = asdict(self)
        stats['elapsed_time'] = self.elapsed_time
        return stats


class CrawlOrchestrator:
    """
    Runs a single crawl job.

    Each page is served from the render cache when possible, otherwise fetched over
    HTTP, and escalated to a browser render when the HTTP text is thin. Pages are
    visited in frontier order, one at a time; concurrency comes from running many
    orchestrators over the same ``CrawlServices``.
    """

    def __init__(self, job: CrawlJob, services: CrawlServices,
                 on_progress: Optional[ProgressCallback] = None,
                 rate_limiter: Optional[DomainRateLimiter] = None,
                 domain_delay: float = 1.0,
                 min_content_length: int = 500,
                 max_content_length: int = MAX_CONTENT_LENGTH,
                 chunk_size: int = DEFAULT_CHUNK_SIZE,
                 chunk_overlap: int = DEFAULT_CHUNK_OVERLAP):
        self.job = job
        self.services = services
        self.on_progress = on_progress
        self.rate_limiter = rate_limiter or DomainRateLimiter(domain_delay)
        self.min_content_length = min_content_length
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap

        self.job_id = uuid.uuid4().hex[:12]
        self.logger = get_crawler_logger(__name__, job_id=self.job_id, start_url=job.start_url)

        self.extractor = ContentExtractor(full_page_content=job.full_page_content,
                                          max_content_length=max_content_length)
        self.frontier = URLFrontier()
        self.discovered_links: Dict[str, None] = {}
        self.stats = CrawlStats()
        self.root_url: Optional[str] = None
        self._subpage_filter: Optional[SubpageFilter] = None

    async def run(self) -> List[CrawlResult]:
        """
        Crawl until the frontier empties or ``max_pages`` results exist.

        Per-job state is reset first, so an orchestrator can be run again.
        """
        job = self.job
        self.stats = CrawlStats()
        self.frontier = URLFrontier()
        self.discovered_links = {}
        self.root_url = None
        self._subpage_filter = None

        if not is_valid_start_url(job.start_url):
            self.logger.warning(f"Invalid start URL: {job.start_url!r}")
            return [CrawlResult.failed(job.start_url, 'Invalid URL')]

        self.root_url = normalize_url(job.start_url)
        self._subpage_filter = SubpageFilter(self.root_url)
        self.frontier.add(self.root_url)

        self.logger.info(f"Starting crawl of {self.root_url} (max_pages={job.max_pages})")
        results: List[CrawlResult] = []

        await self._emit_progress(ProgressEvent(
            current=0,
            total=job.max_pages,
            current_url=job.start_url,
            phase=CrawlPhase.DISCOVERING
        ))

        while not self.frontier.is_empty() and len(results) < job.max_pages:
            task = self.frontier.pop()
            if not self.frontier.mark_visited(task.url):
                continue

            self.stats.rate_limit_wait += await self.rate_limiter.wait(task.url)

            await self._emit_progress(ProgressEvent(
                current=len(results) + 1,
                total=job.max_pages,
                current_url=task.url,
                phase=CrawlPhase.PROCESSING,
                discovered_links=list(self.discovered_links)
            ))

            result = await self.crawl_page(task.url)
            results.append(result)
            self.stats.pages_crawled += 1
            if result.error:
                self.stats.errors += 1
                self.logger.page_event(logging.WARNING, result.url,
                                       f"Failed to crawl {result.url}: {result.error}",
                                       error=result.error, depth=task.depth)

            for link in result.links:
                self.discovered_links[link] = None

            if job.crawl_subpages and not result.error:
                self._enqueue_subpages(result, task, len(results))

            if job.persistence_enabled and not result.error and result.content:
                await self._persist(result, task)

            await self._emit_progress(ProgressEvent(
                current=len(results),
                total=job.max_pages,
                current_url=result.url,
                phase=CrawlPhase.PROCESSING,
                discovered_links=list(self.discovered_links),
                completed_page=result
            ))

        self._log_final_stats(results)
        return results

    async def crawl_page(self, url: str) -> CrawlResult:
        """Produce a result for one URL via cache, HTTP, or browser, in that order."""
        services = self.services
        cache = services.render_cache if self.job.use_cache else None

        if cache is not None:
            entry = await cache.get(url)
            if services.monitor:
                services.monitor.record_cache_lookup(entry is not None)
            if entry is not None:
                self.logger.page_event(logging.DEBUG, url, f"Using cached content for {url}",
                                       strategy='cache')
                self.stats.cache_hits += 1
                self._record_page(url, 'cache')
                extracted = self.extractor.extract(url, entry.html)
                return CrawlResult.from_extracted(url, extracted, title=entry.title)

        fetch_result = await services.http_fetcher.fetch(url)
        if fetch_result.ok:
            extracted = self.extractor.extract(url, fetch_result.html)
            http_result = CrawlResult.from_extracted(url, extracted)

            if len(http_result.content) >= self.min_content_length:
                self.logger.page_event(logging.DEBUG, url, f"HTTP success for {url}",
                                       strategy='http', chars=len(http_result.content))
                if cache is not None:
                    await cache.set(url, fetch_result.html, http_result.title)
                self.stats.http_pages += 1
                self._record_page(url, 'http')
                return http_result
        else:
            http_result = CrawlResult.failed(url, fetch_result.error)
            self._record_error('fetch', fetch_result.error)

        renderer = services.browser_renderer
        if renderer is None:
            return self._fallback(url, http_result)

        self.logger.debug(f"HTTP content thin or failed, using browser for {url}")
        render_result = await renderer.render(url)
        if render_result.error:
            self._record_error('render', render_result.error)
            return self._fallback(url, http_result)

        extracted = self.extractor.extract(url, render_result.html)
        browser_result = CrawlResult.from_extracted(url, extracted, title=render_result.title)
        if cache is not None:
            await cache.set(url, render_result.html, browser_result.title)

        self.stats.browser_pages += 1
        self._record_page(url, 'browser')
        self.logger.page_event(logging.DEBUG, url, f"Browser render used for {url}",
                               strategy='browser', render_time=render_result.render_time)
        return browser_result

    def _fallback(self, url: str, http_result: CrawlResult) -> CrawlResult:
        if not http_result.error:
            self.stats.http_pages += 1
            self._record_page(url, 'http')
        return http_result

    def _enqueue_subpages(self, result: CrawlResult, task: URLTask, result_count: int):
        budget = self.job.max_pages - result_count - len(self.frontier)
        if budget <= 0:
            return

        added = 0
        for link in self._subpage_filter.filter(result.links, self.frontier):
            if added >= budget:
                break
            if self.frontier.add(link, depth=task.depth + 1, parent_url=task.url):
                added += 1

        if added:
            self.logger.debug(f"Queued {added} subpages from {task.url}")

    async def _persist(self, result: CrawlResult, task: URLTask):
        """Append the page's text to the source's chunks; failures are logged only."""
        job = self.job
        chunk_store = self.services.chunk_store
        if chunk_store is None:
            self.logger.debug("Persistence requested but no chunk store configured")
            return

        try:
            registry = self.services.source_registry
            if registry is not None and not await registry.source_exists(job.source_id):
                self.logger.warning(f"Source {job.source_id} no longer exists, skipping chunk save")
                return

            chunk_count = await chunk_store.append_chunks(
                source_id=job.source_id,
                agent_id=job.agent_id,
                project_id=job.project_id,
                content=result.content,
                metadata={
                    'type': 'website',
                    'page_url': result.url,
                    'page_title': result.title or result.url,
                    'root_url': self.root_url,
                    'crawl_timestamp': datetime.now(timezone.utc).isoformat(),
                    'depth': task.depth,
                },
                chunk_size=self.chunk_size,
                chunk_overlap=self.chunk_overlap
            )
        except Exception as e:
            self.stats.persistence_errors += 1
            self._record_error('persistence', str(e))
            self.logger.error(f"Failed to save chunks for {result.url}: {e}")
            return

        self.stats.chunks_saved += chunk_count
        if self.services.monitor:
            self.services.monitor.record_chunks_saved(chunk_count)
        self.logger.info(f"Saved {chunk_count} chunks for {result.url}")

    async def _emit_progress(self, event: ProgressEvent):
        if self.on_progress is None:
            return
        try:
            outcome = self.on_progress(event)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            self.logger.error(f"Progress callback failed: {e}")

    def _record_page(self, url: str, strategy: str):
        if self.services.monitor:
            self.services.monitor.record_page_crawled(url, strategy)

    def _record_error(self, error_type: str, message: str):
        if self.services.monitor:
            self.services.monitor.record_error(error_type, message)

    def _log_final_stats(self, results: List[CrawlResult]):
        self.logger.info(
            f"Crawl complete: {len(results)} pages, "
            f"cache={self.stats.cache_hits}, http={self.stats.http_pages}, "
            f"browser={self.stats.browser_pages}, errors={self.stats.errors}, "
            f"chunks={self.stats.chunks_saved}, time={self.stats.elapsed_time:.2f}s"
        )
        if self.services.browser_pool is not None:
            self.logger.debug(f"Browser pool stats: {self.services.browser_pool.get_stats()}")

    def get_stats(self) -> Dict[str, Any]:
        stats = self.stats.to_dict()
        stats.update(self.frontier.get_stats())
        stats['discovered_links'] = len(self.discovered_links)
        return stats


async def crawl(start_url: str, services: CrawlServices, max_pages: int = 10,
                crawl_subpages: bool = True, full_page_content: bool = False,
                use_cache: bool = True, source_id: Optional[str] = None,
                agent_id: Optional[str] = None, project_id: Optional[str] = None,
                on_progress: Optional[ProgressCallback] = None,
                **orchestrator_options) -> List[CrawlResult]:
    """
    Crawl a site starting at ``start_url``.

    Returns one CrawlResult per visited URL; never raises for per-page failures.
    """
    job = CrawlJob(
        start_url=start_url,
        max_pages=max_pages,
        crawl_subpages=crawl_subpages,
        full_page_content=full_page_content,
        use_cache=use_cache,
        source_id=source_id,
        agent_id=agent_id,
        project_id=project_id
    )
    orchestrator = CrawlOrchestrator(job, services, on_progress=on_progress, **orchestrator_options)
    return await orchestrator.run()
