"""
Site crawler core components.
"""

from .rate_limiter import DomainRateLimiter
from .fetcher import HttpFetcher, FetchResult
from .parser import ContentExtractor, ExtractedContent
from .browser_pool import BrowserPool, RenderResult, ResourceBlocker, DefaultResourceBlocker
from .renderer import BrowserRenderer
from .url_frontier import URLFrontier, URLTask, SubpageFilter, normalize_url
from .services import CrawlServices
from .orchestrator import (
    CrawlOrchestrator, CrawlJob, CrawlResult, CrawlPhase, ProgressEvent, crawl
)

__all__ = [
    'DomainRateLimiter',
    'HttpFetcher', 'FetchResult',
    'ContentExtractor', 'ExtractedContent',
    'BrowserPool', 'RenderResult', 'ResourceBlocker', 'DefaultResourceBlocker',
    'BrowserRenderer',
    'URLFrontier', 'URLTask', 'SubpageFilter', 'normalize_url',
    'CrawlServices',
    'CrawlOrchestrator', 'CrawlJob', 'CrawlResult', 'CrawlPhase', 'ProgressEvent', 'crawl',
]
