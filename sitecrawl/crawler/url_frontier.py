"""
URL frontier for a single crawl job, plus URL normalization and subpage filtering.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Dict, Iterable, List, Optional, Set
from urllib.parse import urlparse, urlunparse


SKIP_EXTENSIONS = (
    '.jpg', '.jpeg', '.png', '.gif', '.bmp', '.svg', '.webp', '.ico',
    '.pdf', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx',
    '.zip', '.rar', '.tar', '.gz', '.exe', '.dmg', '.iso',
    '.mp3', '.mp4', '.avi', '.mov', '.wmv', '.flv', '.webm',
    '.css', '.js', '.json', '.xml', '.rss', '.woff', '.woff2', '.ttf', '.eot',
)

SKIP_PATH_SEGMENTS = (
    '/api/', '/assets/', '/static/', '/wp-admin/', '/wp-json/',
    '/cdn-cgi/', '/_next/', '/feed/',
)

SKIP_PATH_PREFIXES = ('/login', '/logout', '/signin', '/signout')


def normalize_url(url: str) -> str:
    """Lower-case scheme and host, drop the fragment and a trailing slash."""
    try:
        parsed = urlparse(url.strip())
    except ValueError:
        return url

    normalized = urlunparse((
        parsed.scheme.lower(),
        parsed.netloc.lower(),
        parsed.path,
        parsed.params,
        parsed.query,
        ''
    ))
    if normalized.endswith('/'):
        normalized = normalized[:-1]
    return normalized


def is_valid_start_url(url: str) -> bool:
    """True for absolute http(s) URLs with a host."""
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlparse(url.strip())
        return parsed.scheme in ('http', 'https') and bool(parsed.hostname)
    except ValueError:
        return False


def registrable_domain(url: str) -> str:
    """Hostname with any leading ``www.`` removed."""
    try:
        hostname = (urlparse(url).hostname or '').lower()
    except ValueError:
        return ''
    if hostname.startswith('www.'):
        hostname = hostname[4:]
    return hostname


@dataclass
class URLTask:
    """A URL waiting in the frontier."""
    url: str
    depth: int = 0
    parent_url: Optional[str] = None
    discovered_time: float = field(default_factory=time.time)


class URLFrontier:
    """
    Breadth-first queue of normalized URLs with a visited set.

    A URL is marked visited exactly once and is never queued again afterwards.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._queue: Deque[URLTask] = deque()
        self._queued: Set[str] = set()
        self._visited: Set[str] = set()

    def add(self, url: str, depth: int = 0, parent_url: Optional[str] = None) -> bool:
        """
        Queue a URL.

        Returns True if it was added, False if already visited or queued.
        """
        url = normalize_url(url)
        if url in self._visited or url in self._queued:
            return False

        self._queue.append(URLTask(url=url, depth=depth, parent_url=parent_url))
        self._queued.add(url)
        self.logger.debug(f"Added URL to frontier: {url}")
        return True

    def pop(self) -> Optional[URLTask]:
        """Dequeue the oldest task, or None when the frontier is empty."""
        if not self._queue:
            return None
        task = self._queue.popleft()
        self._queued.discard(task.url)
        return task

    def mark_visited(self, url: str) -> bool:
        """Record a visit. Returns False if the URL had already been visited."""
        if url in self._visited:
            return False
        self._visited.add(url)
        return True

    def is_visited(self, url: str) -> bool:
        return normalize_url(url) in self._visited

    @property
    def visited(self) -> Set[str]:
        return set(self._visited)

    def is_empty(self) -> bool:
        return not self._queue

    def __len__(self) -> int:
        return len(self._queue)

    def get_stats(self) -> Dict[str, int]:
        return {
            'total_queued': len(self._queue),
            'total_visited': len(self._visited),
        }


class SubpageFilter:
    """Selects links worth following: same site, HTML-looking, not utility endpoints."""

    def __init__(self, base_url: str):
        self.base_domain = registrable_domain(base_url)

    def is_crawlable(self, url: str) -> bool:
        try:
            parsed = urlparse(url)
        except ValueError:
            return False

        if parsed.scheme not in ('http', 'https'):
            return False

        if registrable_domain(url) != self.base_domain:
            return False

        path = parsed.path.lower()
        if path.endswith(SKIP_EXTENSIONS):
            return False

        probe = path if path.endswith('/') else path + '/'
        if any(segment in probe for segment in SKIP_PATH_SEGMENTS):
            return False

        if any(path == prefix or path.startswith(prefix + '/') for prefix in SKIP_PATH_PREFIXES):
            return False

        return True

    def filter(self, links: Iterable[str], frontier: URLFrontier) -> List[str]:
        """Normalized, de-duplicated crawlable links not yet visited."""
        selected: Dict[str, None] = {}
        for link in links:
            if not self.is_crawlable(link):
                continue
            normalized = normalize_url(link)
            if frontier.is_visited(normalized):
                continue
            selected[normalized] = None
        return list(selected)
