"""
Pool of headless browsers shared by every crawl job in the process.

Each browser hosts up to ``max_contexts_per_browser`` isolated contexts at once;
each render gets its own context and page. Idle browsers are closed by a
periodic sweep.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..utils.config import BROWSER_USER_AGENT
from ..utils.monitoring import CrawlerMonitor


BLOCKED_RESOURCE_TYPES = frozenset(['image', 'media', 'font', 'stylesheet'])

BLOCKED_URL_PATTERNS = (
    'googletagmanager.com',
    'google-analytics.com',
    'facebook.com',
    'twitter.com',
    'doubleclick.net',
    'cloudflare.com/cdn-cgi',
    'fontawesome.com',
    'googleapis.com/css',
)

CHROMIUM_ARGS = [
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-dev-shm-usage',
    '--disable-gpu',
    '--disable-web-security',
    '--disable-features=IsolateOrigins,site-per-process',
    '--disable-blink-features=AutomationControlled',
    '--no-first-run',
    '--disable-extensions',
]

# Slack on top of the navigation timeout before a render is abandoned
TIMEOUT_GRACE = 1.0

# Upper bound for closing a page, context or browser
CLOSE_TIMEOUT = 5.0


class ResourceBlocker:
    """Decides which page sub-requests are aborted during a render."""

    def should_block(self, url: str, resource_type: str) -> bool:
        raise NotImplementedError


class DefaultResourceBlocker(ResourceBlocker):
    """Blocks heavy static resources and known analytics/social hosts."""

    def __init__(self, blocked_types=BLOCKED_RESOURCE_TYPES, blocked_patterns=BLOCKED_URL_PATTERNS):
        self.blocked_types = frozenset(blocked_types)
        self.blocked_patterns = tuple(blocked_patterns)

    def should_block(self, url: str, resource_type: str) -> bool:
        if resource_type in self.blocked_types:
            return True
        return any(pattern in url for pattern in self.blocked_patterns)


@dataclass
class RenderResult:
    """Outcome of a browser render; ``error`` is set on failure."""
    url: str
    html: str = ''
    title: str = ''
    error: Optional[str] = None
    render_time: float = 0.0


@dataclass
class PooledBrowser:
    """A browser process and its open-context bookkeeping."""
    browser: Any
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    open_contexts: int = 0
    last_used: float = 0.0


class BrowserPool:
    """
    Bounded pool of headless browsers.

    ``render`` never raises: launch failures, navigation timeouts and HTTP error
    statuses come back as ``RenderResult.error``. When every browser is at its
    context cap and the pool is full, callers wait on a condition that is
    notified whenever a context is released or a browser is launched.
    """

    def __init__(self, max_browsers: int = 3, max_contexts_per_browser: int = 5,
                 browser_timeout: float = 300.0, sweep_interval: float = 30.0,
                 user_agent: str = BROWSER_USER_AGENT,
                 launcher: Optional[Callable[[], Awaitable[Any]]] = None,
                 blocker: Optional[ResourceBlocker] = None,
                 clock: Callable[[], float] = time.monotonic,
                 close_timeout: float = CLOSE_TIMEOUT,
                 monitor: Optional[CrawlerMonitor] = None):
        self.max_browsers = max_browsers
        self.max_contexts_per_browser = max_contexts_per_browser
        self.browser_timeout = browser_timeout
        self.sweep_interval = sweep_interval
        self.user_agent = user_agent
        self.blocker = blocker or DefaultResourceBlocker()
        self.clock = clock
        self.close_timeout = close_timeout
        self.monitor = monitor
        self.logger = logging.getLogger(__name__)

        self._launcher = launcher or self._launch_chromium
        self._playwright = None
        self._browsers: Dict[str, PooledBrowser] = {}
        self._launching = 0
        self._condition = asyncio.Condition()
        self._sweep_task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the idle-browser sweep."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            self.logger.info("Browser pool sweep started")

    async def render(self, url: str, timeout: float = 30.0, wait_until: str = 'networkidle',
                     block_resources: bool = True,
                     blocker: Optional[ResourceBlocker] = None) -> RenderResult:
        """
        Render ``url`` in a fresh context of a pooled browser.

        Args:
            url: Page to render
            timeout: Navigation timeout in seconds
            wait_until: Playwright load state to wait for
            block_resources: Abort sub-requests the blocker rejects
            blocker: Overrides the pool's resource blocker for this render

        Returns:
            RenderResult with the page HTML and title, or ``error`` set
        """
        start_time = time.time()

        try:
            handle = await self._acquire()
        except Exception as e:
            self.logger.error(f"Browser launch failed for {url}: {e}")
            return RenderResult(url=url, error=f"Browser launch failed: {e}",
                                render_time=time.time() - start_time)

        active_blocker = (blocker or self.blocker) if block_resources else None
        opened: Dict[str, Any] = {}
        try:
            result = await asyncio.wait_for(
                self._open_and_navigate(handle, url, timeout, wait_until, active_blocker, opened),
                timeout=timeout + TIMEOUT_GRACE
            )
            result.render_time = time.time() - start_time
            return result

        except asyncio.TimeoutError:
            self.logger.warning(f"Render timed out after {timeout}s: {url}")
            return RenderResult(url=url, error=f"Timeout after {timeout}s",
                                render_time=time.time() - start_time)

        except Exception as e:
            self.logger.error(f"Browser pool render error for {url}: {e}")
            return RenderResult(url=url, error=str(e) or type(e).__name__,
                                render_time=time.time() - start_time)

        finally:
            await self._close_quietly(opened.get('page'), opened.get('context'))
            await self._release(handle)
            if self.monitor:
                self.monitor.record_render_time(time.time() - start_time)

    async def _open_and_navigate(self, handle: PooledBrowser, url: str, timeout: float,
                                 wait_until: str, blocker: Optional[ResourceBlocker],
                                 opened: Dict[str, Any]) -> RenderResult:
        # ``opened`` lets the caller close whatever was created before a timeout
        opened['context'] = await handle.browser.new_context(user_agent=self.user_agent)
        page = opened['page'] = await opened['context'].new_page()

        if blocker is not None:
            await self._setup_resource_blocking(page, blocker)

        return await self._navigate(page, url, timeout, wait_until)

    async def _navigate(self, page, url: str, timeout: float, wait_until: str) -> RenderResult:
        response = await page.goto(url, wait_until=wait_until, timeout=timeout * 1000)

        if response is None:
            return RenderResult(url=url, error="No response received")

        if response.status >= 400:
            return RenderResult(url=url, error=f"HTTP {response.status}")

        html = await page.content()
        title = await page.title()
        return RenderResult(url=url, html=html, title=title)

    async def _setup_resource_blocking(self, page, blocker: ResourceBlocker):
        async def handle_route(route):
            request = route.request
            if blocker.should_block(request.url, request.resource_type):
                await route.abort()
            else:
                await route.continue_()

        await page.route('**/*', handle_route)

    async def _close_quietly(self, page, context):
        for resource in (page, context):
            if resource is None:
                continue
            try:
                await asyncio.wait_for(resource.close(), timeout=self.close_timeout)
            except Exception as e:
                self.logger.debug(f"Ignoring error while closing {type(resource).__name__}: {e}")

    async def _acquire(self) -> PooledBrowser:
        """Check out a context slot, launching a browser when the pool has room."""
        async with self._condition:
            while True:
                handle = self._find_available()
                if handle is not None:
                    handle.open_contexts += 1
                    handle.last_used = self.clock()
                    self.logger.debug(f"Reusing browser {handle.id} "
                                      f"({handle.open_contexts}/{self.max_contexts_per_browser} contexts)")
                    return handle

                if len(self._browsers) + self._launching < self.max_browsers:
                    self._launching += 1
                    break

                self.logger.debug("All browsers busy, waiting for availability")
                await self._condition.wait()

        try:
            browser = await self._launcher()
        except BaseException:
            async with self._condition:
                self._launching -= 1
                self._condition.notify_all()
            raise

        async with self._condition:
            self._launching -= 1
            handle = PooledBrowser(browser=browser, open_contexts=1, last_used=self.clock())
            self._browsers[handle.id] = handle
            # Spare slots on the new browser may satisfy waiters
            self._condition.notify_all()

        self.logger.info(f"Created new browser {handle.id} "
                         f"({len(self._browsers)}/{self.max_browsers} browsers)")
        self._update_gauges()
        return handle

    def _find_available(self) -> Optional[PooledBrowser]:
        for handle in self._browsers.values():
            if handle.open_contexts < self.max_contexts_per_browser:
                return handle
        return None

    async def _release(self, handle: PooledBrowser):
        async with self._condition:
            handle.open_contexts = max(0, handle.open_contexts - 1)
            handle.last_used = self.clock()
            self._condition.notify_all()
        self._update_gauges()

    async def _launch_chromium(self):
        from playwright.async_api import async_playwright

        if self._playwright is None:
            self._playwright = await async_playwright().start()
        return await self._playwright.chromium.launch(headless=True, args=CHROMIUM_ARGS)

    async def evict_idle(self) -> int:
        """Close browsers with no open contexts that have idled past ``browser_timeout``."""
        now = self.clock()
        async with self._condition:
            idle = [
                handle for handle in self._browsers.values()
                if handle.open_contexts == 0 and now - handle.last_used > self.browser_timeout
            ]
            for handle in idle:
                del self._browsers[handle.id]
            if idle:
                # Freed pool capacity lets waiters launch
                self._condition.notify_all()

        for handle in idle:
            self.logger.info(f"Removing idle browser {handle.id}")
            await self._close_browser(handle)

        if self._browsers:
            stats = self.get_stats()
            self.logger.info(f"Active: {stats['browsers']} browsers, {stats['contexts']} total contexts")

        self._update_gauges()
        return len(idle)

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.evict_idle()
            except Exception as e:
                self.logger.error(f"Error in browser pool sweep: {e}")

    async def _close_browser(self, handle: PooledBrowser):
        try:
            await asyncio.wait_for(handle.browser.close(), timeout=self.close_timeout)
        except Exception as e:
            self.logger.warning(f"Error closing browser {handle.id}: {e}")

    async def shutdown(self):
        """Close all browsers and clear pool state."""
        self.logger.info("Shutting down browser pool...")

        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None

        async with self._condition:
            handles = list(self._browsers.values())
            self._browsers.clear()
            self._condition.notify_all()

        for handle in handles:
            await self._close_browser(handle)

        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

        self._update_gauges()

    def _update_gauges(self):
        if self.monitor:
            stats = self.get_stats()
            self.monitor.update_pool_stats(stats['browsers'], stats['contexts'])

    def get_stats(self) -> Dict[str, Any]:
        """Get pool statistics."""
        details: List[Dict[str, Any]] = [
            {'id': handle.id, 'contexts': handle.open_contexts, 'last_used': handle.last_used}
            for handle in self._browsers.values()
        ]
        return {
            'browsers': len(self._browsers),
            'max_browsers': self.max_browsers,
            'contexts': sum(handle.open_contexts for handle in self._browsers.values()),
            'max_contexts_per_browser': self.max_contexts_per_browser,
            'launching': self._launching,
            'details': details,
        }
