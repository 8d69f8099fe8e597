"""
Shared fakes for crawler tests.
"""

import asyncio
from typing import Dict, List, Optional, Tuple

import pytest

from sitecrawl.crawler.browser_pool import RenderResult
from sitecrawl.crawler.fetcher import FetchResult
from sitecrawl.storage.render_cache import CacheBackend, CacheEntry


def article_html(title: str, body_text: str, links: Tuple[str, ...] = (),
                 images: Tuple[str, ...] = ()) -> str:
    anchors = ''.join(f'<a href="{href}">link</a>' for href in links)
    imgs = ''.join(f'<img src="{src}">' for src in images)
    return (
        f"<html><head><title>{title}</title></head>"
        f"<body><nav>{anchors}</nav><main><p>{body_text}</p>{imgs}</main></body></html>"
    )


LONG_TEXT = "Lorem ipsum dolor sit amet, consectetur adipiscing elit. " * 20
SHORT_TEXT = "Loading..."


class FakeClock:
    """Manually advanced clock with a matching async sleep."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeFetcher:
    """Serves canned pages: url -> (status, html, content_type)."""

    def __init__(self, pages: Dict[str, Tuple[int, str, str]], clock: Optional[FakeClock] = None):
        self.pages = pages
        self.clock = clock
        self.calls: List[str] = []
        self.call_times: List[float] = []

    async def fetch(self, url: str) -> FetchResult:
        self.calls.append(url)
        if self.clock is not None:
            self.call_times.append(self.clock())

        if url not in self.pages:
            return FetchResult(url=url, status_code=404, error="HTTP 404")

        status, html, content_type = self.pages[url]
        if not 200 <= status < 300:
            return FetchResult(url=url, status_code=status, error=f"HTTP {status}")
        if 'text/html' not in content_type:
            return FetchResult(url=url, status_code=status, error="Not an HTML page")
        return FetchResult(url=url, status_code=status, html=html, final_url=url,
                           content_type=content_type)

    async def close(self):
        pass


class FakeRenderer:
    """Returns canned render results, or an HTTP 404 error for unknown URLs."""

    def __init__(self, pages: Dict[str, RenderResult]):
        self.pages = pages
        self.pool = None
        self.calls: List[str] = []

    async def render(self, url: str) -> RenderResult:
        self.calls.append(url)
        return self.pages.get(url, RenderResult(url=url, error="HTTP 404"))


class MemoryCacheBackend(CacheBackend):
    """Dictionary-backed persistent tier with switchable failures."""

    def __init__(self):
        self.entries: Dict[str, CacheEntry] = {}
        self.fail_reads = False
        self.fail_writes = False
        self.closed = False

    async def get(self, url):
        if self.fail_reads:
            raise ConnectionError("backend down")
        return self.entries.get(url)

    async def set(self, entry):
        await asyncio.sleep(0)
        if self.fail_writes:
            raise ConnectionError("backend down")
        self.entries[entry.url] = entry

    async def delete(self, url):
        self.entries.pop(url, None)

    async def clear(self):
        self.entries.clear()

    async def close(self):
        self.closed = True


# Browser fakes mirroring the parts of the Playwright async API the pool uses.

class FakeResponse:
    def __init__(self, status: int):
        self.status = status


class FakeRequest:
    def __init__(self, url: str, resource_type: str):
        self.url = url
        self.resource_type = resource_type


class FakeRoute:
    def __init__(self, url: str, resource_type: str):
        self.request = FakeRequest(url, resource_type)
        self.outcome = None

    async def abort(self):
        self.outcome = 'aborted'

    async def continue_(self):
        self.outcome = 'continued'


class FakePage:
    def __init__(self, site: 'FakeSite'):
        self.site = site
        self.route_handler = None
        self.closed = False

    async def route(self, pattern, handler):
        self.route_handler = handler

    async def goto(self, url, wait_until=None, timeout=None):
        self.site.navigations.append((url, wait_until, timeout))
        if self.site.hang:
            await asyncio.sleep(3600)
        await asyncio.sleep(self.site.delay)
        if self.site.no_response:
            return None
        return FakeResponse(self.site.status)

    async def content(self):
        return self.site.html

    async def title(self):
        return self.site.title

    async def close(self):
        if self.site.close_hang:
            await asyncio.sleep(3600)
        self.closed = True


class FakeContext:
    def __init__(self, browser: 'FakeBrowser'):
        self.browser = browser
        self.closed = False

    async def new_page(self):
        page = FakePage(self.browser.site)
        self.browser.pages.append(page)
        return page

    async def close(self):
        self.closed = True
        self.browser.open_contexts -= 1


class FakeBrowser:
    def __init__(self, site: 'FakeSite'):
        self.site = site
        self.open_contexts = 0
        self.max_open_contexts = 0
        self.contexts: List[FakeContext] = []
        self.pages: List[FakePage] = []
        self.closed = False

    async def new_context(self, user_agent=None):
        if self.site.context_hang:
            await asyncio.sleep(3600)
        self.open_contexts += 1
        self.max_open_contexts = max(self.max_open_contexts, self.open_contexts)
        context = FakeContext(self)
        self.contexts.append(context)
        return context

    async def close(self):
        self.closed = True


class FakeSite:
    """Behavior shared by every fake page."""

    def __init__(self, html: str = "<html><body>rendered</body></html>", title: str = "Rendered",
                 status: int = 200, delay: float = 0.0):
        self.html = html
        self.title = title
        self.status = status
        self.delay = delay
        self.hang = False
        self.context_hang = False
        self.close_hang = False
        self.no_response = False
        self.navigations: List[tuple] = []


class FakeLauncher:
    """Async browser factory counting launches."""

    def __init__(self, site: FakeSite, fail: bool = False):
        self.site = site
        self.fail = fail
        self.browsers: List[FakeBrowser] = []

    async def __call__(self):
        await asyncio.sleep(0)
        if self.fail:
            raise RuntimeError("chromium not installed")
        browser = FakeBrowser(self.site)
        self.browsers.append(browser)
        return browser


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_site():
    return FakeSite()


@pytest.fixture
def fake_launcher(fake_site):
    return FakeLauncher(fake_site)
