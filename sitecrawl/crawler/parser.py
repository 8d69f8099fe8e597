"""
HTML content extraction: title, readable text, links and images.
"""

import re
import logging
from typing import List, Optional
from urllib.parse import urljoin, urlparse, urlunparse
from dataclasses import dataclass, field
from bs4 import BeautifulSoup, Comment


DEFAULT_TITLE = "Untitled"
MAX_CONTENT_LENGTH = 50000
MIN_SECTION_LENGTH = 100

MAIN_CONTENT_SELECTORS = [
    'main',
    'article',
    '[role="main"]',
    '.content',
    '#content',
    '.main-content',
    '#main-content',
]

IGNORED_HREF_PREFIXES = ('mailto:', 'tel:', 'javascript:', 'data:', '#')


@dataclass
class ExtractedContent:
    """Container for extracted page content."""
    title: str = DEFAULT_TITLE
    content: str = ''
    links: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)


class ContentExtractor:
    """
    Extracts clean text, links and images from HTML.

    In the default "smart" mode the first main-content container holding more than
    100 characters of text wins, falling back to ``<body>``. With
    ``full_page_content`` the whole body is used.
    """

    def __init__(self, full_page_content: bool = False,
                 max_content_length: int = MAX_CONTENT_LENGTH):
        self.full_page_content = full_page_content
        self.max_content_length = max_content_length
        self.logger = logging.getLogger(__name__)

        self.whitespace_pattern = re.compile(r'\s+')

    def extract(self, url: str, html_content: str) -> ExtractedContent:
        """
        Extract structured content from a page.

        Args:
            url: The URL of the page, used to resolve relative links
            html_content: Raw HTML content

        Returns:
            ExtractedContent; empty when the HTML cannot be parsed
        """
        if not html_content:
            return ExtractedContent()

        try:
            soup = BeautifulSoup(html_content, 'lxml')

            for element in soup(["script", "style", "noscript"]):
                element.decompose()

            for comment in soup.find_all(string=lambda text: isinstance(text, Comment)):
                comment.extract()

            extracted = ExtractedContent(
                title=self._extract_title(soup),
                content=self._extract_main_content(soup),
                links=self._extract_links(soup, url),
                images=self._extract_images(soup, url),
            )

            self.logger.debug(f"Extracted {len(extracted.content)} chars and "
                              f"{len(extracted.links)} links from {url}")
            return extracted

        except Exception as e:
            self.logger.error(f"Error extracting content from {url}: {e}")
            return ExtractedContent()

    def _extract_title(self, soup: BeautifulSoup) -> str:
        """Page title: <title>, then the first <h1>, then a placeholder."""
        for tag_name in ('title', 'h1'):
            tag = soup.find(tag_name)
            if tag:
                title = self._clean_text(tag.get_text(separator=' '))
                if title:
                    return title
        return DEFAULT_TITLE

    def _extract_main_content(self, soup: BeautifulSoup) -> str:
        """Extract main text content."""
        content = ''

        if not self.full_page_content:
            for selector in MAIN_CONTENT_SELECTORS:
                element = soup.select_one(selector)
                if element is None:
                    continue
                content = self._clean_text(element.get_text(separator=' '))
                if len(content) > MIN_SECTION_LENGTH:
                    break
            else:
                content = ''

        if not content:
            body = soup.find('body') or soup
            content = self._clean_text(body.get_text(separator=' '))

        return content[:self.max_content_length]

    def _extract_links(self, soup: BeautifulSoup, base_url: str) -> List[str]:
        """Extract absolute http(s) links, de-duplicated in document order."""
        links = {}

        for link in soup.find_all('a', href=True):
            absolute_url = self.resolve_url(link['href'], base_url)
            if absolute_url:
                links[absolute_url] = None

        return list(links)

    def _extract_images(self, soup: BeautifulSoup, base_url: str) -> List[str]:
        """Extract image URLs."""
        images = {}

        for img in soup.find_all('img', src=True):
            absolute_url = self.resolve_url(img['src'], base_url)
            if absolute_url:
                images[absolute_url] = None

        return list(images)

    def resolve_url(self, href: str, base_url: str) -> Optional[str]:
        """Resolve ``href`` against ``base_url``; None for non-http(s) targets."""
        href = (href or '').strip()
        if not href or href.lower().startswith(IGNORED_HREF_PREFIXES):
            return None

        try:
            parsed = urlparse(urljoin(base_url, href))
        except ValueError:
            return None

        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            return None

        return urlunparse((
            parsed.scheme,
            parsed.netloc.lower(),
            parsed.path,
            parsed.params,
            parsed.query,
            ''  # Remove fragment
        ))

    def _clean_text(self, text: str) -> str:
        """Collapse whitespace runs to single spaces."""
        if not text:
            return ""
        return self.whitespace_pattern.sub(' ', text).strip()
