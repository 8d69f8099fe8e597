import pytest

from sitecrawl.crawler.url_frontier import (
    SubpageFilter, URLFrontier, is_valid_start_url, normalize_url, registrable_domain
)


@pytest.mark.parametrize("raw,expected", [
    ("https://Example.COM/", "https://example.com"),
    ("HTTPS://example.com/docs/#intro", "https://example.com/docs"),
    ("https://example.com/a?b=1", "https://example.com/a?b=1"),
    ("  https://example.com/path  ", "https://example.com/path"),
])
def test_normalize_url(raw, expected):
    assert normalize_url(raw) == expected


@pytest.mark.parametrize("url,valid", [
    ("https://example.com", True),
    ("http://localhost:8080/x", True),
    ("ftp://example.com", False),
    ("example.com", False),
    ("", False),
    (None, False),
])
def test_is_valid_start_url(url, valid):
    assert is_valid_start_url(url) is valid


def test_registrable_domain_strips_www():
    assert registrable_domain("https://WWW.Example.com/x") == "example.com"
    assert registrable_domain("https://blog.example.com") == "blog.example.com"


def test_frontier_is_fifo():
    frontier = URLFrontier()
    frontier.add("https://example.com/a")
    frontier.add("https://example.com/b", depth=1, parent_url="https://example.com/a")

    first = frontier.pop()
    second = frontier.pop()

    assert first.url == "https://example.com/a"
    assert (second.url, second.depth, second.parent_url) == (
        "https://example.com/b", 1, "https://example.com/a")
    assert frontier.pop() is None
    assert frontier.is_empty()


def test_frontier_rejects_queued_and_visited_urls():
    frontier = URLFrontier()

    assert frontier.add("https://example.com/a/")
    assert not frontier.add("https://example.com/a#section")
    assert len(frontier) == 1

    task = frontier.pop()
    assert frontier.mark_visited(task.url)
    assert not frontier.mark_visited(task.url)
    assert not frontier.add("https://example.com/a")
    assert frontier.is_visited("https://EXAMPLE.com/a/")
    assert frontier.get_stats() == {'total_queued': 0, 'total_visited': 1}


@pytest.mark.parametrize("url,crawlable", [
    ("https://example.com/about", True),
    ("https://www.example.com/team", True),
    ("https://other.com/about", False),
    ("https://blog.example.com/post", False),
    ("https://example.com/report.pdf", False),
    ("https://example.com/logo.PNG", False),
    ("https://example.com/api/users", False),
    ("https://example.com/static", False),
    ("https://example.com/wp-admin/options.php", False),
    ("https://example.com/login", False),
    ("https://example.com/login/reset", False),
    ("https://example.com/logins-explained", True),
    ("mailto:hi@example.com", False),
])
def test_subpage_filter(url, crawlable):
    assert SubpageFilter("https://example.com").is_crawlable(url) is crawlable


def test_filter_normalizes_and_skips_visited():
    frontier = URLFrontier()
    frontier.mark_visited("https://example.com/seen")
    subpages = SubpageFilter("https://example.com")

    selected = subpages.filter([
        "https://example.com/seen/",
        "https://example.com/new/",
        "https://example.com/new#again",
        "https://elsewhere.org/",
    ], frontier)

    assert selected == ["https://example.com/new"]
