import pytest

from sitecrawl.crawler.parser import ContentExtractor, DEFAULT_TITLE, MAX_CONTENT_LENGTH

from conftest import LONG_TEXT, article_html


@pytest.fixture
def extractor():
    return ContentExtractor()


def test_title_prefers_title_tag(extractor):
    html = "<html><head><title> Home  Page </title></head><body><h1>Heading</h1></body></html>"
    assert extractor.extract("https://example.com", html).title == "Home Page"


def test_title_falls_back_to_h1(extractor):
    html = "<html><body><h1>Only <b>heading</b></h1><p>text</p></body></html>"
    assert extractor.extract("https://example.com", html).title == "Only heading"


def test_title_placeholder(extractor):
    html = "<html><body><p>no headings here</p></body></html>"
    assert extractor.extract("https://example.com", html).title == DEFAULT_TITLE


def test_smart_mode_uses_main_content(extractor):
    html = article_html("T", LONG_TEXT)
    html = html.replace("<nav>", "<nav>Navigation menu ")

    content = extractor.extract("https://example.com", html).content

    assert content.startswith("Lorem ipsum")
    assert "Navigation menu" not in content


def test_smart_mode_skips_short_containers():
    html = (
        "<html><body><main>Too short</main>"
        f"<article>{LONG_TEXT}</article></body></html>"
    )
    content = ContentExtractor().extract("https://example.com", html).content
    assert content.startswith("Lorem ipsum")
    assert "Too short" not in content


def test_smart_mode_falls_back_to_body():
    html = "<html><body><header>Header</header><main>Tiny</main><footer>Footer</footer></body></html>"
    content = ContentExtractor().extract("https://example.com", html).content
    assert content == "Header Tiny Footer"


def test_full_page_mode_uses_body():
    html = article_html("T", LONG_TEXT).replace("<nav>", "<nav>Navigation menu ")
    content = ContentExtractor(full_page_content=True).extract("https://example.com", html).content
    assert content.startswith("Navigation menu")


def test_scripts_styles_and_comments_are_removed(extractor):
    html = (
        "<html><head><style>body { color: red }</style></head><body>"
        "<script>var x = 1;</script><noscript>Enable JS</noscript>"
        "<!-- hidden comment --><p>Visible   text</p></body></html>"
    )
    content = extractor.extract("https://example.com", html).content
    assert content == "Visible text"


def test_content_is_capped(extractor):
    html = f"<html><body><main>{'word ' * 20000}</main></body></html>"
    content = extractor.extract("https://example.com", html).content
    assert len(content) == MAX_CONTENT_LENGTH


def test_links_are_absolute_and_filtered(extractor):
    html = article_html("T", "text", links=(
        "/about",
        "contact#form",
        "https://Other.COM/page",
        "mailto:hi@example.com",
        "tel:+123",
        "javascript:void(0)",
        "#top",
        "ftp://example.com/file",
        "/about",
    ))

    links = extractor.extract("https://example.com/blog/", html).links

    assert links == [
        "https://example.com/about",
        "https://example.com/blog/contact",
        "https://other.com/page",
    ]


def test_images_are_resolved(extractor):
    html = article_html("T", "text", images=("/img/a.png", "https://cdn.example.com/b.jpg",
                                             "/img/a.png", "data:image/png;base64,AAAA"))

    images = extractor.extract("https://example.com/", html).images

    assert images == ["https://example.com/img/a.png", "https://cdn.example.com/b.jpg"]


def test_empty_html_gives_empty_result(extractor):
    extracted = extractor.extract("https://example.com", "")
    assert extracted.title == DEFAULT_TITLE
    assert extracted.content == ''
    assert extracted.links == []
    assert extracted.images == []


def test_resolve_url(extractor):
    assert extractor.resolve_url("../x?q=1#frag", "https://EXAMPLE.com/a/b/") == "https://example.com/a/x?q=1"
    assert extractor.resolve_url("   ", "https://example.com") is None
