import pytest

from utils import RetryHelper, estimate_reading_time, favicon_url, html_to_text, sanitize_html, validate_url


@pytest.mark.parametrize("url, expected", [
    ("https://example.com/feed.xml", True),
    ("http://example.com", True),
    ("  https://example.com/rss  ", True),
    ("ftp://example.com/feed.xml", False),
    ("example.com/feed.xml", False),
    ("", False),
    (None, False),
])
def test_validate_url(url, expected):
    assert validate_url(url) is expected


def test_favicon_url():
    assert favicon_url("https://blog.example.com/posts/feed.xml?x=1") == "https://blog.example.com/favicon.ico"
    assert favicon_url("not a url") is None


def test_sanitize_html_resolves_relative_urls_with_base():
    html = '<p><a href="details.html">Read more</a><img src="../img/photo.png" alt="Photo"/></p>'
    cleaned = sanitize_html(html, base_url="https://example.com/articles/2025/")

    assert 'href="https://example.com/articles/2025/details.html"' in cleaned
    assert 'src="https://example.com/articles/img/photo.png"' in cleaned


def test_sanitize_html_relative_urls_without_base_neutralized():
    html = '<p><a href="details.html">Read more</a><img src="img/photo.png" alt="Photo"/></p>'
    cleaned = sanitize_html(html)

    assert 'href="#"' in cleaned
    assert "img/photo.png" not in cleaned


def test_sanitize_html_strips_scripts_and_handlers():
    html = '<div onclick="steal()"><script>alert(1)</script><a href="javascript:void(0)">x</a>Text</div>'
    cleaned = sanitize_html(html, base_url="https://example.com/")

    assert "<script" not in cleaned
    assert "onclick" not in cleaned
    assert "javascript:" not in cleaned
    assert "Text" in cleaned


def test_html_to_text():
    assert html_to_text("<p>One</p>\n<p>Two   three</p>") == "One Two three"
    assert html_to_text(None) == ""


def test_estimate_reading_time():
    assert estimate_reading_time("<p>" + "word " * 600 + "</p>") == 120
    assert estimate_reading_time("<p></p>") is None


def test_retry_helper_backoff_is_capped():
    helper = RetryHelper(max_retries=5, base_delay=1.0, max_delay=5.0)
    assert [helper.calculate_delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]
