import asyncio

import pytest

from content import (
    ContentExtractor,
    ContentRequest,
    ExtractionResult,
    fetch_content_for_items,
    parse_article,
)

ARTICLE_HTML = """
<html>
  <head>
    <title>Example Article</title>
    <meta name="description" content="A short summary of the article.">
  </head>
  <body>
    <nav><a href="/">Home</a> | <a href="/about">About</a></nav>
    <article>
      <h1>Example Article</h1>
      <p>The first paragraph of the article talks at some length about feed readers,
      how they poll sources on a schedule, and why people still rely on them today.</p>
      <p>The second paragraph continues the discussion, adding more detail about parsing
      heterogeneous RSS and Atom documents, normalizing dates, and deduplicating entries.</p>
      <p>The third paragraph wraps things up with a few thoughts on full-text extraction,
      retention windows, keyword filters and the value of a quiet, sequential refresh loop.</p>
    </article>
    <footer>Copyright notice</footer>
  </body>
</html>
"""


@pytest.mark.asyncio
async def test_batch_attempts_every_item_and_counts_failures():
    attempted, saved, sleeps = [], [], []

    async def extract(url):
        attempted.append(url)
        if url.endswith("/2"):
            return ExtractionResult.failure("Timed out after 15s")
        return ExtractionResult(success=True, content=f"<p>{url}</p>", ttr=60)

    async def save(item_id, content, ttr):
        saved.append((item_id, ttr))

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    items = [ContentRequest(id=i, link=f"https://example.com/{i}") for i in (1, 2, 3)]
    stats = await fetch_content_for_items(items, save, extract, delay=0.5, sleep=fake_sleep)

    assert (stats.fetched, stats.failed) == (2, 1)
    assert attempted == [item.link for item in items]
    assert saved == [(1, 60), (3, 60)]
    # Pauses only separate items
    assert sleeps == [0.5, 0.5]


@pytest.mark.asyncio
async def test_batch_counts_crashing_extract_and_failing_save():
    async def extract(url):
        if url.endswith("/1"):
            raise RuntimeError("parser exploded")
        return ExtractionResult(success=True, content="<p>ok</p>")

    async def save(item_id, content, ttr):
        if item_id == 2:
            raise OSError("disk full")

    async def no_sleep(seconds):
        return None

    items = [ContentRequest(id=i, link=f"https://example.com/{i}") for i in (1, 2, 3)]
    stats = await fetch_content_for_items(items, save, extract, delay=0.5, sleep=no_sleep)

    assert (stats.fetched, stats.failed) == (1, 2)


@pytest.mark.asyncio
async def test_extract_requires_url():
    result = await ContentExtractor().extract(None)
    assert result.success is False
    assert result.error == "URL is required"


class SlowExtractor(ContentExtractor):
    async def _extract(self, url):
        await asyncio.sleep(5)
        return ExtractionResult(success=True, content="<p>late</p>")


@pytest.mark.asyncio
async def test_extract_timeout_becomes_failure():
    result = await SlowExtractor(timeout=0.05).extract("https://example.com/slow")
    assert result.success is False
    assert result.error.startswith("Timed out")


def test_parse_article_extracts_main_content():
    result = parse_article(ARTICLE_HTML, "https://example.com/posts/1")

    assert result.success is True
    assert "second paragraph" in result.content
    assert "<script" not in result.content
    assert result.title == "Example Article"
    assert result.description == "A short summary of the article."
    assert isinstance(result.ttr, int) and result.ttr > 0
