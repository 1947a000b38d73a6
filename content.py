#!/usr/bin/env python3
"""
Full-text article extraction.

Fetches an article page and runs it through readability to get the main
content, for feeds whose subscription asks for full content. Every failure
(timeout, HTTP error, unparseable page) comes back as a failed
``ExtractionResult``; nothing raises past ``ContentExtractor.extract``.
"""

from asyncio import TimeoutError, get_running_loop, sleep as asyncio_sleep, wait_for
from dataclasses import dataclass
from functools import partial
from typing import Awaitable, Callable, Iterable, Optional

from aiohttp import ClientError, ClientSession, ClientTimeout
from bs4 import BeautifulSoup
from readability import Document

from config import config, get_logger
from telemetry import trace_span
from utils import estimate_reading_time, html_to_text, sanitize_html

logger = get_logger("content")


@dataclass
class ExtractionResult:
    """Outcome of one extraction; ``ttr`` is only set when it could be estimated."""

    success: bool
    content: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    ttr: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str) -> "ExtractionResult":
        return cls(success=False, error=error)


@dataclass(frozen=True)
class ContentRequest:
    """A stored item waiting for its full content."""

    id: int
    link: str


@dataclass
class ContentFetchStats:
    fetched: int = 0
    failed: int = 0


def _meta_description(html_content: str) -> Optional[str]:
    soup = BeautifulSoup(html_content, 'html.parser')
    for attrs in ({'name': 'description'}, {'property': 'og:description'}):
        tag = soup.find('meta', attrs=attrs)
        if tag and tag.get('content', '').strip():
            return tag['content'].strip()
    return None


def parse_article(html_content: str, url: str) -> ExtractionResult:
    """Run readability over a page and package the result (CPU-bound, run in an executor)."""
    document = Document(html_content, url=url)
    content = sanitize_html(document.summary(html_partial=True), base_url=url)
    if not html_to_text(content):
        return ExtractionResult.failure("Could not extract content from page")
    return ExtractionResult(
        success=True,
        content=content,
        title=document.short_title() or None,
        description=_meta_description(html_content),
        ttr=estimate_reading_time(content),
    )


class ContentExtractor:
    """Fetches article pages and extracts their readable content."""

    def __init__(self, session: Optional[ClientSession] = None, timeout: Optional[float] = None) -> None:
        self.session = session
        self.timeout = timeout if timeout is not None else config.CONTENT_FETCH_TIMEOUT

    @trace_span(
        "extract_article",
        tracer_name="content",
        attr_from_args=lambda self, url: {"entry.url": url or ""},
    )
    async def extract(self, url: Optional[str]) -> ExtractionResult:
        """Extract the readable content of ``url``, bounded by the configured timeout."""
        if not url:
            return ExtractionResult.failure("URL is required")
        try:
            return await wait_for(self._extract(url), timeout=self.timeout)
        except TimeoutError:
            logger.warning(f"Timed out extracting content from {url} after {self.timeout}s")
            return ExtractionResult.failure(f"Timed out after {self.timeout}s")
        except ClientError as e:
            logger.warning(f"Network error extracting content from {url}: {e}")
            return ExtractionResult.failure(f"Network error: {e}")
        except Exception as e:
            # readability/lxml raise a variety of parser errors on hostile markup
            logger.error(f"Error extracting article from {url}: {e}")
            return ExtractionResult.failure(str(e) or e.__class__.__name__)

    async def _extract(self, url: str) -> ExtractionResult:
        logger.info(f"Fetching original content from: {url}")
        if self.session is not None:
            html_content, error = await self._download(self.session, url)
        else:
            async with ClientSession(timeout=ClientTimeout(total=self.timeout)) as session:
                html_content, error = await self._download(session, url)
        if error:
            return ExtractionResult.failure(error)
        loop = get_running_loop()
        return await loop.run_in_executor(None, partial(parse_article, html_content, url))

    async def _download(self, session: ClientSession, url: str) -> tuple[str, Optional[str]]:
        async with session.get(
            url,
            headers={'User-Agent': config.USER_AGENT},
            max_redirects=config.MAX_REDIRECTS,
        ) as response:
            if response.status != 200:
                logger.warning(f"Error fetching original content from {url}: HTTP {response.status}")
                return "", f"HTTP {response.status}"
            return await response.text(errors='replace'), None


async def fetch_content_for_items(
    items: Iterable[ContentRequest],
    save: Callable[[int, str, Optional[int]], Awaitable[object]],
    extract: Callable[[str], Awaitable[ExtractionResult]],
    delay: Optional[float] = None,
    sleep: Callable[[float], Awaitable[object]] = asyncio_sleep,
) -> ContentFetchStats:
    """Extract and store full content for queued items, one at a time.

    Args:
        items: Queued ``ContentRequest`` values.
        save: Coroutine persisting ``(item_id, content, ttr)``.
        extract: Coroutine returning an ``ExtractionResult`` for a URL.
        delay: Pause between items in seconds (defaults to CONTENT_FETCH_DELAY_MS).
        sleep: Injectable sleep, so tests do not wait on the wall clock.
    """
    if delay is None:
        delay = config.CONTENT_FETCH_DELAY_MS / 1000
    stats = ContentFetchStats()

    for index, item in enumerate(items):
        if index and delay > 0:
            await sleep(delay)

        try:
            result = await extract(item.link)
        except Exception as e:
            logger.error(f"Content extraction crashed for item {item.id}: {e}")
            result = ExtractionResult.failure(str(e))

        if not (result.success and result.content):
            logger.info(f"No content for item {item.id} ({item.link}): {result.error}")
            stats.failed += 1
            continue

        try:
            await save(item.id, result.content, result.ttr)
            stats.fetched += 1
        except Exception as e:
            logger.error(f"Failed to save content for item {item.id}: {e}")
            stats.failed += 1

    return stats
