#!/usr/bin/env python3
"""
RSS/Atom feed fetcher and refresh orchestrator.

This module downloads feeds, parses them with feedparser, hands the entries
to the reconciler and, for feeds that ask for it, pulls full article content
for the items that were stored. Feeds are refreshed one at a time; a failure
in one feed is recorded in its outcome and never stops the others.
"""

from asyncio import get_running_loop, sleep, wait_for, TimeoutError
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional
import traceback

import feedparser
from aiohttp import ClientError, ClientSession, ClientTimeout, InvalidURL, TooManyRedirects

from config import config, get_logger
from content import ContentExtractor, ExtractionResult, fetch_content_for_items
from errors import FeedFetchError, RefreshInProgressError
from models import DatabaseQueue
from reconciler import IngestionOutcome, reconcile, retention_cutoff
from telemetry import annotate_current_span, init_telemetry, trace_span
from utils import RetryHelper

# Module-specific logger
logger = get_logger("fetcher")
init_telemetry("feed-reader-fetcher")

# HTTP status codes
HTTP_OK = 200
# Statuses worth another attempt; anything else non-200 fails straight away
RETRYABLE_STATUSES = {429, 500, 502, 503, 504}
# Client errors that another attempt cannot fix
PERMANENT_CLIENT_ERRORS = (InvalidURL, TooManyRedirects)


@dataclass
class FeedFetchResult:
    """Outcome of downloading and parsing one feed document."""

    success: bool
    items: List[Any] = field(default_factory=list)
    title: Optional[str] = None
    error: Optional[str] = None


def parse_feed_document(content: bytes, url: str) -> FeedFetchResult:
    """Parse a feed document (blocking, run in an executor)."""
    feed = feedparser.parse(
        content,
        sanitize_html=True,
        resolve_relative_uris=True,
        response_headers={'content-location': url},
    )
    title = feed.feed.get('title') if 'feed' in feed else None

    if feed.bozo:
        exc = getattr(feed, 'bozo_exception', None)
        if not feed.entries and not title:
            return FeedFetchResult(success=False, error=f"Malformed feed: {exc}")
        logger.warning(f"Feed parsing warning for {url}: {exc}")

    logger.debug(f"Feed {url} parsed as {feed.get('version') or 'unknown'} format")
    return FeedFetchResult(success=True, items=list(feed.entries), title=title)


class FeedFetcher:
    """Fetches feeds and runs the ingestion pipeline over them."""

    def __init__(
        self,
        db: Optional[DatabaseQueue] = None,
        extract: Optional[Callable[[str], Awaitable[ExtractionResult]]] = None,
        content_sleep: Callable[[float], Awaitable[object]] = sleep,
    ) -> None:
        self.executor = ThreadPoolExecutor()
        self.db = db
        self._owns_db = db is None
        self.extract = extract
        self.content_sleep = content_sleep
        self.retry_helper = RetryHelper(max_retries=config.MAX_RETRIES, base_delay=config.RETRY_DELAY_BASE)
        self._refreshing = False

    async def initialize(self) -> None:
        """Initialize the database connection."""
        if self.db is None:
            self.db = DatabaseQueue(config.DATABASE_PATH)
        await self.db.start()
        logger.info("FeedFetcher initialized")

    @property
    def refresh_in_progress(self) -> bool:
        return self._refreshing

    async def run_in_executor(self, func, *args) -> Any:
        """Run a blocking function in a thread pool executor."""
        loop = get_running_loop()
        return await loop.run_in_executor(self.executor, partial(func, *args))

    @trace_span(
        "fetch_feed",
        tracer_name="fetcher",
        attr_from_args=lambda self, url, session=None: {"feed.url": url},
    )
    async def fetch_feed(self, url: str, session: Optional[ClientSession] = None) -> FeedFetchResult:
        """Download and parse a feed. Network and parse failures become a failed result."""
        try:
            if session is not None:
                content = await self._download(url, session)
            else:
                async with ClientSession(timeout=ClientTimeout(total=config.HTTP_TIMEOUT)) as own_session:
                    content = await self._download(url, own_session)
            return await self.run_in_executor(parse_feed_document, content, url)
        except FeedFetchError as e:
            logger.error(f"Error fetching feed {url}: {e}")
            return FeedFetchResult(success=False, error=str(e))
        except (OSError, ValueError) as e:
            logger.error(f"Unexpected error processing feed {url}: {e}")
            logger.debug(traceback.format_exc())
            return FeedFetchResult(success=False, error=f"Unexpected error: {e}")

    async def _download(self, url: str, session: ClientSession) -> bytes:
        """Fetch the raw feed document with retries.

        Raises:
            FeedFetchError: When the document could not be fetched.
        """
        headers = {'User-Agent': config.USER_AGENT}
        for attempt in range(config.MAX_RETRIES + 1):
            last_attempt = attempt >= config.MAX_RETRIES
            try:
                async with session.get(
                    url,
                    headers=headers,
                    timeout=ClientTimeout(total=config.HTTP_TIMEOUT),
                    max_redirects=config.MAX_REDIRECTS,
                ) as response:
                    if response.status == HTTP_OK:
                        return await response.read()
                    if response.status not in RETRYABLE_STATUSES or last_attempt:
                        raise FeedFetchError(f"HTTP {response.status}", url=url, status=response.status)
                    logger.warning(
                        "Retry %d/%d for %s due to HTTP %d",
                        attempt + 1, config.MAX_RETRIES, url, response.status,
                    )
            except TimeoutError as e:
                # aiohttp surfaces timeouts as asyncio.TimeoutError
                logger.warning(
                    "Timeout fetching %s (attempt %d/%d, timeout=%ss): %s",
                    url, attempt + 1, config.MAX_RETRIES + 1, config.HTTP_TIMEOUT, e,
                )
                if last_attempt:
                    raise FeedFetchError(f"Timed out after {config.HTTP_TIMEOUT}s", url=url) from e
            except ClientError as e:
                detail = self._format_client_error(e)
                if isinstance(e, PERMANENT_CLIENT_ERRORS):
                    raise FeedFetchError(f"Failed to fetch ({detail})", url=url) from e
                if last_attempt:
                    raise FeedFetchError(
                        f"Failed to fetch after {config.MAX_RETRIES} retries ({detail})", url=url
                    ) from e
                logger.warning("Retry %d/%d for %s due to error: %s", attempt + 1, config.MAX_RETRIES, url, detail)
            await self.retry_helper.sleep_for_attempt(attempt)
        raise FeedFetchError("No fetch attempts were made", url=url)

    @trace_span(
        "refresh_feed",
        tracer_name="fetcher",
        attr_from_args=lambda self, feed, session=None: {
            "feed.id": int(feed.get('id') or 0),
            "feed.url": feed.get('url') or "",
        },
    )
    async def refresh_feed(self, feed: Dict[str, Any], session: Optional[ClientSession] = None) -> IngestionOutcome:
        """Fetch one feed, reconcile its entries and pull full content where enabled."""
        logger.info(f"Refreshing feed: {feed.get('title')} ({feed.get('url')})")
        result = await self.fetch_feed(feed['url'], session)
        if not result.success:
            return IngestionOutcome.failed(feed, result.error or "Unknown error")

        titles = await self.db.execute('get_all_titles')
        keywords = await self.db.execute('get_filter_keywords')
        cutoff = retention_cutoff(config.MAX_ARTICLE_AGE_DAYS)

        reconciled = await reconcile(self.db, feed, result.items, titles, keywords, cutoff)
        outcome = reconciled.outcome

        if reconciled.queued:
            extract = self.extract or ContentExtractor(session=session).extract
            stats = await fetch_content_for_items(
                reconciled.queued,
                save=self._save_content,
                extract=extract,
                sleep=self.content_sleep,
            )
            outcome.content_fetched = stats.fetched
            outcome.content_failed = stats.failed

        annotate_current_span("refresh", outcome.as_dict())

        logger.info(
            f"Feed {feed.get('title')}: {outcome.items_seen} seen, {outcome.new_items} new, "
            f"{outcome.filtered_items} filtered, {outcome.duplicate_titles} duplicate titles, "
            f"{outcome.too_old_items} too old, {outcome.failed_items} failed"
            + (f", content {outcome.content_fetched}/{outcome.content_failed} fetched/failed"
               if reconciled.queued else "")
        )
        return outcome

    async def refresh_single_feed(self, feed: Dict[str, Any]) -> IngestionOutcome:
        """Refresh one feed outside the scheduled batch, under the same overlap guard.

        Raises:
            RefreshInProgressError: If another refresh is still running.
        """
        if self._refreshing:
            raise RefreshInProgressError()
        self._refreshing = True
        try:
            return await self.refresh_feed(feed)
        finally:
            self._refreshing = False

    async def _save_content(self, item_id: int, content: str, ttr: Optional[int]) -> None:
        await self.db.execute('update_full_content', item_id=item_id, content=content, ttr=ttr)

    @trace_span("refresh_all_feeds", tracer_name="fetcher")
    async def refresh_all_feeds(self, feeds: List[Dict[str, Any]]) -> List[IngestionOutcome]:
        """Refresh feeds one after another, preserving input order.

        Raises:
            RefreshInProgressError: If another refresh is still running.
        """
        if self._refreshing:
            raise RefreshInProgressError()
        self._refreshing = True
        outcomes: List[IngestionOutcome] = []
        try:
            async with ClientSession(timeout=ClientTimeout(total=config.HTTP_TIMEOUT)) as session:
                for feed in feeds:
                    try:
                        outcome = await self.refresh_feed(feed, session)
                    except Exception as e:
                        logger.error(f"Error refreshing feed {feed.get('title')} ({feed.get('url')}): {e}")
                        outcome = IngestionOutcome.failed(feed, str(e) or e.__class__.__name__)
                    outcomes.append(outcome)
        finally:
            self._refreshing = False

        succeeded = sum(1 for o in outcomes if o.success)
        logger.info(
            f"Refreshed {len(outcomes)} feeds ({succeeded} ok, {len(outcomes) - succeeded} failed): "
            f"{sum(o.new_items for o in outcomes)} new items"
        )
        return outcomes

    async def purge_old_items(self, days: Optional[int] = None) -> int:
        """Delete items published before the retention window."""
        if days is None:
            days = config.MAX_ARTICLE_AGE_DAYS
        cutoff = retention_cutoff(days)
        logger.info(f"Running database maintenance - removing items older than {days} days")
        return await self.db.execute('delete_older_than', cutoff=cutoff)

    async def close(self) -> None:
        """Close connections and clean up resources."""
        if self.db and self._owns_db:
            await self.db.stop()
        if self.executor:
            logger.debug("Shutting down thread pool executor...")
            try:
                await wait_for(
                    get_running_loop().run_in_executor(None, lambda: self.executor.shutdown(wait=True)),
                    timeout=30.0,
                )
            except TimeoutError:
                logger.warning("Thread pool executor shutdown timed out after 30 seconds")
                self.executor.shutdown(wait=False)
        logger.info("FeedFetcher closed")

    def _format_client_error(self, error: ClientError) -> str:
        """Describe aiohttp client errors with any available status/errno."""
        parts: List[str] = [error.__class__.__name__]
        status = getattr(error, 'status', None)
        if status is not None:
            parts.append(f"status={status}")
        os_error = getattr(error, 'os_error', None)
        if os_error is not None:
            errno = getattr(os_error, 'errno', None)
            strerror = getattr(os_error, 'strerror', None)
            if errno is not None:
                parts.append(f"errno={errno}")
            if strerror:
                parts.append(str(strerror))
        message = str(error)
        if message:
            parts.append(message)
        return " ".join(parts)
