#!/usr/bin/env python3
"""
Per-entry ingestion decisions for one feed.

``reconcile`` walks a parsed feed's entries in document order and decides,
for each one, whether to store it or skip it as a duplicate title, a filtered
entry or an entry older than the retention window. Survivors are upserted by
their ``(feed_id, guid)`` key. The running title set is passed in and handed
back rather than kept as module state, so one refresh cannot leak into another.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Set

from config import get_logger
from content import ContentRequest
from dates import format_timestamp, utc_now
from entries import extract_fields
from telemetry import trace_span

logger = get_logger("reconciler")


@dataclass
class IngestionOutcome:
    """Counters for one feed refresh. Produced fresh per call, never persisted."""

    feed_id: Optional[int] = None
    feed_title: Optional[str] = None
    success: bool = True
    error: Optional[str] = None
    items_seen: int = 0
    new_items: int = 0
    filtered_items: int = 0
    duplicate_titles: int = 0
    too_old_items: int = 0
    content_fetched: int = 0
    content_failed: int = 0
    failed_items: int = 0

    @classmethod
    def failed(cls, feed: Dict[str, Any], error: str) -> "IngestionOutcome":
        return cls(feed_id=feed.get('id'), feed_title=feed.get('title'), success=False, error=error)

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ReconcileResult:
    outcome: IngestionOutcome
    titles: Set[str]
    queued: List[ContentRequest] = field(default_factory=list)


def retention_cutoff(days: int, now: Optional[datetime] = None) -> str:
    """Canonical timestamp ``days`` before ``now``; anything published earlier is too old."""
    return format_timestamp((now or utc_now()) - timedelta(days=days))


def matches_keyword(keywords: Iterable[str], *fields: Optional[str]) -> Optional[str]:
    """Return the first keyword contained in any of ``fields``, case-insensitively."""
    haystacks = [f.lower() for f in fields if f]
    for keyword in keywords:
        needle = (keyword or '').strip().lower()
        if needle and any(needle in haystack for haystack in haystacks):
            return needle
    return None


async def _is_same_item(db, feed_id: int, guid: str, title: str) -> bool:
    # Only the row already stored under this key with this exact title is a re-observation
    row = await db.execute('get_item_by_guid', feed_id=feed_id, guid=guid)
    return row is not None and row.get('title') == title


@trace_span(
    "reconcile_feed",
    tracer_name="reconciler",
    attr_from_args=lambda db, feed, entries, titles, keywords, cutoff: {
        "feed.id": int(feed.get('id') or 0),
        "feed.entries.count": len(entries),
    },
)
async def reconcile(db, feed: Dict[str, Any], entries: List[Any], titles: Set[str],
                    keywords: Iterable[str], cutoff: str) -> ReconcileResult:
    """Decide, store or skip every entry of one feed.

    Args:
        db: ``DatabaseQueue`` (or anything with the same ``execute`` contract).
        feed: Stored feed row; ``id``, ``title`` and ``fetch_content`` are used.
        entries: Parsed entries in document order.
        titles: Every title already stored, across all feeds.
        keywords: Filter keywords.
        cutoff: Canonical timestamp; entries published before it are too old.

    Returns:
        The outcome counters, the grown title set and the items queued for
        full-content extraction.
    """
    feed_id = feed['id']
    keywords = [k.lower() for k in keywords if k]
    titles = set(titles)
    outcome = IngestionOutcome(feed_id=feed_id, feed_title=feed.get('title'), items_seen=len(entries))
    queued: List[ContentRequest] = []

    for entry in entries:
        try:
            fields = extract_fields(entry)
        except Exception as e:
            logger.warning(f"Skipping unreadable entry in feed {feed_id}: {e}")
            outcome.failed_items += 1
            continue

        if (fields.title and fields.title in titles
                and not await _is_same_item(db, feed_id, fields.guid, fields.title)):
            logger.debug(f"Duplicate title skipped: {fields.title}")
            outcome.duplicate_titles += 1
            continue

        keyword = matches_keyword(keywords, fields.title, fields.link)
        if keyword:
            logger.debug(f"Filtered by keyword '{keyword}': {fields.display_title}")
            outcome.filtered_items += 1
            continue

        if fields.pub_date < cutoff:
            logger.debug(f"Too old ({fields.pub_date}): {fields.display_title}")
            outcome.too_old_items += 1
            continue

        try:
            changed = await db.execute(
                'upsert_item',
                feed_id=feed_id,
                guid=fields.guid,
                title=fields.display_title,
                link=fields.link,
                description=fields.description,
                image_url=fields.image_url,
                pub_date=fields.pub_date,
                keep_existing_date=fields.date_is_fallback,
            )
        except Exception as e:
            logger.error(f"Error upserting item {fields.guid} in feed {feed_id}: {e}")
            outcome.failed_items += 1
            continue

        if fields.title:
            titles.add(fields.title)
        if not changed:
            continue
        outcome.new_items += 1

        if feed.get('fetch_content'):
            row = await db.execute('get_item_by_guid', feed_id=feed_id, guid=fields.guid)
            if row and row.get('link') and not row.get('full_content'):
                queued.append(ContentRequest(id=row['id'], link=row['link']))

    return ReconcileResult(outcome=outcome, titles=titles, queued=queued)
