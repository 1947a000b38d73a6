#!/usr/bin/env python3
"""
Feed Reader command line and user operations

``FeedReaderApp`` owns the database queue and the fetcher and exposes the
operations a user (or a front end) performs: managing feeds, folders and
filter keywords, marking items read, and triggering refreshes and purges.
Input problems raise ``ValidationError`` with a message meant for the user.

Supports single-run modes for manual execution and a scheduled mode that
refreshes every REFRESH_INTERVAL_MINUTES.
"""

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from config import config, get_logger
from errors import ValidationError
from fetcher import FeedFetcher
from models import DatabaseQueue
from reconciler import IngestionOutcome
from scheduler import RefreshScheduler
from telemetry import init_telemetry, trace_span
from utils import favicon_url, truncate_string, validate_url

# Module-specific logger
logger = get_logger("app")
init_telemetry("feed-reader-app")


class FeedReaderApp:
    """User-facing operations over the feed store."""

    def __init__(self, db_path: Optional[str] = None, fetcher: Optional[FeedFetcher] = None) -> None:
        """Initialize the app.

        Args:
            db_path: SQLite database path. If None, uses DATABASE_PATH.
            fetcher: Prebuilt fetcher sharing this app's database (tests inject one).
        """
        self.db = fetcher.db if fetcher and fetcher.db else DatabaseQueue(db_path or config.DATABASE_PATH)
        self.fetcher = fetcher or FeedFetcher(db=self.db)
        self.default_folder_id: Optional[int] = None

    async def start(self) -> None:
        await self.db.start()
        self.default_folder_id = await self.db.execute('ensure_default_folder')

    async def close(self) -> None:
        await self.fetcher.close()
        await self.db.stop()

    # Feeds
    @trace_span("app.add_feed", tracer_name="app", attr_from_args=lambda self, title=None, url=None, *a, **kw: {"feed.url": url or ""})
    async def add_feed(self, title: Optional[str], url: str, color: Optional[str] = None,
                       fetch_content: bool = False, folder_id: Optional[int] = None,
                       refresh: bool = True) -> Dict[str, Any]:
        """Subscribe to a feed and, unless ``refresh`` is False, run its first refresh.

        When ``title`` is empty the feed document's own title is used.

        Returns:
            Dict with the stored ``feed`` and the initial refresh ``outcome`` (or None).
        """
        title = (title or '').strip()
        url = (url or '').strip()
        if not url:
            raise ValidationError("Title and URL are required")
        if not validate_url(url):
            raise ValidationError(f"Invalid feed URL: {url}")
        if await self.db.execute('get_feed_by_url', url=url):
            raise ValidationError(f"A feed with URL {url} already exists")
        if not title:
            title = await self.discover_feed_title(url) or ''
            if not title:
                raise ValidationError("Title and URL are required")

        feed_id = await self.db.execute(
            'create_feed',
            title=title,
            url=url,
            icon_url=favicon_url(url),
            color=color,
            fetch_content=fetch_content,
            folder_id=folder_id if folder_id is not None else self.default_folder_id,
        )
        feed = await self.db.execute('get_feed', feed_id=feed_id)
        logger.info(f"Added feed {title} ({url}) as #{feed_id}")

        outcome: Optional[IngestionOutcome] = None
        if refresh:
            outcome = await self.fetcher.refresh_single_feed(feed)
            if not outcome.success:
                logger.warning(f"Initial refresh of {title} failed: {outcome.error}")
        return {'feed': feed, 'outcome': outcome}

    async def discover_feed_title(self, url: str) -> Optional[str]:
        """Fetch a feed document and return its title, or None when it has none."""
        if not validate_url(url):
            raise ValidationError(f"Invalid feed URL: {url}")
        result = await self.fetcher.fetch_feed(url)
        if not result.success:
            logger.warning(f"Could not read title from {url}: {result.error}")
            return None
        return (result.title or '').strip() or None

    async def update_feed(self, feed_id: int, **fields) -> Dict[str, Any]:
        """Edit a feed's title, URL, color, full-content flag or folder."""
        if not await self.db.execute('get_feed', feed_id=feed_id):
            raise ValidationError(f"Feed {feed_id} not found")
        if 'title' in fields:
            fields['title'] = (fields['title'] or '').strip()
            if not fields['title']:
                raise ValidationError("Title is required")
        if 'url' in fields:
            fields['url'] = (fields['url'] or '').strip()
            if not validate_url(fields['url']):
                raise ValidationError(f"Invalid feed URL: {fields['url']}")
            fields.setdefault('icon_url', favicon_url(fields['url']))
        await self.db.execute('update_feed', feed_id=feed_id, **fields)
        return await self.db.execute('get_feed', feed_id=feed_id)

    async def remove_feed(self, feed_id: int) -> None:
        """Delete a feed along with all of its items."""
        if not await self.db.execute('delete_feed', feed_id=feed_id):
            raise ValidationError(f"Feed {feed_id} not found")
        logger.info(f"Removed feed #{feed_id}")

    # Folders
    async def add_folder(self, label: str, icon: Optional[str] = None) -> int:
        return await self.db.execute('create_folder', label=label, icon=icon)

    async def folder_id_for(self, label: Optional[str]) -> Optional[int]:
        if not label:
            return self.default_folder_id
        folder = await self.db.execute('get_folder_by_label', label=str(label).strip())
        if folder:
            return folder['id']
        return await self.db.execute('create_folder', label=str(label))

    # Filter keywords
    async def add_keyword(self, keyword: str) -> int:
        keyword_id = await self.db.execute('add_filter_keyword', keyword=keyword)
        logger.info(f"Added filter keyword '{keyword.strip().lower()}'")
        return keyword_id

    async def remove_keyword(self, keyword_id: int) -> None:
        if not await self.db.execute('delete_filter_keyword', keyword_id=keyword_id):
            raise ValidationError(f"Keyword {keyword_id} not found")

    # Read state
    async def mark_read(self, item_id: int) -> None:
        if not await self.db.execute('mark_read', item_id=item_id):
            raise ValidationError(f"Item {item_id} not found")

    async def mark_unread(self, item_id: int) -> None:
        if not await self.db.execute('mark_unread', item_id=item_id):
            raise ValidationError(f"Item {item_id} not found")

    async def bulk_mark_read(self, item_ids: List[int]) -> int:
        """Mark a list of items read in one write; returns how many rows changed."""
        if not isinstance(item_ids, (list, tuple)) or not item_ids:
            raise ValidationError("Item ids must be a non-empty list")
        try:
            ids = [int(item_id) for item_id in item_ids]
        except (TypeError, ValueError):
            raise ValidationError("Item ids must be integers")
        return await self.db.execute('bulk_mark_read', item_ids=ids)

    # Configuration import
    async def import_feeds_from_config(self, refresh: bool = False) -> Dict[str, int]:
        """Create the folders, feeds and filter keywords listed in feeds.yaml.

        Entries that already exist are left alone, so importing twice is harmless.
        """
        counts = {'folders': 0, 'feeds': 0, 'keywords': 0, 'skipped': 0}

        for label in config.FEED_FOLDERS:
            if not await self.db.execute('get_folder_by_label', label=label):
                await self.db.execute('create_folder', label=label)
                counts['folders'] += 1

        for slug, subscription in config.FEED_SUBSCRIPTIONS.items():
            if await self.db.execute('get_feed_by_url', url=subscription['url']):
                counts['skipped'] += 1
                continue
            try:
                await self.add_feed(
                    subscription['title'],
                    subscription['url'],
                    color=subscription.get('color'),
                    fetch_content=subscription.get('fetch_content', False),
                    folder_id=await self.folder_id_for(subscription.get('folder')),
                    refresh=refresh,
                )
                counts['feeds'] += 1
            except ValidationError as e:
                logger.warning(f"Skipping feed '{slug}': {e}")
                counts['skipped'] += 1

        existing = set(await self.db.execute('get_filter_keywords'))
        for keyword in config.FILTER_KEYWORDS:
            if keyword in existing:
                continue
            await self.db.execute('add_filter_keyword', keyword=keyword)
            existing.add(keyword)
            counts['keywords'] += 1

        logger.info(
            f"Imported {counts['feeds']} feeds, {counts['folders']} folders, "
            f"{counts['keywords']} keywords ({counts['skipped']} feeds skipped)"
        )
        return counts

    # Refresh and maintenance
    async def refresh(self) -> List[IngestionOutcome]:
        feeds = await self.db.execute('list_feeds')
        return await self.fetcher.refresh_all_feeds(feeds)

    async def refresh_feed(self, feed_id: int) -> IngestionOutcome:
        """Refresh a single stored feed on demand."""
        feed = await self.db.execute('get_feed', feed_id=feed_id)
        if not feed:
            raise ValidationError(f"Feed {feed_id} not found")
        return await self.fetcher.refresh_single_feed(feed)

    async def purge(self, days: Optional[int] = None) -> int:
        return await self.fetcher.purge_old_items(days)

    async def status(self) -> Dict[str, Any]:
        """Collect counts for the status report."""
        feeds = await self.db.execute('list_feeds')
        unread = await self.db.execute('unread_counts')
        folders = await self.db.execute('list_folders')
        return {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'feeds': [
                {'id': f['id'], 'title': f['title'], 'unread': unread['by_feed'].get(f['id'], 0)}
                for f in feeds
            ],
            'folders': [
                {'id': f['id'], 'label': f['label'], 'unread': unread['by_folder'].get(f['id'], 0)}
                for f in folders
            ],
            'total_items': await self.db.execute('count_items'),
            'unread_items': unread['total'],
            'filter_keywords': await self.db.execute('get_filter_keywords'),
            'config': config.get_config_summary(),
        }


def print_outcomes(outcomes: List[IngestionOutcome]) -> None:
    for outcome in outcomes:
        title = truncate_string(outcome.feed_title or f"#{outcome.feed_id}", 40)
        if outcome.success:
            print(f"✅ {title}: {outcome.new_items} new, {outcome.filtered_items} filtered, "
                  f"{outcome.duplicate_titles} duplicates, {outcome.too_old_items} too old")
        else:
            print(f"❌ {title}: {outcome.error}")


def print_status(status: Dict[str, Any]) -> None:
    """Print formatted status information."""
    print(f"\n📊 Feed Reader Status")
    print(f"⏰ {status['timestamp']}")
    print(f"\n💾 Database: {status['config']['database_path']}")
    print(f"   📰 Items: {status['total_items']} ({status['unread_items']} unread)")
    print(f"   🚫 Filter keywords: {', '.join(status['filter_keywords']) or 'none'}")
    folders = ', '.join(f"{f['label']} ({f['unread']} unread)" for f in status['folders'])
    print(f"\n📁 Folders: {folders or 'none'}")
    print(f"\n📡 Feeds ({len(status['feeds'])}):")
    for feed in status['feeds']:
        print(f"   #{feed['id']} {truncate_string(feed['title'], 50)} ({feed['unread']} unread)")


async def run_mode(args: argparse.Namespace) -> int:
    """Run one CLI mode and return the process exit code."""
    app = FeedReaderApp(args.database)
    await app.start()
    try:
        if args.mode == 'refresh':
            outcomes = await app.refresh()
            print_outcomes(outcomes)
            return 0 if all(o.success for o in outcomes) else 1

        if args.mode == 'scheduled':
            scheduler = RefreshScheduler(app.fetcher)
            await scheduler.run_forever()
            return 0

        if args.mode == 'refresh-feed':
            if args.id is None:
                raise ValidationError("--id is required for refresh-feed")
            outcome = await app.refresh_feed(args.id)
            print_outcomes([outcome])
            return 0 if outcome.success else 1

        if args.mode == 'purge':
            deleted = await app.purge(args.days)
            print(f"🧹 Deleted {deleted} items")
            return 0

        if args.mode == 'status':
            print_status(await app.status())
            return 0

        if args.mode == 'add-feed':
            result = await app.add_feed(
                args.title, args.url,
                color=args.color,
                fetch_content=args.fetch_content,
                folder_id=await app.folder_id_for(args.folder),
            )
            print(f"➕ Added feed #{result['feed']['id']}: {result['feed']['title']}")
            if result['outcome']:
                print_outcomes([result['outcome']])
            return 0

        if args.mode == 'add-keyword':
            await app.add_keyword(args.keyword or '')
            print(f"🚫 Added filter keyword '{args.keyword.strip().lower()}'")
            return 0

        if args.mode == 'import':
            counts = await app.import_feeds_from_config(refresh=args.refresh)
            print(f"📥 Imported {counts['feeds']} feeds, {counts['folders']} folders, {counts['keywords']} keywords")
            return 0

        if args.mode == 'mark-read':
            changed = await app.bulk_mark_read(args.ids or [])
            print(f"✔️ Marked {changed} items read")
            return 0

        return 2
    finally:
        await app.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Feed Reader')
    parser.add_argument('mode', choices=['refresh', 'refresh-feed', 'scheduled', 'purge', 'status', 'add-feed',
                                         'add-keyword', 'import', 'mark-read'],
                        help='Operation mode')
    parser.add_argument('--database', type=str, help='SQLite database path (defaults to DATABASE_PATH)')
    parser.add_argument('--id', type=int, help='Feed id (refresh-feed)')
    parser.add_argument('--title', type=str, help='Feed title (add-feed; read from the feed when omitted)')
    parser.add_argument('--url', type=str, help='Feed URL (add-feed)')
    parser.add_argument('--color', type=str, help='Display color (add-feed)')
    parser.add_argument('--folder', type=str, help='Folder label (add-feed)')
    parser.add_argument('--fetch-content', action='store_true',
                        help='Extract full article content for this feed (add-feed)')
    parser.add_argument('--keyword', type=str, help='Filter keyword (add-keyword)')
    parser.add_argument('--ids', type=int, nargs='+', help='Item ids (mark-read)')
    parser.add_argument('--days', type=int, help='Retention window in days (purge)')
    parser.add_argument('--refresh', action='store_true', help='Refresh imported feeds right away (import)')
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    try:
        sys.exit(asyncio.run(run_mode(args)))
    except ValidationError as e:
        logger.error(f"❌ {e}")
        sys.exit(2)
    except KeyboardInterrupt:
        logger.info("👋 Feed reader shutting down")
    except Exception as e:
        logger.error(f"💥 Unexpected error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
