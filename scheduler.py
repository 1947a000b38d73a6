#!/usr/bin/env python3
"""
Interval Refresh Scheduler

Runs a full refresh of every stored feed on a fixed interval
(REFRESH_INTERVAL_MINUTES, 30 by default) and purges items that fell out of
the retention window after each cycle. A failed cycle is logged and the loop
keeps going; only cancellation stops it.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from config import config, get_logger
from errors import RefreshInProgressError
from reconciler import IngestionOutcome
from telemetry import init_telemetry, trace_span

# Module-specific logger
logger = get_logger("scheduler")

# Initialize telemetry for the scheduler subsystem
init_telemetry("feed-reader-scheduler")


class RefreshScheduler:
    """Periodically refreshes all feeds through a ``FeedFetcher``."""

    def __init__(
        self,
        fetcher,
        interval_minutes: Optional[int] = None,
        run_immediately: Optional[bool] = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ):
        """Initialize the scheduler.

        Args:
            fetcher: An initialized ``FeedFetcher``; its database supplies the feed list.
            interval_minutes: Minutes between cycles (defaults to REFRESH_INTERVAL_MINUTES).
            run_immediately: Start with a cycle instead of a sleep (defaults to SCHEDULER_RUN_IMMEDIATELY).
            sleep: Injectable sleep, so tests do not wait on the wall clock.
        """
        self.fetcher = fetcher
        self.interval_minutes = interval_minutes or config.REFRESH_INTERVAL_MINUTES
        self.run_immediately = config.SCHEDULER_RUN_IMMEDIATELY if run_immediately is None else run_immediately
        self.sleep = sleep
        self.last_run: Optional[datetime] = None
        self.cycles = 0

    @property
    def interval_seconds(self) -> float:
        return self.interval_minutes * 60

    def next_run_time(self) -> Optional[datetime]:
        if self.last_run is None:
            return None
        return self.last_run + timedelta(seconds=self.interval_seconds)

    def get_schedule_status(self) -> Dict[str, Any]:
        """Get current schedule status information."""
        next_run = self.next_run_time()
        return {
            'current_time': datetime.now(timezone.utc).isoformat(),
            'interval_minutes': self.interval_minutes,
            'run_immediately': self.run_immediately,
            'last_run_time': self.last_run.isoformat() if self.last_run else None,
            'next_run_time': next_run.isoformat() if next_run else None,
            'cycles_completed': self.cycles,
        }

    @trace_span("scheduler.run_once", tracer_name="scheduler")
    async def run_once(self) -> List[IngestionOutcome]:
        """Refresh every stored feed, then purge expired items."""
        feeds = await self.fetcher.db.execute('list_feeds')
        logger.info(f"⏰ Starting scheduled refresh of {len(feeds)} feeds")
        outcomes = await self.fetcher.refresh_all_feeds(feeds)
        self.last_run = datetime.now(timezone.utc)
        self.cycles += 1

        purged = await self.fetcher.purge_old_items()
        if purged:
            logger.info(f"🧹 Purged {purged} items older than {config.MAX_ARTICLE_AGE_DAYS} days")
        return outcomes

    @trace_span("scheduler.main_loop", tracer_name="scheduler")
    async def run_forever(self, max_cycles: Optional[int] = None) -> None:
        """Run cycles until cancelled, or until ``max_cycles`` cycles have been attempted."""
        logger.info(
            f"🚀 Starting scheduler: every {self.interval_minutes} minutes"
            f"{' (running immediately)' if self.run_immediately else ''}"
        )
        attempted = 0
        first = True
        while max_cycles is None or attempted < max_cycles:
            try:
                if not (first and self.run_immediately):
                    logger.info(f"😴 Sleeping {self.interval_minutes} minutes until next refresh")
                    await self.sleep(self.interval_seconds)
                first = False

                attempted += 1
                start_time = datetime.now(timezone.utc)
                outcomes = await self.run_once()
                duration = (datetime.now(timezone.utc) - start_time).total_seconds()
                failed = sum(1 for o in outcomes if not o.success)
                logger.info(f"✅ Scheduled refresh completed in {duration:.1f}s ({failed} feeds failed)")

            except asyncio.CancelledError:
                logger.info("📶 Scheduler cancelled - shutting down")
                raise
            except RefreshInProgressError as e:
                logger.warning(f"⏭️ Skipping scheduled refresh: {e}")
            except Exception as e:
                # Continue running despite errors
                logger.error(f"💥 Error in scheduled refresh: {e}")
