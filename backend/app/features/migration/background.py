"""
Background migration runner.

Runs a scheduler tick every `migration_tick_interval_seconds` inside the
API process. Ticks are serialized by a lock and bounded by a hard time
limit; the scheduler itself stops dispatching a safety buffer earlier.
An external cron can also trigger ticks through the internal API.
"""

import asyncio
import logging
from typing import Optional

import httpx

from app.config import settings
from app.features.storage import LocalObjectStore, ObjectStore
from app.features.strava import StravaClient, StravaOAuth, StravaTokenProvider
from .rate_limit import RateLimitTracker
from .repository import RateLimitRepository
from .scheduler import MigrationScheduler, TickResult

logger = logging.getLogger(__name__)


class MigrationRunner:
    """
    Background task runner for the migration queue.

    Call `start()` to begin ticking.
    Call `stop()` to gracefully stop.

    Usage:
        runner = MigrationRunner()
        await runner.start(db_factory)
        # ... later ...
        await runner.stop()
    """

    def __init__(
        self,
        interval_seconds: Optional[float] = None,
        time_limit_seconds: Optional[float] = None,
        store: Optional[ObjectStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.interval_seconds = interval_seconds or settings.migration_tick_interval_seconds
        self.time_limit_seconds = time_limit_seconds or settings.migration_tick_time_limit_seconds
        self._store = store
        self._transport = transport
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._db_factory = None
        self._lock = asyncio.Lock()
        self.last_result: Optional[TickResult] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def store(self) -> ObjectStore:
        if self._store is None:
            self._store = LocalObjectStore(settings.object_store_root)
        return self._store

    async def start(self, db_factory):
        """Start background tick loop."""
        if self._running:
            return

        self._running = True
        self._db_factory = db_factory
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Migration runner started")

    async def stop(self):
        """Stop background tick loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Migration runner stopped")

    async def _run_loop(self):
        """Main tick loop."""
        while self._running:
            try:
                await self.run_tick()
            except Exception as e:
                logger.error(f"Migration tick error: {e}")

            # Wait before next tick
            await asyncio.sleep(self.interval_seconds)

    async def run_tick(self, db_factory=None) -> Optional[TickResult]:
        """
        Run one tick now.

        Returns:
            TickResult, or None if another tick is still running

        Raises:
            asyncio.TimeoutError: Tick exceeded its hard time limit
        """
        db_factory = db_factory or self._db_factory
        if db_factory is None:
            raise RuntimeError("MigrationRunner has no database session factory")

        if self._lock.locked():
            logger.info("Migration tick skipped: previous tick still running")
            return None

        async with self._lock:
            result = await asyncio.wait_for(
                self._tick(db_factory),
                timeout=self.time_limit_seconds,
            )
            self.last_result = result
            return result

    async def _tick(self, db_factory) -> TickResult:
        async with db_factory() as db:
            tracker = RateLimitTracker(RateLimitRepository(db))
            async with StravaClient(
                response_hooks=[tracker.record_response],
                transport=self._transport,
            ) as client:
                tokens = StravaTokenProvider(db, StravaOAuth(transport=self._transport))
                scheduler = MigrationScheduler(db, client, tokens, tracker, self.store)
                return await scheduler.tick()


# Global runner instance
migration_runner = MigrationRunner()
