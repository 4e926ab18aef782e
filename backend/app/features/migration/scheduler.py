"""
Migration scheduler: one tick.

    1. reconcile   orphaned Processing jobs and expired waits -> Pending
    2. budget      from the shared rate-limit estimate
    3. dispatch    oldest-updated Pending job first, until budget, time,
                   queue or provider pressure runs out
    4. estimate    queue position / ETA for every active job

Every status change is a compare-and-swap, so a tick that loses a race
(overlapping tick, user cancel) just moves on to the next job.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.features.storage import ObjectStore
from app.features.strava import StravaClient, StravaTokenError, StravaTokenProvider
from app.features.users import UserRepository
from app.shared.clock import Clock, MINUTE_MS, now_ms
from .config import MigrationConfig
from .estimator import QueuePositionEstimator
from .importer import ActivityImporter
from .models import ActivitiesJob, JobStatus, MigrationJob
from .outcome import WorkOutcome
from .progress import ProgressService
from .rate_limit import RateLimitTracker
from .report import ReportAggregator
from .repository import JobRepository
from .streams import StreamFetcher

logger = logging.getLogger(__name__)


class StopReason:
    NO_BUDGET = "no_budget"
    BUDGET_EXHAUSTED = "budget_exhausted"
    QUEUE_EMPTY = "queue_empty"
    PRESSURE = "pressure"
    TIME_LIMIT = "time_limit"


@dataclass
class TickResult:
    """Summary of one tick."""

    reclaimed: int = 0
    released: int = 0
    budget: int = 0
    dispatched: int = 0
    calls_used: int = 0
    failed: int = 0
    stop_reason: str = StopReason.QUEUE_EMPTY


def backoff_ms(retry_count: int) -> int:
    """Delay before retry number `retry_count` (1-based)."""
    schedule = MigrationConfig.BACKOFF_MINUTES
    index = min(max(retry_count, 1) - 1, len(schedule) - 1)
    return schedule[index] * MINUTE_MS


class MigrationScheduler:
    """
    Runs one scheduler tick against one session.

    Usage:
        tracker = RateLimitTracker(RateLimitRepository(db))
        async with StravaClient(response_hooks=[tracker.record_response]) as client:
            scheduler = MigrationScheduler(db, client, StravaTokenProvider(db), tracker, store)
            result = await scheduler.tick()
    """

    def __init__(
        self,
        db: AsyncSession,
        client: StravaClient,
        tokens: StravaTokenProvider,
        tracker: RateLimitTracker,
        store: ObjectStore,
        clock: Clock = now_ms,
        time_limit_seconds: Optional[float] = None,
        safety_buffer_seconds: Optional[float] = None,
    ):
        self.db = db
        self.client = client
        self.tokens = tokens
        self.tracker = tracker
        self._clock = clock

        self.jobs = JobRepository(db)
        self.users = UserRepository(db)
        self.progress = ProgressService(db)
        self.importer = ActivityImporter(db, client, tracker, clock=clock)
        self.fetcher = StreamFetcher(
            db, client, tracker, store, ReportAggregator(db, clock), clock=clock
        )
        self.estimator = QueuePositionEstimator(db, clock)

        if time_limit_seconds is None:
            time_limit_seconds = settings.migration_tick_time_limit_seconds
        if safety_buffer_seconds is None:
            safety_buffer_seconds = settings.migration_tick_safety_buffer_seconds
        self.dispatch_window_ms = int((time_limit_seconds - safety_buffer_seconds) * 1000)

    async def tick(self) -> TickResult:
        started = self._clock()
        result = TickResult()

        result.reclaimed, result.released = await self.reconcile()

        await self.tracker.load()
        result.budget = self.tracker.compute_budget()

        if result.budget <= 0:
            result.stop_reason = StopReason.NO_BUDGET
            logger.info("Migration tick: no API budget left, skipping dispatch")
        else:
            await self._dispatch(result, started + self.dispatch_window_ms)

        await self.estimator.refresh()
        await self.db.commit()

        logger.info(
            f"Migration tick: budget {result.budget}, {result.dispatched} jobs, "
            f"{result.calls_used} calls, stopped: {result.stop_reason}"
        )
        return result

    async def reconcile(self) -> tuple[int, int]:
        """
        Crash recovery and wait expiry.

        Returns:
            (reclaimed Processing jobs, released Waiting jobs)
        """
        now = self._clock()
        reclaimed = await self.jobs.reclaim_stale_processing(
            now - MigrationConfig.STALE_PROCESSING_MINUTES * MINUTE_MS
        )
        released = await self.jobs.release_expired_waits(now)
        await self.db.commit()

        if reclaimed:
            logger.warning(f"Reclaimed {reclaimed} orphaned processing jobs")
        if released:
            logger.debug(f"Released {released} waiting jobs")
        return reclaimed, released

    async def _dispatch(self, result: TickResult, deadline: int) -> None:
        budget = result.budget
        seen: set[str] = set()

        while budget > 0:
            if self._clock() >= deadline:
                result.stop_reason = StopReason.TIME_LIMIT
                return

            job = await self.jobs.find_oldest_pending(exclude_ids=seen)
            if job is None:
                result.stop_reason = StopReason.QUEUE_EMPTY
                return
            seen.add(job.id)

            if not await self.jobs.transition(
                job, JobStatus.PENDING, JobStatus.PROCESSING, self._clock()
            ):
                continue
            await self.db.commit()

            calls_before = self.client.calls_made
            outcome = await self._run_job(job, budget)
            used = self.client.calls_made - calls_before

            budget -= used
            result.calls_used += used
            result.dispatched += 1
            await self.db.commit()

            if outcome is None:
                result.failed += 1
            elif outcome.pressure:
                result.stop_reason = StopReason.PRESSURE
                return

        result.stop_reason = StopReason.BUDGET_EXHAUSTED

    async def _run_job(self, job: MigrationJob, budget: int) -> Optional[WorkOutcome]:
        """
        Dispatch one claimed job to its worker and record the outcome.

        Returns None when the job failed (retry scheduled or terminal).
        """
        job_id, user_id = job.id, job.user_id

        user = await self.users.get_by_id(user_id)
        if user is None:
            await self._fail(job, "User no longer exists", has_progress=False)
            return None

        try:
            access_token = await self.tokens.get_valid_access_token(user_id)
        except StravaTokenError as e:
            await self._fail(job, f"Strava authorization failed: {e}")
            return None

        try:
            if isinstance(job, ActivitiesJob):
                outcome = await self.importer.run(
                    job, access_token, user.nickname, user.default_visibility
                )
            else:
                outcome = await self.fetcher.run(job, access_token, budget)
        except Exception as e:
            logger.exception(f"Migration job {job_id} failed")
            await self.db.rollback()
            # the rollback also dropped the usage this job's calls reported
            await self.tracker.persist()
            await self._retry_later(job_id, e)
            return None

        if outcome.job is not None:
            await self.progress.sync_job(outcome.job, self._clock())
        return outcome

    async def _fail(self, job: MigrationJob, error: str, has_progress: bool = True) -> None:
        """Fatal: no retry, user must act (e.g. reconnect Strava)."""
        logger.error(f"Migration job {job.id} failed permanently: {error}")
        moved = await self.jobs.transition(
            job, JobStatus.PROCESSING, JobStatus.FAILED, self._clock(),
            last_error=error[:500],
        )
        if moved and has_progress:
            await self.progress.mark_failed(job.user_id, error, self._clock())

    async def _retry_later(self, job_id: str, error: Exception) -> None:
        """Count the failure; back off, or fail once retries run out."""
        job = await self.jobs.get_by_id(job_id)
        if job is None:
            return

        message = f"{type(error).__name__}: {error}"[:500]
        retry_count = job.retry_count + 1
        now = self._clock()

        if retry_count >= job.max_retries:
            if await self.jobs.transition(
                job, JobStatus.PROCESSING, JobStatus.FAILED, now,
                retry_count=retry_count,
                last_error=message,
            ):
                logger.error(f"Migration job {job_id} gave up after {retry_count} retries")
                await self.progress.mark_failed(job.user_id, message, now)
            return

        if await self.jobs.transition(
            job, JobStatus.PROCESSING, JobStatus.WAITING, now,
            retry_count=retry_count,
            last_error=message,
            wait_until=now + backoff_ms(retry_count),
        ):
            await self.progress.sync_job(job, now)
