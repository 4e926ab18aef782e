"""
Migration service.

User operations on the queue: enqueue, cancel, state, verify and fix.
They touch the job store directly, outside the scheduler tick.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.features.activities import ActivityRepository, ActivityStreamRepository
from app.features.users import User, UserRepository
from app.shared.clock import Clock, now_ms
from .exceptions import (
    MigrationAlreadyActiveError,
    MigrationNotConnectedError,
    MigrationUserNotFoundError,
)
from .models import ActivitiesJob, JobStatus, MigrationPeriod, StreamsJob
from .progress import ProgressService
from .report import ReportAggregator
from .repository import JobRepository, ProgressRepository
from .schemas import (
    FixRequest,
    FixResult,
    MigrationReport,
    MigrationScope,
    MigrationStateResponse,
    ProgressInfo,
    VerifyResult,
)

logger = logging.getLogger(__name__)


class MigrationService:
    """
    Service for user-initiated migration operations.

    Usage:
        service = MigrationService(db)
        state = await service.enqueue(user_id, MigrationScope(period="recent_180"))
    """

    def __init__(self, db: AsyncSession, clock: Clock = now_ms):
        self.db = db
        self.jobs = JobRepository(db)
        self.users = UserRepository(db)
        self.activities = ActivityRepository(db)
        self.streams = ActivityStreamRepository(db)
        self.progress = ProgressService(db)
        self.progress_rows = ProgressRepository(db)
        self._clock = clock

    async def _get_connected_user(self, user_id: str) -> User:
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise MigrationUserNotFoundError(f"User {user_id} not found")
        if not user.strava_connected:
            raise MigrationNotConnectedError(f"User {user_id} has not connected Strava")
        return user

    async def enqueue(self, user_id: str, scope: MigrationScope) -> MigrationStateResponse:
        """
        Queue a new migration (phase 1) for user.

        Raises:
            MigrationUserNotFoundError: Unknown user
            MigrationNotConnectedError: User has no Strava connection
            MigrationAlreadyActiveError: A migration is already active
        """
        await self._get_connected_user(user_id)

        removed = await self.jobs.delete_failed(user_id)
        if removed:
            logger.debug(f"Removed {removed} failed jobs for user {user_id}")

        now = self._clock()
        job = ActivitiesJob(
            user_id=user_id,
            period=scope.period,
            include_photos=scope.include_photos,
            include_segments=scope.include_segments,
            status=JobStatus.PENDING,
            next_page=1,
            imported=0,
            skipped=0,
            retry_count=0,
            max_retries=settings.migration_job_max_retries,
            priority=now,
            created_at=now,
            updated_at=now,
        )
        await self.jobs.enqueue(job)
        await self.progress.start(job, now)
        await self.db.commit()

        logger.info(
            f"Queued migration for user {user_id}: {scope.period.value}, "
            f"photos={scope.include_photos}, segments={scope.include_segments}"
        )
        return await self.get_state(user_id)

    async def cancel(self, user_id: str) -> int:
        """
        Cancel the user's active migration and reset their progress.

        Returns:
            Number of jobs removed
        """
        cancelled = await self.jobs.cancel_active(user_id)
        if await self.users.get_by_id(user_id) is not None:
            await self.progress.reset(user_id, self._clock())
        await self.db.commit()

        logger.info(f"Cancelled migration for user {user_id} ({cancelled} jobs)")
        return cancelled

    async def get_state(self, user_id: str) -> MigrationStateResponse:
        """User-facing state; NOT_STARTED if the user never migrated."""
        row = await self.progress_rows.get_for_user(user_id)
        if row is None:
            return MigrationStateResponse()

        return MigrationStateResponse(
            status=row.status,
            scope=MigrationScope.model_validate(row.scope) if row.scope else None,
            progress=ProgressInfo(
                phase=row.phase,
                totals=row.totals or {},
                queue_position=row.queue_position,
                estimated_minutes=row.estimated_minutes,
                wait_until=row.wait_until,
                started_at=row.started_at,
                updated_at=row.updated_at,
            ),
            report=MigrationReport.model_validate(row.report) if row.report else None,
            last_error=row.last_error,
        )

    async def verify(self, user_id: str) -> VerifyResult:
        """Which imported activities have no cached streams yet."""
        activities = await self.activities.get_strava_activities(user_id)
        cached = await self.streams.cached_strava_ids(user_id)

        missing = [
            a.strava_activity_id for a in activities
            if a.strava_activity_id not in cached
        ]
        return VerifyResult(
            total_activities=len(activities),
            with_streams=len(activities) - len(missing),
            missing_streams=missing,
        )

    async def fix(self, user_id: str, request: Optional[FixRequest] = None) -> FixResult:
        """
        Queue a Streams job for exactly the activities missing streams.

        With nothing missing the report is regenerated right away.

        Raises:
            MigrationUserNotFoundError: Unknown user
            MigrationNotConnectedError: User has no Strava connection
            MigrationAlreadyActiveError: A migration is already active
        """
        request = request or FixRequest()
        await self._get_connected_user(user_id)

        if await self.jobs.get_active(user_id):
            raise MigrationAlreadyActiveError(
                f"User {user_id} already has an active migration"
            )

        missing = (await self.verify(user_id)).missing_streams
        if not missing:
            await ReportAggregator(self.db, self._clock).generate(user_id)
            await self.db.commit()
            return FixResult(streams_queued=0)

        await self.jobs.delete_failed(user_id)

        now = self._clock()
        job = StreamsJob(
            user_id=user_id,
            period=MigrationPeriod.ALL,
            include_photos=request.include_photos,
            include_segments=request.include_segments,
            status=JobStatus.PENDING,
            remaining=missing,
            item_retries={},
            total_items=len(missing),
            fetched=0,
            failed=0,
            retry_count=0,
            max_retries=settings.migration_job_max_retries,
            priority=now,
            created_at=now,
            updated_at=now,
        )
        await self.jobs.enqueue(job)
        await self.progress.start(job, now)
        await self.db.commit()

        logger.info(f"Queued {len(missing)} missing streams for user {user_id}")
        return FixResult(streams_queued=len(missing))
