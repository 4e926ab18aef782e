"""
Migration repositories.

Data access layer for the job queue, the shared rate-limit row and the
user-facing progress projection.

Every job status change is a conditional UPDATE/DELETE on the stored
status (compare-and-swap). A caller that loses the race gets False back
and must treat the job as unavailable.
"""

import logging
from typing import Collection

from sqlalchemy import select, update, delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.repository import BaseRepository
from .exceptions import MigrationAlreadyActiveError
from .models import (
    ACTIVE_STATUSES,
    JobStatus,
    MigrationJob,
    MigrationProgress,
    ProgressStatus,
    RateLimitState,
)

logger = logging.getLogger(__name__)


class JobRepository(BaseRepository[MigrationJob]):
    """Repository for migration jobs (the JobStore)."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, MigrationJob)

    async def get_by_id(self, id: str) -> MigrationJob | None:
        """Get job by ID, always re-read from the database."""
        result = await self.db.execute(
            select(MigrationJob)
            .where(MigrationJob.id == id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_active(self, user_id: str) -> MigrationJob | None:
        """Get the user's active job, if any."""
        result = await self.db.execute(
            select(MigrationJob)
            .where(MigrationJob.user_id == user_id)
            .where(MigrationJob.status.in_(ACTIVE_STATUSES))
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def enqueue(self, job: MigrationJob) -> MigrationJob:
        """
        Persist a new job.

        Raises:
            MigrationAlreadyActiveError: User already has an active job
        """
        if await self.get_active(job.user_id):
            raise MigrationAlreadyActiveError(
                f"User {job.user_id} already has an active migration"
            )

        self.db.add(job)
        try:
            await self.db.flush()
        except IntegrityError as e:
            # Lost a race with a concurrent enqueue
            await self.db.rollback()
            raise MigrationAlreadyActiveError(
                f"User {job.user_id} already has an active migration"
            ) from e
        return job

    async def cancel_active(self, user_id: str) -> int:
        """
        Delete all active jobs for user.

        Returns:
            Number of jobs deleted
        """
        result = await self.db.execute(
            delete(MigrationJob)
            .where(MigrationJob.user_id == user_id)
            .where(MigrationJob.status.in_(ACTIVE_STATUSES))
        )
        return result.rowcount

    async def delete_failed(self, user_id: str) -> int:
        result = await self.db.execute(
            delete(MigrationJob)
            .where(MigrationJob.user_id == user_id)
            .where(MigrationJob.status == JobStatus.FAILED)
        )
        return result.rowcount

    async def find_oldest_pending(
        self,
        exclude_ids: Collection[str] = ()
    ) -> MigrationJob | None:
        """
        Next job to dispatch.

        Ordered by updated_at so users are served round-robin; priority
        (creation time) only breaks ties.
        """
        query = (
            select(MigrationJob)
            .where(MigrationJob.status == JobStatus.PENDING)
            .order_by(MigrationJob.updated_at, MigrationJob.priority, MigrationJob.id)
            .limit(1)
            .execution_options(populate_existing=True)
        )
        if exclude_ids:
            query = query.where(MigrationJob.id.not_in(list(exclude_ids)))

        result = await self.db.execute(query)
        return result.scalars().first()

    async def transition(
        self,
        job: MigrationJob,
        from_status: JobStatus,
        to_status: JobStatus,
        now: int,
        **values
    ) -> bool:
        """
        Atomically move job from one status to another.

        Extra column values (cursor, counters, errors) are written in the
        same statement. Fails silently (returns False) if the stored status
        is not `from_status` or the job no longer exists.
        """
        entity = type(job)
        result = await self.db.execute(
            update(entity)
            .where(entity.id == job.id)
            .where(entity.status == from_status)
            .values(status=to_status, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.debug(
                f"Transition {from_status.value}->{to_status.value} lost for job {job.id}"
            )
            return False
        await self.db.refresh(job)
        return True

    async def delete_if_status(self, job: MigrationJob, status: JobStatus) -> bool:
        """Delete job only if it is still in `status`."""
        result = await self.db.execute(
            delete(MigrationJob)
            .where(MigrationJob.id == job.id)
            .where(MigrationJob.status == status)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        if job in self.db:
            self.db.expunge(job)
        return True

    async def reclaim_stale_processing(self, older_than: int) -> int:
        """Processing jobs not updated since `older_than` go back to Pending."""
        result = await self.db.execute(
            update(MigrationJob)
            .where(MigrationJob.status == JobStatus.PROCESSING)
            .where(MigrationJob.updated_at < older_than)
            .values(status=JobStatus.PENDING)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def release_expired_waits(self, now: int) -> int:
        """Waiting jobs whose wait_until has passed go back to Pending."""
        result = await self.db.execute(
            update(MigrationJob)
            .where(MigrationJob.status == JobStatus.WAITING)
            .where(MigrationJob.wait_until <= now)
            .values(status=JobStatus.PENDING, wait_until=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    async def list_active(
        self,
        statuses: Collection[JobStatus] = ACTIVE_STATUSES
    ) -> list[MigrationJob]:
        """Active jobs in dispatch order (oldest updated_at first)."""
        result = await self.db.execute(
            select(MigrationJob)
            .where(MigrationJob.status.in_(list(statuses)))
            .order_by(MigrationJob.updated_at, MigrationJob.priority, MigrationJob.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())


class RateLimitRepository(BaseRepository[RateLimitState]):
    """Repository for the single shared rate-limit row."""

    STATE_ID = 1

    def __init__(self, db: AsyncSession):
        super().__init__(db, RateLimitState)

    async def get_state(self) -> RateLimitState | None:
        return await self.get_by_id(self.STATE_ID)

    async def save_state(self, **values) -> RateLimitState:
        """Upsert the shared row (read-modify-write, last writer wins)."""
        state = await self.get_state()
        if state is None:
            state = RateLimitState(id=self.STATE_ID, **values)
            self.db.add(state)
        else:
            for key, value in values.items():
                setattr(state, key, value)
        await self.db.flush()
        return state


class ProgressRepository(BaseRepository[MigrationProgress]):
    """Repository for the user-facing progress projection."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, MigrationProgress)

    async def get_for_user(self, user_id: str) -> MigrationProgress | None:
        return await self.get_by(user_id=user_id)

    async def get_many(self, user_ids: Collection[str]) -> dict[str, MigrationProgress]:
        if not user_ids:
            return {}
        result = await self.db.execute(
            select(MigrationProgress).where(MigrationProgress.user_id.in_(list(user_ids)))
        )
        return {p.user_id: p for p in result.scalars().all()}

    async def upsert(self, user_id: str, **values) -> MigrationProgress:
        progress = await self.get_for_user(user_id)
        if progress is None:
            progress = MigrationProgress(user_id=user_id, **values)
            self.db.add(progress)
        else:
            for key, value in values.items():
                setattr(progress, key, value)
        await self.db.flush()
        return progress

    async def reset(self, user_id: str, now: int) -> MigrationProgress:
        """Back to NOT_STARTED with progress and report cleared."""
        return await self.upsert(
            user_id,
            status=ProgressStatus.NOT_STARTED,
            phase=None,
            scope=None,
            totals=None,
            queue_position=None,
            estimated_minutes=None,
            wait_until=None,
            last_error=None,
            report=None,
            started_at=None,
            updated_at=now,
        )
