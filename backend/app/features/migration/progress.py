"""
User-facing progress projection.

The only writer of MigrationProgress rows. Called by the scheduler after
every job step, by the estimator after every tick and by the user
operations (enqueue / cancel / fix).
"""

from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    ActivitiesJob,
    JobStatus,
    MigrationJob,
    MigrationPhase,
    MigrationProgress,
    ProgressStatus,
)
from .repository import ProgressRepository
from .schemas import MigrationReport, MigrationScope

STATUS_FOR_JOB = {
    JobStatus.PENDING: ProgressStatus.QUEUED,
    JobStatus.PROCESSING: ProgressStatus.RUNNING,
    JobStatus.WAITING: ProgressStatus.WAITING,
    JobStatus.FAILED: ProgressStatus.FAILED,
}


def phase_for(job: MigrationJob) -> MigrationPhase:
    if isinstance(job, ActivitiesJob):
        return MigrationPhase.ACTIVITIES
    return MigrationPhase.STREAMS


class ProgressService:
    """Writes the per-user MigrationProgress projection."""

    def __init__(self, db: AsyncSession):
        self.repository = ProgressRepository(db)

    async def start(self, job: MigrationJob, now: int) -> MigrationProgress:
        """Fresh projection for a newly queued job (previous report cleared)."""
        scope = MigrationScope(
            period=job.period,
            include_photos=job.include_photos,
            include_segments=job.include_segments,
        )
        return await self.repository.upsert(
            job.user_id,
            status=ProgressStatus.QUEUED,
            phase=phase_for(job),
            scope=scope.model_dump(mode="json"),
            totals=job.totals(),
            queue_position=None,
            estimated_minutes=None,
            wait_until=None,
            last_error=None,
            report=None,
            started_at=now,
            updated_at=now,
        )

    async def sync_job(self, job: MigrationJob, now: int) -> MigrationProgress:
        """Mirror the job's current status, phase and counters."""
        waiting = job.status == JobStatus.WAITING
        return await self.repository.upsert(
            job.user_id,
            status=STATUS_FOR_JOB[JobStatus(job.status)],
            phase=phase_for(job),
            totals=job.totals(),
            wait_until=job.wait_until if waiting else None,
            last_error=job.last_error,
            updated_at=now,
        )

    async def set_estimate(
        self,
        user_id: str,
        queue_position: int,
        estimated_minutes: int,
        wait_until: int | None,
    ) -> MigrationProgress:
        return await self.repository.upsert(
            user_id,
            queue_position=queue_position,
            estimated_minutes=estimated_minutes,
            wait_until=wait_until,
        )

    async def mark_failed(self, user_id: str, error: str, now: int) -> MigrationProgress:
        return await self.repository.upsert(
            user_id,
            status=ProgressStatus.FAILED,
            last_error=error[:500],
            queue_position=None,
            estimated_minutes=None,
            wait_until=None,
            updated_at=now,
        )

    async def mark_done(
        self,
        user_id: str,
        report: MigrationReport,
        now: int
    ) -> MigrationProgress:
        return await self.repository.upsert(
            user_id,
            status=ProgressStatus.DONE,
            phase=MigrationPhase.COMPLETE,
            report=report.model_dump(mode="json"),
            queue_position=None,
            estimated_minutes=None,
            wait_until=None,
            last_error=None,
            updated_at=now,
        )

    async def reset(self, user_id: str, now: int) -> MigrationProgress:
        return await self.repository.reset(user_id, now)
