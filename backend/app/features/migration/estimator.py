"""
Queue position and ETA.

Every active job shares one provider budget, so every job gets the same
shared-budget ETA: all remaining calls in the queue divided by the
calls available per minute. A Waiting job cannot finish before its wait
expires, whichever is later wins.
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.clock import Clock, MINUTE_MS, now_ms
from .config import MigrationConfig
from .models import ActivitiesJob, JobStatus, MigrationJob, MigrationPeriod, StreamsJob
from .progress import ProgressService
from .repository import JobRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QueueEstimate:
    user_id: str
    queue_position: int
    estimated_minutes: int
    wait_until: Optional[int]


def remaining_calls(job: MigrationJob) -> int:
    """Provider calls the job still needs (estimate for Activities jobs)."""
    if isinstance(job, StreamsJob):
        return len(job.remaining or []) * job.api_calls_per_item
    if isinstance(job, ActivitiesJob):
        pages = MigrationConfig.PAGE_ESTIMATES[MigrationPeriod(job.period)]
        return max(0, pages - job.pages_fetched)
    return 0


def estimate_queue(
    jobs: list[MigrationJob],
    now: int,
    budget_per_minute: int = MigrationConfig.BUDGET_PER_MINUTE,
) -> list[QueueEstimate]:
    """
    Estimates for active jobs, which must already be in dispatch order.
    """
    total_calls = sum(remaining_calls(job) for job in jobs)
    shared_minutes = math.ceil(total_calls / budget_per_minute)

    estimates = []
    for position, job in enumerate(jobs):
        minutes = shared_minutes
        wait_until = None
        if job.status == JobStatus.WAITING and job.wait_until is not None:
            wait_until = job.wait_until
            minutes = max(minutes, math.ceil(max(0, wait_until - now) / MINUTE_MS))
        estimates.append(QueueEstimate(job.user_id, position, minutes, wait_until))
    return estimates


class QueuePositionEstimator:
    """Recomputes queue position and ETA for every active job."""

    def __init__(self, db: AsyncSession, clock: Clock = now_ms):
        self.jobs = JobRepository(db)
        self.progress = ProgressService(db)
        self._clock = clock

    async def refresh(self) -> list[QueueEstimate]:
        jobs = await self.jobs.list_active()
        estimates = estimate_queue(jobs, self._clock())

        for estimate in estimates:
            await self.progress.set_estimate(
                estimate.user_id,
                queue_position=estimate.queue_position,
                estimated_minutes=estimate.estimated_minutes,
                wait_until=estimate.wait_until,
            )

        if estimates:
            logger.debug(
                f"Queue: {len(estimates)} active jobs, "
                f"ETA {estimates[0].estimated_minutes} min"
            )
        return estimates
