"""
Tests for queue position / ETA estimates.
"""

import pytest

from app.features.migration import (
    JobRepository,
    JobStatus,
    MigrationPeriod,
    ProgressRepository,
    QueuePositionEstimator,
)
from app.features.migration.estimator import estimate_queue, remaining_calls
from app.shared.clock import MINUTE_MS

from conftest import NOW_MS, activities_job, create_user, streams_job


class TestRemainingCalls:
    """Calls still needed per job."""

    @pytest.mark.parametrize("period,next_page,expected", [
        (MigrationPeriod.RECENT_90, 1, 5),
        (MigrationPeriod.RECENT_90, 4, 2),
        (MigrationPeriod.RECENT_90, 9, 0),
        (MigrationPeriod.RECENT_180, 1, 10),
        (MigrationPeriod.ALL, 1, 30),
    ])
    def test_activities_job(self, period, next_page, expected):
        job = activities_job("u", period=period, next_page=next_page)
        assert remaining_calls(job) == expected

    def test_streams_job_scales_with_scope(self):
        job = streams_job("u", [1, 2, 3, 4], include_photos=True)
        assert remaining_calls(job) == 8


class TestEstimateQueue:
    """Shared-budget ETA."""

    def test_positions_follow_order(self):
        jobs = [activities_job("a"), activities_job("b"), activities_job("c")]

        estimates = estimate_queue(jobs, NOW_MS)

        assert [(e.user_id, e.queue_position) for e in estimates] == [
            ("a", 0), ("b", 1), ("c", 2),
        ]

    def test_everyone_shares_the_same_eta(self):
        # 60 + 5 calls at 6 per minute
        jobs = [streams_job("a", range(60)), activities_job("b")]

        estimates = estimate_queue(jobs, NOW_MS)

        assert [e.estimated_minutes for e in estimates] == [11, 11]

    def test_waiting_job_never_before_wait_ends(self):
        jobs = [
            activities_job(
                "a", status=JobStatus.WAITING, wait_until=NOW_MS + 20 * MINUTE_MS + 1
            ),
            activities_job("b"),
        ]

        a, b = estimate_queue(jobs, NOW_MS)

        assert a.estimated_minutes == 21
        assert a.wait_until == NOW_MS + 20 * MINUTE_MS + 1
        assert b.estimated_minutes == 2
        assert b.wait_until is None

    def test_expired_wait_uses_shared_eta(self):
        jobs = [activities_job("a", status=JobStatus.WAITING, wait_until=NOW_MS - 1)]

        (a,) = estimate_queue(jobs, NOW_MS)

        assert a.estimated_minutes == 1

    def test_empty_queue(self):
        assert estimate_queue([], NOW_MS) == []


class TestQueuePositionEstimator:
    """Estimates written to the progress projection."""

    @pytest.mark.asyncio
    async def test_refresh_writes_progress(self, db, user, clock):
        await create_user(db, "user-2", "Bob")
        jobs = JobRepository(db)
        await jobs.enqueue(activities_job("user-2", updated_at=NOW_MS - 1000))
        await jobs.enqueue(activities_job(user.id, updated_at=NOW_MS))
        await db.commit()

        estimates = await QueuePositionEstimator(db, clock).refresh()
        await db.commit()

        assert [e.user_id for e in estimates] == ["user-2", user.id]
        progress = await ProgressRepository(db).get_many(["user-2", user.id])
        assert progress["user-2"].queue_position == 0
        assert progress[user.id].queue_position == 1
        assert progress[user.id].estimated_minutes == 2

    @pytest.mark.asyncio
    async def test_failed_jobs_not_counted(self, db, user, clock):
        await JobRepository(db).enqueue(activities_job(user.id, status=JobStatus.FAILED))
        await db.commit()

        assert await QueuePositionEstimator(db, clock).refresh() == []
