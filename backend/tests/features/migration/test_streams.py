"""
Tests for phase 2 (per-activity detail fetch).
"""

import gzip
import json

import pytest
from sqlalchemy import select

from app.features.activities import (
    Activity,
    ActivityPhoto,
    ActivityStream,
    Segment,
    SegmentEffort,
)
from app.features.migration import (
    JobRepository,
    JobStatus,
    ProgressRepository,
    ProgressStatus,
    RateLimitTracker,
    ReportAggregator,
    StreamFetcher,
)
from app.features.migration.importer import activity_from_strava
from app.shared.clock import next_quarter_hour_ms

from conftest import (
    NOW_MS,
    strava_activity,
    streams_job,
    tracker_with_budget,
)


async def claimed_streams_job(db, user_id, remaining, **kwargs):
    job = await JobRepository(db).enqueue(
        streams_job(user_id, remaining, status=JobStatus.PROCESSING, **kwargs)
    )
    await db.commit()
    return job


async def reclaim(db, job):
    """Put a job that went back to Pending into Processing again."""
    assert await JobRepository(db).transition(
        job, JobStatus.PENDING, JobStatus.PROCESSING, NOW_MS
    )


def make_fetcher(db, client, store, clock, budget=80):
    return StreamFetcher(
        db, client, tracker_with_budget(clock, budget), store,
        ReportAggregator(db, clock), clock=clock,
    )


async def add_activities(db, user_id, *strava_ids):
    for strava_id in strava_ids:
        db.add(activity_from_strava(
            strava_activity(strava_id), user_id, "Alice", "friends", NOW_MS
        ))
    await db.commit()


# =============================================================================
# Calls per item
# =============================================================================

class TestApiCallsPerItem:
    """Scope -> provider calls per work item."""

    @pytest.mark.parametrize("segments,photos,expected", [
        (False, False, 1),
        (True, False, 2),
        (False, True, 2),
        (True, True, 3),
    ])
    def test_calls_per_item(self, segments, photos, expected):
        job = streams_job("user-1", [], include_segments=segments, include_photos=photos)
        assert job.api_calls_per_item == expected

    @pytest.mark.asyncio
    async def test_batch_size_follows_scope(self, db, user, fake_strava, store, clock):
        job = await claimed_streams_job(
            db, user.id, [1, 2, 3, 4], include_segments=True, include_photos=True
        )

        async with fake_strava.client() as client:
            await make_fetcher(db, client, store, clock).run(job, "token", budget_hint=7)
            assert client.calls_made == 6

        assert job.remaining == [3, 4]


# =============================================================================
# Batching
# =============================================================================

class TestBatch:
    """Tests for one batch of a Streams job."""

    @pytest.mark.asyncio
    async def test_budget_hint_limits_batch(self, db, user, fake_strava, store, clock):
        job = await claimed_streams_job(db, user.id, [1, 2, 3])

        async with fake_strava.client() as client:
            outcome = await make_fetcher(db, client, store, clock).run(job, "token", budget_hint=2)

        assert outcome.pressure is False
        assert job.status == JobStatus.PENDING
        assert job.remaining == [3]
        assert job.fetched == 2
        assert fake_strava.paths() == ["/activities/1/streams", "/activities/2/streams"]

    @pytest.mark.asyncio
    async def test_at_least_one_item(self, db, user, fake_strava, store, clock):
        job = await claimed_streams_job(db, user.id, [1, 2], include_photos=True)

        async with fake_strava.client() as client:
            await make_fetcher(db, client, store, clock).run(job, "token", budget_hint=1)

        assert job.remaining == [2]

    @pytest.mark.asyncio
    async def test_streams_stored_compressed(self, db, user, fake_strava, store, clock):
        await add_activities(db, user.id, 1)
        job = await claimed_streams_job(db, user.id, [1, 2])

        async with fake_strava.client() as client:
            await make_fetcher(db, client, store, clock).run(job, "token", budget_hint=1)
        await db.commit()

        record = (await db.execute(select(ActivityStream))).scalar_one()
        assert record.id == "strava_1"
        assert record.object_path == f"streams/{user.id}/1.json.gz"
        assert record.stream_keys == ["latlng", "time"]

        payload = json.loads(gzip.decompress(await store.get(record.object_path)))
        assert payload["time"] == [0, 10, 20]

    @pytest.mark.asyncio
    async def test_drained_job_deleted_and_reported(self, db, user, fake_strava, store, clock):
        await add_activities(db, user.id, 1, 2)
        job = await claimed_streams_job(db, user.id, [1, 2])

        async with fake_strava.client() as client:
            outcome = await make_fetcher(db, client, store, clock).run(job, "token", budget_hint=10)
        await db.commit()

        assert outcome.completed is True
        assert await JobRepository(db).get_active(user.id) is None

        progress = await ProgressRepository(db).get_for_user(user.id)
        assert progress.status == ProgressStatus.DONE
        assert progress.report["total_activities"] == 2
        assert progress.report["total_streams"] == 2


# =============================================================================
# Rate limiting
# =============================================================================

class TestRateLimitMidBatch:
    """A 429 stops the batch and re-queues in order."""

    @pytest.mark.asyncio
    async def test_requeues_current_and_unattempted(self, db, user, fake_strava, store, clock):
        fake_strava.fail("/activities/2/streams", 429)
        job = await claimed_streams_job(db, user.id, [1, 2, 3, 4, 5])

        async with fake_strava.client() as client:
            outcome = await make_fetcher(db, client, store, clock).run(job, "token", budget_hint=4)

        assert outcome.pressure is True
        assert job.status == JobStatus.WAITING
        assert job.wait_until > NOW_MS
        assert job.remaining == [2, 3, 4, 5]
        assert job.fetched == 1
        assert job.retry_count == 0

    @pytest.mark.asyncio
    async def test_retry_queue_kept_behind(self, db, user, fake_strava, store, clock):
        fake_strava.fail("/activities/1/streams", 500)
        fake_strava.fail("/activities/3/streams", 429)
        job = await claimed_streams_job(db, user.id, [1, 2, 3, 4])

        async with fake_strava.client() as client:
            await make_fetcher(db, client, store, clock).run(job, "token", budget_hint=3)

        assert job.remaining == [3, 4, 1]
        assert job.item_retries == {"1": 1}

    @pytest.mark.asyncio
    async def test_photo_list_429_counts(self, db, user, fake_strava, store, clock):
        fake_strava.fail("/activities/1/photos", 429)
        job = await claimed_streams_job(db, user.id, [1], include_photos=True)

        async with fake_strava.client() as client:
            outcome = await make_fetcher(db, client, store, clock).run(job, "token", budget_hint=10)

        assert outcome.pressure is True
        assert job.remaining == [1]
        stored = (await db.execute(select(ActivityStream))).scalars().all()
        assert stored == []

    @pytest.mark.asyncio
    async def test_near_limit_stops_after_item(self, db, user, fake_strava, store, clock):
        tracker = RateLimitTracker(clock=clock)
        fake_strava.usage = [93, 93]
        job = await claimed_streams_job(db, user.id, [1, 2, 3, 4])

        async with fake_strava.client(tracker) as client:
            fetcher = StreamFetcher(
                db, client, tracker, store, ReportAggregator(db, clock), clock=clock
            )
            outcome = await fetcher.run(job, "token", budget_hint=10)

        assert outcome.pressure is True
        assert job.status == JobStatus.WAITING
        assert job.wait_until == next_quarter_hour_ms(NOW_MS) + 5000
        assert job.remaining == [3, 4]
        assert job.fetched == 2
        assert fake_strava.paths() == ["/activities/1/streams", "/activities/2/streams"]

    @pytest.mark.asyncio
    async def test_last_item_does_not_park_job(self, db, user, fake_strava, store, clock):
        tracker = RateLimitTracker(clock=clock)
        fake_strava.usage = [96, 96]
        job = await claimed_streams_job(db, user.id, [1, 2, 3])

        async with fake_strava.client(tracker) as client:
            fetcher = StreamFetcher(
                db, client, tracker, store, ReportAggregator(db, clock), clock=clock
            )
            outcome = await fetcher.run(job, "token", budget_hint=1)

        assert outcome.pressure is False
        assert job.status == JobStatus.PENDING
        assert job.remaining == [2, 3]


# =============================================================================
# Per-item retries
# =============================================================================

class TestItemRetries:
    """Non-429 item failures are retried at the back, three strikes."""

    @pytest.mark.asyncio
    async def test_zero_item_retries_gives_up_at_once(self, db, user, fake_strava, store, clock):
        fake_strava.fail("/activities/1/streams", 500)
        job = await claimed_streams_job(db, user.id, [1, 2, 3])

        async with fake_strava.client() as client:
            fetcher = StreamFetcher(
                db, client, tracker_with_budget(clock, 80), store,
                ReportAggregator(db, clock), clock=clock, item_max_retries=0,
            )
            await fetcher.run(job, "token", budget_hint=2)

        assert job.remaining == [3]
        assert job.item_retries == {}
        assert job.failed == 1

    @pytest.mark.asyncio
    async def test_three_failures_marks_failed(self, db, user, fake_strava, store, clock):
        fake_strava.fail("/activities/1/streams", 500, 500, 500)
        job = await claimed_streams_job(db, user.id, [1, 2])

        async with fake_strava.client() as client:
            fetcher = make_fetcher(db, client, store, clock)

            await fetcher.run(job, "token", budget_hint=10)
            assert job.remaining == [1]
            assert job.item_retries == {"1": 1}

            await reclaim(db, job)
            await fetcher.run(job, "token", budget_hint=10)
            assert job.remaining == [1]
            assert job.item_retries == {"1": 2}

            await reclaim(db, job)
            job_id = job.id
            outcome = await fetcher.run(job, "token", budget_hint=10)

        await db.commit()
        assert outcome.completed is True
        assert await JobRepository(db).get_by_id(job_id) is None

        progress = await ProgressRepository(db).get_for_user(user.id)
        assert progress.report["failed_streams"] == 1
        # never requested a fourth time
        assert fake_strava.paths().count("/activities/1/streams") == 3

    @pytest.mark.asyncio
    async def test_two_failures_then_success(self, db, user, fake_strava, store, clock):
        fake_strava.fail("/activities/1/streams", 500, 500)
        job = await claimed_streams_job(db, user.id, [1, 2])

        async with fake_strava.client() as client:
            fetcher = make_fetcher(db, client, store, clock)
            await fetcher.run(job, "token", budget_hint=10)
            await reclaim(db, job)
            await fetcher.run(job, "token", budget_hint=10)
            await reclaim(db, job)
            await fetcher.run(job, "token", budget_hint=10)

        await db.commit()
        progress = await ProgressRepository(db).get_for_user(user.id)
        assert progress.report["failed_streams"] == 0
        assert progress.report["total_streams"] == 2

    @pytest.mark.asyncio
    async def test_failed_item_writes_nothing(self, db, user, fake_strava, store, clock):
        fake_strava.details[1] = {"id": 1, "segment_efforts": [{"id": 9}]}  # no segment
        job = await claimed_streams_job(db, user.id, [1, 2], include_segments=True)

        async with fake_strava.client() as client:
            await make_fetcher(db, client, store, clock).run(job, "token", budget_hint=2)
        await db.commit()

        assert job.item_retries == {"1": 1}
        stored = (await db.execute(select(ActivityStream))).scalars().all()
        assert stored == []


# =============================================================================
# Segments and photos
# =============================================================================

def segment_effort(effort_id: int, segment_id: int, **extra) -> dict:
    effort = {
        "id": effort_id,
        "elapsed_time": 100,
        "moving_time": 95,
        "distance": 500.0,
        "start_date": "2026-10-01T08:10:00Z",
        "start_index": 0,
        "end_index": 2,
        "pr_rank": 1,
        "segment": {"id": segment_id, "name": f"Climb {segment_id}", "distance": 500.0},
    }
    effort.update(extra)
    return effort


class TestSegments:
    """Tests for segment/effort persistence."""

    @pytest.mark.asyncio
    async def test_segments_and_efforts_saved(self, db, user, fake_strava, store, clock):
        await add_activities(db, user.id, 1)
        fake_strava.details[1] = {
            "id": 1,
            "segment_efforts": [segment_effort(11, 500), segment_effort(12, 501)],
        }
        job = await claimed_streams_job(db, user.id, [1], include_segments=True)

        async with fake_strava.client() as client:
            await make_fetcher(db, client, store, clock).run(job, "token", budget_hint=10)
        await db.commit()

        efforts = (await db.execute(select(SegmentEffort))).scalars().all()
        assert {e.id for e in efforts} == {"strava_11", "strava_12"}
        effort = next(e for e in efforts if e.id == "strava_11")
        assert effort.elapsed_time_ms == 100_000
        assert effort.avg_speed_kmh == pytest.approx(18.0)

        segment = await db.get(Segment, "strava_500")
        assert segment.start_latlng == [43.0, 76.0]
        assert segment.end_latlng == [43.2, 76.2]

        activity = await db.get(Activity, "strava_1")
        await db.refresh(activity)
        assert activity.segment_effort_count == 2

    @pytest.mark.asyncio
    async def test_known_segments_not_duplicated(self, db, user, fake_strava, store, clock):
        await add_activities(db, user.id, 1, 2)
        db.add(Segment(id="strava_500", strava_segment_id=500, name="Climb", updated_at=NOW_MS))
        await db.commit()
        fake_strava.details[1] = {"id": 1, "segment_efforts": [segment_effort(11, 500)]}
        fake_strava.details[2] = {"id": 2, "segment_efforts": [segment_effort(21, 500)]}
        job = await claimed_streams_job(db, user.id, [1, 2], include_segments=True)

        async with fake_strava.client() as client:
            await make_fetcher(db, client, store, clock).run(job, "token", budget_hint=10)
        await db.commit()

        segments = (await db.execute(select(Segment))).scalars().all()
        assert len(segments) == 1
        efforts = (await db.execute(select(SegmentEffort))).scalars().all()
        assert len(efforts) == 2


class TestPhotos:
    """Tests for photo re-hosting."""

    @pytest.mark.asyncio
    async def test_photos_rehosted(self, db, user, fake_strava, store, clock):
        await add_activities(db, user.id, 1)
        fake_strava.photos[1] = [{
            "unique_id": "abc",
            "caption": "Summit",
            "urls": {"100": "https://cdn.strava.test/s.jpg", "2048": "https://cdn.strava.test/l.jpg"},
        }]
        job = await claimed_streams_job(db, user.id, [1], include_photos=True)

        async with fake_strava.client() as client:
            await make_fetcher(db, client, store, clock).run(job, "token", budget_hint=10)
            # CDN downloads are not counted as API calls
            assert client.calls_made == 2
        await db.commit()

        photo = (await db.execute(select(ActivityPhoto))).scalar_one()
        assert photo.rehosted == 1
        assert photo.url.startswith("file://")
        assert photo.caption == "Summit"
        assert await store.get(f"photos/{user.id}/1/abc.jpg") == b"\xff\xd8jpeg"

        activity = await db.get(Activity, "strava_1")
        await db.refresh(activity)
        assert activity.photo_count == 1

    @pytest.mark.asyncio
    async def test_download_failure_keeps_original_url(self, db, user, fake_strava, store, clock):
        await add_activities(db, user.id, 1)
        fake_strava.cdn_status = 404
        fake_strava.photos[1] = [{"unique_id": "abc", "urls": {"2048": "https://cdn.strava.test/l.jpg"}}]
        job = await claimed_streams_job(db, user.id, [1], include_photos=True)

        async with fake_strava.client() as client:
            outcome = await make_fetcher(db, client, store, clock).run(job, "token", budget_hint=10)
        await db.commit()

        assert outcome.completed is True
        photo = (await db.execute(select(ActivityPhoto))).scalar_one()
        assert photo.rehosted == 0
        assert photo.url == "https://cdn.strava.test/l.jpg"
