"""
Phase 1: activity list import.

One call = one page of the athlete's activity list. Cycling activities
that are neither already imported nor a duplicate of a natively recorded
ride are written as new Activity rows. A short page ends the phase: the
Activities job is replaced by a Streams job for every imported activity
without a cached detail record.
"""

import logging
from bisect import bisect_left
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.features.activities import (
    Activity,
    ActivityRepository,
    ActivitySource,
    ActivityStreamRepository,
)
from app.features.strava import StravaClient, StravaRateLimitError
from app.shared.clock import Clock, DAY_MS, MINUTE_MS, now_ms
from .config import CYCLING_ACTIVITY_TYPES, MigrationConfig
from .models import ActivitiesJob, JobStatus, MigrationPeriod, StreamsJob
from .outcome import WorkOutcome
from .rate_limit import RateLimitTracker
from .repository import JobRepository

logger = logging.getLogger(__name__)

MPS_TO_KMH = 3.6
KJ_TO_KCAL = 1.045


# =============================================================================
# Conversion
# =============================================================================

def parse_start_ms(value: str) -> int:
    """Strava ISO-8601 start date ("2024-05-01T07:30:00Z") to epoch ms."""
    start = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return int(start.timestamp() * 1000)


def _kmh(mps: Optional[float]) -> Optional[float]:
    return round(mps * MPS_TO_KMH, 2) if mps is not None else None


def _ms(seconds: Optional[float]) -> Optional[int]:
    return int(seconds * 1000) if seconds is not None else None


def activity_from_strava(
    data: dict,
    user_id: str,
    nickname: str,
    visibility: str,
    now: int,
) -> Activity:
    """Build an Activity row from a Strava list item."""
    strava_id = int(data["id"])
    start_time = parse_start_ms(data["start_date"])
    elapsed_ms = _ms(data.get("elapsed_time"))

    kilojoules = data.get("kilojoules")
    calories = round(kilojoules * KJ_TO_KCAL) if kilojoules is not None else None

    summary_map = data.get("map") or {}

    return Activity(
        id=f"strava_{strava_id}",
        user_id=user_id,
        nickname=nickname,
        source=ActivitySource.STRAVA,
        strava_activity_id=strava_id,
        title=data.get("name"),
        visibility=visibility,
        start_time=start_time,
        end_time=start_time + elapsed_ms if elapsed_ms is not None else None,
        distance_m=data.get("distance"),
        riding_time_ms=_ms(data.get("moving_time")),
        elevation_gain_m=data.get("total_elevation_gain"),
        avg_speed_kmh=_kmh(data.get("average_speed")),
        max_speed_kmh=_kmh(data.get("max_speed")),
        avg_heartrate=data.get("average_heartrate"),
        max_heartrate=data.get("max_heartrate"),
        avg_power=data.get("average_watts"),
        max_power=data.get("max_watts"),
        normalized_power=data.get("weighted_average_watts"),
        avg_cadence=data.get("average_cadence"),
        calories=calories,
        thumbnail_track=summary_map.get("summary_polyline"),
        photo_count=0,
        segment_effort_count=0,
        created_at=now,
    )


def period_start_seconds(period: MigrationPeriod, now: int) -> Optional[int]:
    """`after` filter (epoch seconds) for the list endpoint, None = all time."""
    days = MigrationConfig.PERIOD_DAYS[MigrationPeriod(period)]
    if days is None:
        return None
    return (now - days * DAY_MS) // 1000


def near_any(start_time: int, sorted_times: Sequence[int], window_ms: int) -> bool:
    """True if some time in sorted_times is within window_ms of start_time."""
    index = bisect_left(sorted_times, start_time - window_ms)
    return index < len(sorted_times) and sorted_times[index] <= start_time + window_ms


# =============================================================================
# Importer
# =============================================================================

class ActivityImporter:
    """
    Imports one list page per call.

    Usage:
        importer = ActivityImporter(db, client, tracker)
        outcome = await importer.run(job, access_token, user.nickname, user.default_visibility)
    """

    def __init__(
        self,
        db: AsyncSession,
        client: StravaClient,
        tracker: RateLimitTracker,
        clock: Clock = now_ms,
        dedup_window_minutes: Optional[int] = None,
        page_size: int = MigrationConfig.ACTIVITIES_PER_PAGE,
    ):
        self.db = db
        self.client = client
        self.tracker = tracker
        self.jobs = JobRepository(db)
        self.activities = ActivityRepository(db)
        self.streams = ActivityStreamRepository(db)
        self._clock = clock
        if dedup_window_minutes is None:
            dedup_window_minutes = settings.migration_dedup_window_minutes
        self.dedup_window_ms = dedup_window_minutes * MINUTE_MS
        self.page_size = page_size

    async def run(
        self,
        job: ActivitiesJob,
        access_token: str,
        nickname: str,
        visibility: str,
    ) -> WorkOutcome:
        """
        Fetch and import page `job.next_page`.

        A 429 parks the job in Waiting and reports pressure. Any other
        provider error propagates to the scheduler.
        """
        now = self._clock()
        try:
            page = await self.client.list_activities(
                access_token,
                page=job.next_page,
                per_page=self.page_size,
                after=period_start_seconds(job.period, now),
            )
        except StravaRateLimitError as e:
            return await self._wait_for_window(job, str(e))

        imported, skipped = await self._import_page(job.user_id, page, nickname, visibility)
        logger.info(
            f"Job {job.id}: page {job.next_page} -> "
            f"{imported} imported, {skipped} skipped"
        )

        total_imported = (job.imported or 0) + imported
        total_skipped = (job.skipped or 0) + skipped

        if len(page) < self.page_size:
            return await self._finish_phase(job, total_imported, total_skipped)

        moved = await self.jobs.transition(
            job, JobStatus.PROCESSING, JobStatus.PENDING, self._clock(),
            next_page=job.next_page + 1,
            imported=total_imported,
            skipped=total_skipped,
            retry_count=0,
            last_error=None,
        )
        return WorkOutcome(job=job if moved else None)

    async def _import_page(
        self,
        user_id: str,
        page: list[dict],
        nickname: str,
        visibility: str,
    ) -> tuple[int, int]:
        """Write new cycling activities from one page. Returns (imported, skipped)."""
        known_ids = await self.activities.imported_strava_ids(user_id)
        native_times = sorted(await self.activities.native_start_times(user_id))
        now = self._clock()

        new_activities = []
        for data in page:
            if data.get("type") not in CYCLING_ACTIVITY_TYPES:
                continue

            strava_id = int(data["id"])
            if strava_id in known_ids:
                continue

            start_time = parse_start_ms(data["start_date"])
            if near_any(start_time, native_times, self.dedup_window_ms):
                logger.debug(f"Skipping {strava_id}: recorded natively at the same time")
                continue

            known_ids.add(strava_id)
            new_activities.append(
                activity_from_strava(data, user_id, nickname, visibility, now)
            )

        if new_activities:
            await self.activities.add_all(new_activities)

        return len(new_activities), len(page) - len(new_activities)

    async def _finish_phase(
        self,
        job: ActivitiesJob,
        imported: int,
        skipped: int
    ) -> WorkOutcome:
        """Replace the Activities job with a Streams job."""
        if not await self.jobs.delete_if_status(job, JobStatus.PROCESSING):
            logger.info(f"Job {job.id} vanished before phase change (cancelled)")
            return WorkOutcome()

        cached = await self.streams.cached_strava_ids(job.user_id)
        activities = await self.activities.get_strava_activities(job.user_id)
        remaining = [
            a.strava_activity_id for a in activities
            if a.strava_activity_id not in cached
        ]

        now = self._clock()
        streams_job = StreamsJob(
            user_id=job.user_id,
            **job.scope_fields(),
            status=JobStatus.PENDING,
            remaining=remaining,
            item_retries={},
            total_items=len(remaining),
            fetched=0,
            failed=0,
            retry_count=0,
            max_retries=job.max_retries,
            priority=job.priority,
            created_at=now,
            updated_at=now,
        )
        self.db.add(streams_job)
        await self.db.flush()

        logger.info(
            f"User {job.user_id}: activity import done "
            f"({imported} imported, {skipped} skipped), "
            f"{len(remaining)} activities queued for streams"
        )
        return WorkOutcome(job=streams_job, completed=True)

    async def _wait_for_window(self, job: ActivitiesJob, error: str) -> WorkOutcome:
        pressure = self.tracker.check_pressure()
        now = self._clock()
        wait_until = now + pressure.retry_after_seconds * 1000
        logger.warning(
            f"Job {job.id}: rate limited on page {job.next_page}, "
            f"waiting {pressure.retry_after_seconds}s"
        )
        moved = await self.jobs.transition(
            job, JobStatus.PROCESSING, JobStatus.WAITING, now,
            wait_until=wait_until,
            last_error=error[:500],
        )
        return WorkOutcome(job=job if moved else None, pressure=True)
