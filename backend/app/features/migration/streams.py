"""
Phase 2: per-activity detail fetch.

Each work item is one imported activity. Depending on the job scope an
item costs 1 to 3 provider calls:

    streams                 always
    activity detail         include_segments (segment efforts)
    photo list              include_photos

Items are processed one at a time so a 429 can stop the batch exactly
where it happened.
"""

import gzip
import json
import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.features.activities import (
    ActivityPhoto,
    ActivityPhotoRepository,
    ActivityRepository,
    ActivityStream,
    Segment,
    SegmentEffort,
    SegmentRepository,
)
from app.features.storage import ObjectStore, ObjectStoreError
from app.features.strava import StravaClient, StravaError, StravaRateLimitError
from app.shared.clock import Clock, now_ms
from .importer import parse_start_ms
from .models import JobStatus, StreamsJob
from .outcome import WorkOutcome
from .rate_limit import RateLimitTracker
from .report import ReportAggregator
from .repository import JobRepository

logger = logging.getLogger(__name__)

# Per-item failures that are retried at the back of the queue.
# Anything else (database errors) aborts the batch.
ITEM_ERRORS = (StravaError, ObjectStoreError, KeyError, ValueError, TypeError)


def stream_path(user_id: str, strava_id: int) -> str:
    return f"streams/{user_id}/{strava_id}.json.gz"


def photo_path(user_id: str, strava_id: int, photo_id: str) -> str:
    return f"photos/{user_id}/{strava_id}/{photo_id}.jpg"


def _latlng_at(latlng: Optional[list], index: Optional[int]) -> Optional[list]:
    if not latlng or index is None or not 0 <= index < len(latlng):
        return None
    return latlng[index]


def _largest_url(urls: Optional[dict]) -> Optional[str]:
    """Photo `urls` is keyed by size ("100", "2048"); pick the largest."""
    if not urls:
        return None
    size = max(urls, key=lambda s: int(s) if str(s).isdigit() else 0)
    return urls[size]


class StreamFetcher:
    """
    Processes one batch of a Streams job.

    Usage:
        fetcher = StreamFetcher(db, client, tracker, store, ReportAggregator(db))
        outcome = await fetcher.run(job, access_token, budget_hint=40)
    """

    def __init__(
        self,
        db: AsyncSession,
        client: StravaClient,
        tracker: RateLimitTracker,
        store: ObjectStore,
        report: ReportAggregator,
        clock: Clock = now_ms,
        item_max_retries: Optional[int] = None,
    ):
        self.db = db
        self.client = client
        self.tracker = tracker
        self.store = store
        self.report = report
        self.jobs = JobRepository(db)
        self.activities = ActivityRepository(db)
        self.segments = SegmentRepository(db)
        self.photos = ActivityPhotoRepository(db)
        self._clock = clock
        if item_max_retries is None:
            item_max_retries = settings.migration_item_max_retries
        self.item_max_retries = item_max_retries

    async def run(self, job: StreamsJob, access_token: str, budget_hint: int) -> WorkOutcome:
        remaining = list(job.remaining or [])
        retries = dict(job.item_retries or {})

        batch_size = min(max(1, budget_hint // job.api_calls_per_item), len(remaining))
        batch, rest = remaining[:batch_size], remaining[batch_size:]

        retry_later = []
        fetched = failed = 0

        for index, strava_id in enumerate(batch):
            try:
                await self._fetch_item(job, access_token, strava_id)
            except StravaRateLimitError as e:
                return await self._wait_for_window(
                    job,
                    remaining=batch[index:] + rest + retry_later,
                    item_retries=retries,
                    fetched=(job.fetched or 0) + fetched,
                    failed=(job.failed or 0) + failed,
                    error=str(e),
                )
            except ITEM_ERRORS as e:
                key = str(strava_id)
                retries[key] = retries.get(key, 0) + 1
                if retries[key] < self.item_max_retries:
                    logger.warning(
                        f"Job {job.id}: activity {strava_id} failed "
                        f"(attempt {retries[key]}), re-queued: {e}"
                    )
                    retry_later.append(strava_id)
                else:
                    logger.warning(
                        f"Job {job.id}: activity {strava_id} failed "
                        f"{retries[key]} times, giving up: {e}"
                    )
                    retries.pop(key)
                    failed += 1
                continue

            retries.pop(str(strava_id), None)
            fetched += 1

            if index + 1 < len(batch) and self.tracker.check_pressure().paused:
                return await self._wait_for_window(
                    job,
                    remaining=batch[index + 1:] + rest + retry_later,
                    item_retries=retries,
                    fetched=(job.fetched or 0) + fetched,
                    failed=(job.failed or 0) + failed,
                    error="Rate limit nearly exhausted",
                )

        new_remaining = rest + retry_later
        total_fetched = (job.fetched or 0) + fetched
        total_failed = (job.failed or 0) + failed

        logger.info(
            f"Job {job.id}: batch of {len(batch)} -> {fetched} fetched, "
            f"{failed} failed, {len(new_remaining)} remaining"
        )

        if not new_remaining:
            return await self._finish(job, total_failed)

        moved = await self.jobs.transition(
            job, JobStatus.PROCESSING, JobStatus.PENDING, self._clock(),
            remaining=new_remaining,
            item_retries=retries,
            fetched=total_fetched,
            failed=total_failed,
            retry_count=0,
            last_error=None,
        )
        return WorkOutcome(job=job if moved else None)

    async def _finish(self, job: StreamsJob, failed: int) -> WorkOutcome:
        user_id = job.user_id
        if not await self.jobs.delete_if_status(job, JobStatus.PROCESSING):
            logger.info(f"Job {job.id} vanished before completion (cancelled)")
            return WorkOutcome()

        await self.report.generate(user_id, failed_streams=failed)
        logger.info(f"User {user_id}: migration complete")
        return WorkOutcome(completed=True)

    async def _wait_for_window(self, job: StreamsJob, error: str, **values) -> WorkOutcome:
        pressure = self.tracker.check_pressure()
        now = self._clock()
        logger.warning(
            f"Job {job.id}: rate limited, {len(values['remaining'])} items "
            f"re-queued, waiting {pressure.retry_after_seconds}s"
        )
        moved = await self.jobs.transition(
            job, JobStatus.PROCESSING, JobStatus.WAITING, now,
            wait_until=now + pressure.retry_after_seconds * 1000,
            last_error=error[:500],
            **values
        )
        return WorkOutcome(job=job if moved else None, pressure=True)

    # -------------------------------------------------------------------------
    # Single item
    # -------------------------------------------------------------------------

    async def _fetch_item(self, job: StreamsJob, access_token: str, strava_id: int) -> None:
        """
        Fetch and persist everything the scope asks for one activity.

        All provider calls and payload parsing happen before anything is
        written, so a failed item leaves no partial rows behind.
        """
        streams = await self.client.get_streams(access_token, strava_id)
        detail = None
        if job.include_segments:
            detail = await self.client.get_activity(access_token, strava_id)
        photos = []
        if job.include_photos:
            photos = await self.client.get_photos(access_token, strava_id)

        activity_id = f"strava_{strava_id}"
        segment_rows, efforts = [], 0
        if detail is not None:
            segment_rows, efforts = await self._segment_rows(
                job.user_id, activity_id, detail, streams.get("latlng")
            )

        await self._save_streams(job.user_id, activity_id, strava_id, streams)
        self.db.add_all(segment_rows)

        photo_count = 0
        if photos:
            photo_count = await self._save_photos(job.user_id, activity_id, strava_id, photos)

        await self.activities.increment_counts(
            activity_id, photos=photo_count, segment_efforts=efforts
        )
        await self.db.flush()

    async def _save_streams(
        self,
        user_id: str,
        activity_id: str,
        strava_id: int,
        streams: dict[str, Any]
    ) -> None:
        payload = gzip.compress(json.dumps(streams).encode("utf-8"))
        path = stream_path(user_id, strava_id)
        await self.store.put(path, payload, "application/gzip")

        await self.db.merge(ActivityStream(
            id=activity_id,
            user_id=user_id,
            strava_activity_id=strava_id,
            object_path=path,
            stream_keys=sorted(streams),
            size_bytes=len(payload),
            created_at=self._clock(),
        ))

    async def _segment_rows(
        self,
        user_id: str,
        activity_id: str,
        detail: dict,
        latlng: Optional[list],
    ) -> tuple[list, int]:
        """New Segment and SegmentEffort rows. Returns (rows, efforts)."""
        efforts = detail.get("segment_efforts") or []
        if not efforts:
            return [], 0

        now = self._clock()
        segment_ids = {f"strava_{e['segment']['id']}" for e in efforts}
        effort_ids = {f"strava_{e['id']}" for e in efforts}
        known_segments = await self.segments.existing_segment_ids(segment_ids)
        known_efforts = await self.segments.existing_effort_ids(effort_ids)

        rows, added = [], 0
        for effort in efforts:
            segment = effort["segment"]
            segment_id = f"strava_{segment['id']}"

            if segment_id not in known_segments:
                known_segments.add(segment_id)
                rows.append(Segment(
                    id=segment_id,
                    strava_segment_id=int(segment["id"]),
                    name=segment.get("name"),
                    distance_m=segment.get("distance"),
                    average_grade=segment.get("average_grade"),
                    maximum_grade=segment.get("maximum_grade"),
                    elevation_high=segment.get("elevation_high"),
                    elevation_low=segment.get("elevation_low"),
                    climb_category=segment.get("climb_category"),
                    city=segment.get("city"),
                    state=segment.get("state"),
                    start_latlng=segment.get("start_latlng")
                    or _latlng_at(latlng, effort.get("start_index")),
                    end_latlng=segment.get("end_latlng")
                    or _latlng_at(latlng, effort.get("end_index")),
                    updated_at=now,
                ))

            effort_id = f"strava_{effort['id']}"
            if effort_id in known_efforts:
                continue
            known_efforts.add(effort_id)

            elapsed = effort.get("elapsed_time")
            distance = effort.get("distance")
            speed = None
            if elapsed and distance is not None:
                speed = round(distance / elapsed * 3.6, 2)

            rows.append(SegmentEffort(
                id=effort_id,
                segment_id=segment_id,
                activity_id=activity_id,
                user_id=user_id,
                elapsed_time_ms=elapsed * 1000 if elapsed is not None else None,
                moving_time_ms=effort["moving_time"] * 1000
                if effort.get("moving_time") is not None else None,
                distance_m=distance,
                avg_speed_kmh=speed,
                avg_power=effort.get("average_watts"),
                avg_heartrate=effort.get("average_heartrate"),
                max_heartrate=effort.get("max_heartrate"),
                avg_cadence=effort.get("average_cadence"),
                pr_rank=effort.get("pr_rank"),
                kom_rank=effort.get("kom_rank"),
                start_date=parse_start_ms(effort["start_date"])
                if effort.get("start_date") else None,
                created_at=now,
            ))
            added += 1

        return rows, added

    async def _save_photos(
        self,
        user_id: str,
        activity_id: str,
        strava_id: int,
        photos: list[dict]
    ) -> int:
        """Re-host new photos. Returns photos added."""
        candidates = {}
        for photo in photos:
            photo_key = photo.get("unique_id") or photo.get("id")
            url = _largest_url(photo.get("urls"))
            if photo_key is None or url is None:
                continue
            candidates[f"strava_{photo_key}"] = (str(photo_key), url, photo.get("caption"))

        known = await self.photos.existing_photo_ids(candidates)
        now = self._clock()

        added = 0
        for photo_id, (photo_key, url, caption) in candidates.items():
            if photo_id in known:
                continue

            stored_url, rehosted = url, 0
            try:
                content, content_type = await self.client.download(url)
                stored_url = await self.store.put(
                    photo_path(user_id, strava_id, photo_key), content, content_type
                )
                rehosted = 1
            except (StravaError, ObjectStoreError) as e:
                logger.warning(f"Photo {photo_key} not re-hosted, keeping original URL: {e}")

            self.db.add(ActivityPhoto(
                id=photo_id,
                activity_id=activity_id,
                user_id=user_id,
                url=stored_url,
                rehosted=rehosted,
                caption=caption,
                created_at=now,
            ))
            added += 1

        return added
