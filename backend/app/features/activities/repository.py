"""
Activity repositories.

Data access layer for activities and the detail records hung off them.
"""

from typing import Iterable

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.shared.repository import BaseRepository
from .models import (
    Activity,
    ActivitySource,
    ActivityStream,
    Segment,
    SegmentEffort,
    ActivityPhoto,
)


class ActivityRepository(BaseRepository[Activity]):
    """Repository for activities."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, Activity)

    async def imported_strava_ids(self, user_id: str) -> set[int]:
        """External IDs already imported for user."""
        result = await self.db.execute(
            select(Activity.strava_activity_id)
            .where(Activity.user_id == user_id)
            .where(Activity.strava_activity_id.is_not(None))
        )
        return set(result.scalars().all())

    async def native_start_times(self, user_id: str) -> list[int]:
        """Start times (epoch ms) of the user's natively recorded rides."""
        result = await self.db.execute(
            select(Activity.start_time)
            .where(Activity.user_id == user_id)
            .where(Activity.source == ActivitySource.NATIVE)
        )
        return list(result.scalars().all())

    async def get_strava_activities(self, user_id: str) -> list[Activity]:
        """All provider-sourced activities for user, newest first."""
        result = await self.db.execute(
            select(Activity)
            .where(Activity.user_id == user_id)
            .where(Activity.source == ActivitySource.STRAVA)
            .order_by(Activity.start_time.desc())
        )
        return list(result.scalars().all())

    async def add_all(self, activities: Iterable[Activity]) -> None:
        """Stage a batch of new activities (caller commits)."""
        self.db.add_all(list(activities))
        await self.db.flush()

    async def increment_counts(
        self,
        activity_id: str,
        photos: int = 0,
        segment_efforts: int = 0
    ) -> None:
        """Bump denormalized photo / segment effort counters."""
        if not photos and not segment_efforts:
            return
        await self.db.execute(
            update(Activity)
            .where(Activity.id == activity_id)
            .values(
                photo_count=Activity.photo_count + photos,
                segment_effort_count=Activity.segment_effort_count + segment_efforts,
            )
        )


class ActivityStreamRepository(BaseRepository[ActivityStream]):
    """Repository for cached activity streams."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, ActivityStream)

    async def cached_strava_ids(self, user_id: str) -> set[int]:
        """External IDs that already have a cached detail record."""
        result = await self.db.execute(
            select(ActivityStream.strava_activity_id)
            .where(ActivityStream.user_id == user_id)
        )
        return set(result.scalars().all())

    async def count_for_user(self, user_id: str) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(ActivityStream)
            .where(ActivityStream.user_id == user_id)
        )
        return result.scalar() or 0


class SegmentRepository(BaseRepository[Segment]):
    """Repository for segments and segment efforts."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, Segment)

    async def existing_segment_ids(self, segment_ids: Iterable[str]) -> set[str]:
        ids = list(segment_ids)
        if not ids:
            return set()
        result = await self.db.execute(select(Segment.id).where(Segment.id.in_(ids)))
        return set(result.scalars().all())

    async def existing_effort_ids(self, effort_ids: Iterable[str]) -> set[str]:
        ids = list(effort_ids)
        if not ids:
            return set()
        result = await self.db.execute(
            select(SegmentEffort.id).where(SegmentEffort.id.in_(ids))
        )
        return set(result.scalars().all())


class ActivityPhotoRepository(BaseRepository[ActivityPhoto]):
    """Repository for activity photos."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, ActivityPhoto)

    async def existing_photo_ids(self, photo_ids: Iterable[str]) -> set[str]:
        ids = list(photo_ids)
        if not ids:
            return set()
        result = await self.db.execute(
            select(ActivityPhoto.id).where(ActivityPhoto.id.in_(ids))
        )
        return set(result.scalars().all())
