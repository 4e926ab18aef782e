"""
Final migration report.

Built once, when a user's last Streams job drains (or immediately from
`fix` when nothing is missing). Stored on the progress projection.
"""

import logging
from collections import defaultdict
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.features.activities import (
    Activity,
    ActivityRepository,
    ActivityStreamRepository,
)
from app.shared.clock import Clock, now_ms
from .config import MigrationConfig
from .progress import ProgressService
from .schemas import MigrationReport, TopRoute

logger = logging.getLogger(__name__)


def normalize_title(title: str | None) -> str:
    """Lowercased, whitespace-collapsed title used to group routes."""
    return " ".join((title or "").lower().split())


def top_routes(
    activities: Sequence[Activity],
    limit: int = MigrationConfig.TOP_ROUTES
) -> list[TopRoute]:
    """Most repeated titles with their average distance."""
    groups: dict[str, list[Activity]] = defaultdict(list)
    for activity in activities:
        key = normalize_title(activity.title)
        if key:
            groups[key].append(activity)

    ranked = sorted(groups.items(), key=lambda item: (-len(item[1]), item[0]))

    routes = []
    for _, group in ranked[:limit]:
        distances = [a.distance_m or 0.0 for a in group]
        routes.append(TopRoute(
            name=group[0].title.strip(),
            distance=round(sum(distances) / len(distances), 1),
            count=len(group),
        ))
    return routes


def build_report(
    activities: Sequence[Activity],
    total_streams: int,
    failed_streams: int = 0,
) -> MigrationReport:
    start_times = [a.start_time for a in activities]
    return MigrationReport(
        total_activities=len(activities),
        total_distance=sum(a.distance_m or 0.0 for a in activities),
        total_time=sum(a.riding_time_ms or 0 for a in activities),
        total_elevation=sum(a.elevation_gain_m or 0.0 for a in activities),
        total_calories=sum(a.calories or 0 for a in activities),
        total_photos=sum(a.photo_count or 0 for a in activities),
        total_segment_efforts=sum(a.segment_effort_count or 0 for a in activities),
        total_streams=total_streams,
        failed_streams=failed_streams,
        earliest_activity=min(start_times) if start_times else None,
        latest_activity=max(start_times) if start_times else None,
        top_routes=top_routes(activities),
    )


class ReportAggregator:
    """Scans a user's imported activities and finalizes their migration."""

    def __init__(self, db: AsyncSession, clock: Clock = now_ms):
        self.activities = ActivityRepository(db)
        self.streams = ActivityStreamRepository(db)
        self.progress = ProgressService(db)
        self._clock = clock

    async def generate(self, user_id: str, failed_streams: int = 0) -> MigrationReport:
        """Write the report and flip the user's status to DONE."""
        activities = await self.activities.get_strava_activities(user_id)
        total_streams = await self.streams.count_for_user(user_id)

        report = build_report(activities, total_streams, failed_streams)
        await self.progress.mark_done(user_id, report, self._clock())

        logger.info(
            f"Report for user {user_id}: {report.total_activities} activities, "
            f"{report.total_streams} streams, {report.failed_streams} failed"
        )
        return report
