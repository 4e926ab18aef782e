"""
Tests for the final migration report.
"""

import pytest

from app.features.activities import Activity, ActivitySource, ActivityStream
from app.features.migration import ProgressRepository, ProgressStatus, ReportAggregator
from app.features.migration.report import build_report, normalize_title, top_routes

from conftest import NOW_MS, native_activity


def imported(strava_id: int, title: str = "Ride", distance: float = 10000.0, **kwargs) -> Activity:
    values = dict(
        id=f"strava_{strava_id}",
        user_id="user-1",
        source=ActivitySource.STRAVA,
        strava_activity_id=strava_id,
        title=title,
        visibility="friends",
        start_time=NOW_MS - strava_id * 1000,
        distance_m=distance,
        created_at=NOW_MS,
    )
    values.update(kwargs)
    return Activity(**values)


class TestNormalizeTitle:

    @pytest.mark.parametrize("title,expected", [
        ("Morning Ride", "morning ride"),
        ("  Morning   ride ", "morning ride"),
        ("", ""),
        (None, ""),
    ])
    def test_normalize(self, title, expected):
        assert normalize_title(title) == expected


class TestTopRoutes:
    """Most repeated titles."""

    def test_grouped_by_normalized_title(self):
        activities = [
            imported(1, "Hill Loop", 10000.0),
            imported(2, "hill loop ", 12000.0),
            imported(3, "Commute", 5000.0),
        ]

        routes = top_routes(activities)

        assert routes[0].name == "Hill Loop"
        assert routes[0].count == 2
        assert routes[0].distance == 11000.0
        assert routes[1].name == "Commute"
        assert routes[1].count == 1

    def test_limited_to_three(self):
        activities = [imported(i, f"Route {i}") for i in range(1, 6)]

        routes = top_routes(activities)

        # ties broken alphabetically
        assert [r.name for r in routes] == ["Route 1", "Route 2", "Route 3"]

    def test_untitled_ignored(self):
        assert top_routes([imported(1, None), imported(2, "   ")]) == []

    def test_average_rounded(self):
        routes = top_routes([imported(1, "A", 1000.04), imported(2, "A", 1000.0)])
        assert routes[0].distance == 1000.0


class TestBuildReport:
    """Totals over imported activities."""

    def test_totals(self):
        activities = [
            imported(1, riding_time_ms=3_600_000, elevation_gain_m=200.0,
                     calories=500, photo_count=2, segment_effort_count=3),
            imported(2, distance=5000.0, riding_time_ms=1_800_000,
                     elevation_gain_m=50.5, calories=None),
        ]

        report = build_report(activities, total_streams=2, failed_streams=1)

        assert report.total_activities == 2
        assert report.total_distance == 15000.0
        assert report.total_time == 5_400_000
        assert report.total_elevation == 250.5
        assert report.total_calories == 500
        assert report.total_photos == 2
        assert report.total_segment_efforts == 3
        assert report.total_streams == 2
        assert report.failed_streams == 1
        assert report.earliest_activity == NOW_MS - 2000
        assert report.latest_activity == NOW_MS - 1000

    def test_empty(self):
        report = build_report([], total_streams=0)

        assert report.total_activities == 0
        assert report.earliest_activity is None
        assert report.top_routes == []


class TestReportAggregator:
    """Report generation against the database."""

    @pytest.mark.asyncio
    async def test_generate_marks_done(self, db, user, clock):
        db.add_all([
            imported(1, "Hill Loop"),
            imported(2, "Hill Loop"),
            native_activity(user.id, NOW_MS),
            ActivityStream(
                id="strava_1", user_id=user.id, strava_activity_id=1,
                object_path="streams/user-1/1.json.gz", stream_keys=["time"],
                size_bytes=10, created_at=NOW_MS,
            ),
        ])
        await db.commit()

        report = await ReportAggregator(db, clock).generate(user.id, failed_streams=1)
        await db.commit()

        # native rides are not part of the migration report
        assert report.total_activities == 2
        assert report.total_streams == 1
        assert report.failed_streams == 1

        progress = await ProgressRepository(db).get_for_user(user.id)
        assert progress.status == ProgressStatus.DONE
        assert progress.report["top_routes"] == [
            {"name": "Hill Loop", "distance": 10000.0, "count": 2}
        ]
        assert progress.updated_at == NOW_MS
