"""
Shared test fixtures.

Every test gets its own in-memory SQLite database and a fake Strava API
served through httpx.MockTransport.
"""

import re
from datetime import datetime, timezone
from typing import Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.db.session import init_db
from app.features.activities import Activity, ActivitySource
from app.features.migration import (
    ActivitiesJob,
    JobStatus,
    MigrationPeriod,
    RateLimitTracker,
    StreamsJob,
)
from app.features.migration.rate_limit import RateLimitSnapshot
from app.features.storage import LocalObjectStore
from app.features.strava import StravaClient, StravaToken
from app.features.users import User
from app.shared.clock import next_quarter_hour_ms

# 2026-10-19 12:07:00 UTC
NOW_MS = int(datetime(2026, 10, 19, 12, 7, tzinfo=timezone.utc).timestamp() * 1000)

API_URL = "https://strava.test/api/v3"
CDN_HOST = "cdn.strava.test"


# =============================================================================
# Clock
# =============================================================================

class FakeClock:
    """Pinned wall clock (epoch ms)."""

    def __init__(self, now: int = NOW_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


# =============================================================================
# Database
# =============================================================================

@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


async def create_user(
    db: AsyncSession,
    user_id: str = "user-1",
    nickname: str = "Alice",
    connected: bool = True,
    with_token: bool = True,
) -> User:
    user = User(
        id=user_id,
        nickname=nickname,
        default_visibility="friends",
        strava_connected=connected,
    )
    db.add(user)
    if with_token:
        db.add(StravaToken(
            user_id=user_id,
            strava_athlete_id=f"athlete-{user_id}",
            access_token=f"token-{user_id}",
            refresh_token=f"refresh-{user_id}",
            expires_at=4_000_000_000,
        ))
    await db.commit()
    return user


@pytest_asyncio.fixture
async def user(db):
    return await create_user(db)


def native_activity(user_id: str, start_time: int, activity_id: str = "native-1") -> Activity:
    return Activity(
        id=activity_id,
        user_id=user_id,
        source=ActivitySource.NATIVE,
        title="Recorded ride",
        visibility="everyone",
        start_time=start_time,
        created_at=start_time,
    )


# =============================================================================
# Fake Strava
# =============================================================================

def strava_activity(
    activity_id: int,
    start_date: str = "2026-10-01T08:00:00Z",
    activity_type: str = "Ride",
    name: str = "Morning Ride",
    distance: float = 20000.0,
    **extra
) -> dict:
    """Activity list item as returned by /athlete/activities."""
    data = {
        "id": activity_id,
        "name": name,
        "type": activity_type,
        "start_date": start_date,
        "distance": distance,
        "moving_time": 3600,
        "elapsed_time": 4000,
        "total_elevation_gain": 250.0,
        "average_speed": 5.5,
        "max_speed": 12.0,
        "average_heartrate": 140.0,
        "average_watts": 180.0,
        "kilojoules": 600.0,
        "map": {"summary_polyline": "abc"},
    }
    data.update(extra)
    return data


class FakeStrava:
    """
    In-memory Strava API.

    Every API response carries X-RateLimit headers; usage grows by one
    per API request. `fail(path, *statuses)` queues error responses for
    a path, served before the normal response.
    """

    def __init__(self):
        self.pages: dict[int, list[dict]] = {}
        self.details: dict[int, dict] = {}
        self.photos: dict[int, list[dict]] = {}
        self.failures: dict[str, list[int]] = {}
        self.limit = (100, 1000)
        self.usage = [0, 0]
        self.requests: list[httpx.Request] = []
        self.cdn_status = 200

    def fail(self, path: str, *statuses: int) -> None:
        self.failures.setdefault(f"/api/v3{path}", []).extend(statuses)

    @property
    def api_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.host != CDN_HOST]

    def paths(self) -> list[str]:
        return [r.url.path.removeprefix("/api/v3") for r in self.api_requests]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.url.host == CDN_HOST:
            if self.cdn_status != 200:
                return httpx.Response(self.cdn_status)
            return httpx.Response(200, content=b"\xff\xd8jpeg", headers={"content-type": "image/jpeg"})

        self.usage[0] += 1
        self.usage[1] += 1
        headers = {
            "X-RateLimit-Limit": f"{self.limit[0]},{self.limit[1]}",
            "X-RateLimit-Usage": f"{self.usage[0]},{self.usage[1]}",
        }

        path = request.url.path
        queued = self.failures.get(path)
        if queued:
            return httpx.Response(queued.pop(0), headers=headers, json={"message": "error"})

        if path == "/api/v3/athlete/activities":
            page = int(request.url.params["page"])
            return httpx.Response(200, headers=headers, json=self.pages.get(page, []))

        match = re.fullmatch(r"/api/v3/activities/(\d+)(/streams|/photos)?", path)
        if match is None:
            return httpx.Response(404, headers=headers, json={"message": "not found"})

        activity_id, sub = int(match.group(1)), match.group(2)
        if sub == "/streams":
            body = {
                "latlng": {"data": [[43.0, 76.0], [43.1, 76.1], [43.2, 76.2]]},
                "time": {"data": [0, 10, 20]},
            }
        elif sub == "/photos":
            body = self.photos.get(activity_id, [])
        else:
            body = self.details.get(activity_id, {"id": activity_id, "segment_efforts": []})
        return httpx.Response(200, headers=headers, json=body)

    def client(self, tracker: Optional[RateLimitTracker] = None) -> StravaClient:
        hooks = [tracker.record_response] if tracker else []
        return StravaClient(
            api_url=API_URL,
            response_hooks=hooks,
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def fake_strava():
    return FakeStrava()


@pytest.fixture
def store(tmp_path):
    return LocalObjectStore(tmp_path / "objects")


def snapshot(clock: FakeClock, usage_15min: int = 0, usage_daily: int = 0) -> RateLimitSnapshot:
    """Rate-limit snapshot recorded now, default Strava limits."""
    return RateLimitSnapshot(
        usage_15min=usage_15min,
        limit_15min=100,
        usage_daily=usage_daily,
        limit_daily=1000,
        window_reset_at=next_quarter_hour_ms(clock.now),
        recorded_at=clock.now,
    )


def tracker_with_budget(clock: FakeClock, budget: int) -> RateLimitTracker:
    """Tracker whose compute_budget() returns `budget` (<= 90)."""
    return RateLimitTracker(
        snapshot=snapshot(clock, usage_15min=90 - budget),
        clock=clock,
    )


# =============================================================================
# Jobs
# =============================================================================

def activities_job(user_id: str, status=JobStatus.PENDING, updated_at=NOW_MS, **kwargs):
    values = dict(
        user_id=user_id,
        period=MigrationPeriod.RECENT_90,
        include_photos=False,
        include_segments=False,
        status=status,
        next_page=1,
        imported=0,
        skipped=0,
        retry_count=0,
        max_retries=5,
        priority=NOW_MS,
        created_at=NOW_MS,
        updated_at=updated_at,
    )
    values.update(kwargs)
    return ActivitiesJob(**values)


def streams_job(user_id: str, remaining, status=JobStatus.PENDING, **kwargs):
    values = dict(
        user_id=user_id,
        period=MigrationPeriod.ALL,
        include_photos=False,
        include_segments=False,
        status=status,
        remaining=list(remaining),
        item_retries={},
        total_items=len(remaining),
        fetched=0,
        failed=0,
        retry_count=0,
        max_retries=5,
        priority=NOW_MS,
        created_at=NOW_MS,
        updated_at=NOW_MS,
    )
    values.update(kwargs)
    return StreamsJob(**values)
