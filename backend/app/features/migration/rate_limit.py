"""
Shared provider rate-limit estimate.

Strava reports usage of its two windows (15 minutes and daily) on every
response:

    X-RateLimit-Limit: 100,1000
    X-RateLimit-Usage: 37,412

The tracker keeps the latest pair, derives a per-tick call budget, and
decides how long to back off when a window is (nearly) exhausted. The
estimate is best effort only: a 429 from the provider always wins.
"""

import logging
import math
from dataclasses import dataclass, replace
from typing import Mapping, Optional

import httpx

from app.shared.clock import (
    Clock,
    now_ms,
    next_quarter_hour_ms,
    next_utc_midnight_ms,
)
from .config import MigrationConfig
from .repository import RateLimitRepository

logger = logging.getLogger(__name__)

LIMIT_HEADER = "X-RateLimit-Limit"
USAGE_HEADER = "X-RateLimit-Usage"


@dataclass(frozen=True)
class RateLimitSnapshot:
    """Rate-limit windows as last reported by the provider."""

    usage_15min: int
    limit_15min: int
    usage_daily: int
    limit_daily: int
    window_reset_at: int  # next 15-minute boundary, epoch ms
    recorded_at: int


@dataclass(frozen=True)
class Pressure:
    """Whether to pause, and for how long."""

    paused: bool
    retry_after_seconds: int


def parse_pair(value: Optional[str], default: tuple[int, int]) -> tuple[int, int]:
    """Parse a "15min,daily" header value."""
    if not value:
        return default
    try:
        short, daily = (int(part.strip()) for part in value.split(","))
    except ValueError:
        logger.warning(f"Unparseable rate limit header: {value!r}")
        return default
    return short, daily


class RateLimitTracker:
    """
    Owner of the shared rate-limit estimate.

    Constructed per tick with the repository (production) or with a
    fixed snapshot and clock (tests).

    Usage:
        tracker = RateLimitTracker(RateLimitRepository(db))
        await tracker.load()
        budget = tracker.compute_budget()
        async with StravaClient(response_hooks=[tracker.record_response]) as client:
            ...
    """

    def __init__(
        self,
        repository: Optional[RateLimitRepository] = None,
        snapshot: Optional[RateLimitSnapshot] = None,
        clock: Clock = now_ms,
    ):
        self.repository = repository
        self.snapshot = snapshot
        self._clock = clock

    async def load(self) -> Optional[RateLimitSnapshot]:
        """Read the persisted state, if any."""
        if self.repository is None:
            return self.snapshot

        state = await self.repository.get_state()
        if state is not None:
            self.snapshot = RateLimitSnapshot(
                usage_15min=state.usage_15min,
                limit_15min=state.limit_15min,
                usage_daily=state.usage_daily,
                limit_daily=state.limit_daily,
                window_reset_at=state.window_reset_at,
                recorded_at=state.updated_at,
            )
        return self.snapshot

    def record_headers(self, headers: Mapping[str, str]) -> RateLimitSnapshot:
        """Update the in-memory estimate from one response's headers."""
        now = self._clock()
        limit_15, limit_daily = parse_pair(
            headers.get(LIMIT_HEADER),
            (MigrationConfig.DEFAULT_LIMIT_15MIN, MigrationConfig.DEFAULT_LIMIT_DAILY),
        )
        usage_15, usage_daily = parse_pair(headers.get(USAGE_HEADER), (0, 0))

        self.snapshot = RateLimitSnapshot(
            usage_15min=usage_15,
            limit_15min=limit_15,
            usage_daily=usage_daily,
            limit_daily=limit_daily,
            window_reset_at=next_quarter_hour_ms(now),
            recorded_at=now,
        )
        logger.debug(
            f"Strava rate limit: {usage_15}/{limit_15} (15min), "
            f"{usage_daily}/{limit_daily} (daily)"
        )
        return self.snapshot

    async def record_response(self, response: httpx.Response) -> None:
        """httpx response hook: record headers and persist them."""
        self.record_headers(response.headers)
        await self.persist()

    async def persist(self) -> None:
        """Write the in-memory estimate to the shared row."""
        snapshot = self.snapshot
        if self.repository is not None and snapshot is not None:
            await self.repository.save_state(
                usage_15min=snapshot.usage_15min,
                limit_15min=snapshot.limit_15min,
                usage_daily=snapshot.usage_daily,
                limit_daily=snapshot.limit_daily,
                window_reset_at=snapshot.window_reset_at,
                updated_at=snapshot.recorded_at,
            )

    def _effective(self, snapshot: RateLimitSnapshot) -> RateLimitSnapshot:
        """Snapshot with windows that have rolled over since recording zeroed."""
        now = self._clock()
        if now >= next_utc_midnight_ms(snapshot.recorded_at):
            snapshot = replace(snapshot, usage_daily=0)
        if now >= snapshot.window_reset_at:
            snapshot = replace(snapshot, usage_15min=0)
        return snapshot

    def compute_budget(self) -> int:
        """
        Provider calls this tick may spend.

        A stale 15-minute window is assumed fully refreshed; the daily
        remainder always caps the result. Never negative.
        """
        if self.snapshot is None:
            return MigrationConfig.DEFAULT_BUDGET

        s = self._effective(self.snapshot)
        budget = min(
            s.limit_15min - s.usage_15min,
            s.limit_daily - s.usage_daily,
        ) - MigrationConfig.BUDGET_SAFETY_MARGIN
        return max(0, budget)

    def check_pressure(self, snapshot: Optional[RateLimitSnapshot] = None) -> Pressure:
        """
        Decide whether to pause and until when.

        The retry delay is the distance to the nearer of the next 15-minute
        boundary and the next UTC midnight, derived from the wall clock and
        never from the provider's Retry-After header.
        """
        snapshot = snapshot or self.snapshot
        now = self._clock()
        buffer = MigrationConfig.RETRY_AFTER_BUFFER_SECONDS
        margin = MigrationConfig.PRESSURE_MARGIN

        to_window = math.ceil((next_quarter_hour_ms(now) - now) / 1000) + buffer
        to_midnight = math.ceil((next_utc_midnight_ms(now) - now) / 1000) + buffer

        retry_after = min(to_window, to_midnight)

        if snapshot is None:
            return Pressure(paused=False, retry_after_seconds=retry_after)

        near_short = snapshot.usage_15min >= snapshot.limit_15min - margin
        near_daily = snapshot.usage_daily >= snapshot.limit_daily - margin
        return Pressure(paused=near_short or near_daily, retry_after_seconds=retry_after)
