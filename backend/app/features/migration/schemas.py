"""
Migration schemas.

Pydantic models for the migration API and the stored report.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import MigrationPeriod, MigrationPhase, ProgressStatus


class MigrationScope(BaseModel):
    """What the user asked to migrate."""

    period: MigrationPeriod = MigrationPeriod.RECENT_90
    include_photos: bool = False
    include_segments: bool = False


class TopRoute(BaseModel):
    name: str
    distance: float
    count: int


class MigrationReport(BaseModel):
    """Summary written once a user's queue has drained."""

    total_activities: int = 0
    total_distance: float = 0.0
    total_time: int = 0  # ms
    total_elevation: float = 0.0
    total_calories: int = 0
    total_photos: int = 0
    total_segment_efforts: int = 0
    total_streams: int = 0
    failed_streams: int = 0
    earliest_activity: Optional[int] = None
    latest_activity: Optional[int] = None
    top_routes: list[TopRoute] = Field(default_factory=list)


class ProgressInfo(BaseModel):
    phase: Optional[MigrationPhase] = None
    totals: dict[str, int] = Field(default_factory=dict)
    queue_position: Optional[int] = None
    estimated_minutes: Optional[int] = None
    wait_until: Optional[int] = None
    started_at: Optional[int] = None
    updated_at: Optional[int] = None


class MigrationStateResponse(BaseModel):
    """User-facing migration state."""

    model_config = ConfigDict(from_attributes=True)

    status: ProgressStatus = ProgressStatus.NOT_STARTED
    scope: Optional[MigrationScope] = None
    progress: Optional[ProgressInfo] = None
    report: Optional[MigrationReport] = None
    last_error: Optional[str] = None


class VerifyResult(BaseModel):
    total_activities: int
    with_streams: int
    missing_streams: list[int]


class FixRequest(BaseModel):
    include_photos: bool = False
    include_segments: bool = False


class FixResult(BaseModel):
    streams_queued: int
