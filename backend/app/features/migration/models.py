"""
Migration queue database models.

Models:
- MigrationJob: One unit of migration work for one user. Single-table
  inheritance on `kind`, so each phase carries its own cursor:
    - ActivitiesJob: list-page cursor (`next_page`) + imported/skipped
    - StreamsJob: work-item list (`remaining`) + per-item retry counts
- RateLimitState: Shared provider rate-limit estimate (single row)
- MigrationProgress: User-facing projection of the active job + report

Timestamps are epoch milliseconds (UTC).
"""

import uuid
from enum import Enum

from sqlalchemy import (
    Column, String, Integer, BigInteger, Boolean, ForeignKey, JSON, Index, text,
)
from sqlalchemy import Enum as SQLEnum

from app.models.base import Base


class JobKind(str, Enum):
    ACTIVITIES = "activities"
    STREAMS = "streams"


class JobStatus(str, Enum):
    """Job lifecycle. Successful completion deletes the row."""
    PENDING = "pending"
    PROCESSING = "processing"
    WAITING = "waiting"
    FAILED = "failed"


ACTIVE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING, JobStatus.WAITING)


class MigrationPeriod(str, Enum):
    RECENT_90 = "recent_90"
    RECENT_180 = "recent_180"
    ALL = "all"


class ProgressStatus(str, Enum):
    """Client-facing migration status."""
    NOT_STARTED = "NOT_STARTED"
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    WAITING = "WAITING"
    DONE = "DONE"
    FAILED = "FAILED"


class MigrationPhase(str, Enum):
    ACTIVITIES = "activities"
    STREAMS = "streams"
    COMPLETE = "complete"


def _enum_column(enum_cls, **kwargs) -> Column:
    return Column(
        SQLEnum(
            enum_cls,
            native_enum=False,
            length=20,
            values_callable=lambda e: [m.value for m in e],
        ),
        **kwargs
    )


_ACTIVE_SQL = "status IN ('pending', 'processing', 'waiting')"


class MigrationJob(Base):
    """
    Persisted migration job.

    Never instantiated directly; use ActivitiesJob or StreamsJob.
    Status changes go through JobRepository.transition so that two
    overlapping ticks cannot both own the same job.
    """

    __tablename__ = "migration_jobs"
    __table_args__ = (
        # At most one active job per user
        Index(
            "uq_migration_jobs_active_user",
            "user_id",
            unique=True,
            sqlite_where=text(_ACTIVE_SQL),
            postgresql_where=text(_ACTIVE_SQL),
        ),
        Index("ix_migration_jobs_status_updated", "status", "updated_at"),
    )

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    kind = Column(String(20), nullable=False)

    # Scope (immutable, carried from the Activities job to its Streams job)
    period = _enum_column(MigrationPeriod, nullable=False)
    include_photos = Column(Boolean, nullable=False, default=False)
    include_segments = Column(Boolean, nullable=False, default=False)

    status = _enum_column(JobStatus, nullable=False, default=JobStatus.PENDING)

    # Retry bookkeeping
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=5)
    last_error = Column(String(500), nullable=True)
    wait_until = Column(BigInteger, nullable=True)

    # Creation timestamp, FIFO tie-break
    priority = Column(BigInteger, nullable=False)

    created_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False)

    # Subclass columns live in the same table; load them with every query
    __mapper_args__ = {"polymorphic_on": kind, "with_polymorphic": "*"}

    @property
    def api_calls_per_item(self) -> int:
        """Provider calls per activity detail: streams + optional detail/photos."""
        return 1 + int(bool(self.include_segments)) + int(bool(self.include_photos))

    def scope_fields(self) -> dict:
        return {
            "period": self.period,
            "include_photos": self.include_photos,
            "include_segments": self.include_segments,
        }

    def __repr__(self):
        return f"<{type(self).__name__} {self.id} user={self.user_id} {self.status}>"


class ActivitiesJob(MigrationJob):
    """Phase 1: page through the provider's activity list."""

    next_page = Column(Integer, nullable=True, default=1)
    imported = Column(Integer, nullable=True, default=0)
    skipped = Column(Integer, nullable=True, default=0)

    __mapper_args__ = {"polymorphic_identity": JobKind.ACTIVITIES.value}

    @property
    def pages_fetched(self) -> int:
        return (self.next_page or 1) - 1

    def totals(self) -> dict:
        return {"imported": self.imported or 0, "skipped": self.skipped or 0}


class StreamsJob(MigrationJob):
    """Phase 2: fetch per-activity detail for previously imported activities."""

    remaining = Column(JSON, nullable=True, default=list)  # external activity ids
    item_retries = Column(JSON, nullable=True, default=dict)  # str(id) -> failures
    total_items = Column(Integer, nullable=True, default=0)
    fetched = Column(Integer, nullable=True, default=0)
    failed = Column(Integer, nullable=True, default=0)

    __mapper_args__ = {"polymorphic_identity": JobKind.STREAMS.value}

    def totals(self) -> dict:
        return {
            "total": self.total_items or 0,
            "fetched": self.fetched or 0,
            "failed": self.failed or 0,
        }


class RateLimitState(Base):
    """Best-effort shared estimate of the provider's rate-limit windows."""

    __tablename__ = "rate_limit_state"

    id = Column(Integer, primary_key=True, default=1)
    usage_15min = Column(Integer, nullable=False, default=0)
    limit_15min = Column(Integer, nullable=False, default=100)
    usage_daily = Column(Integer, nullable=False, default=0)
    limit_daily = Column(Integer, nullable=False, default=1000)
    window_reset_at = Column(BigInteger, nullable=False)  # next 15-minute boundary
    updated_at = Column(BigInteger, nullable=False)


class MigrationProgress(Base):
    """
    User-visible migration state.

    Read by the UI; only the migration subsystem writes it.
    """

    __tablename__ = "migration_progress"

    user_id = Column(String(36), ForeignKey("users.id"), primary_key=True)

    status = _enum_column(ProgressStatus, nullable=False, default=ProgressStatus.NOT_STARTED)
    phase = _enum_column(MigrationPhase, nullable=True)
    scope = Column(JSON, nullable=True)

    totals = Column(JSON, nullable=True)
    queue_position = Column(Integer, nullable=True)
    estimated_minutes = Column(Integer, nullable=True)
    wait_until = Column(BigInteger, nullable=True)
    last_error = Column(String(500), nullable=True)

    report = Column(JSON, nullable=True)

    started_at = Column(BigInteger, nullable=True)
    updated_at = Column(BigInteger, nullable=True)

    def __repr__(self):
        return f"<MigrationProgress {self.user_id} {self.status}>"
