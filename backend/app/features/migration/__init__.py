"""
Strava migration queue.

Usage:
    from app.features.migration import MigrationService, migration_runner

Components:
- MigrationService: enqueue / cancel / state / verify / fix (user actions)
- MigrationScheduler: one tick (reconcile, budget, dispatch, ETA)
- ActivityImporter: phase 1, activity list pages
- StreamFetcher: phase 2, per-activity streams, segments and photos
- RateLimitTracker: shared provider budget estimate
- QueuePositionEstimator / ReportAggregator: user-facing projection
- MigrationRunner: background tick loop

Models:
- MigrationJob (ActivitiesJob, StreamsJob), RateLimitState, MigrationProgress
"""

from .models import (
    ActivitiesJob,
    JobKind,
    JobStatus,
    MigrationJob,
    MigrationPeriod,
    MigrationPhase,
    MigrationProgress,
    ProgressStatus,
    RateLimitState,
    StreamsJob,
)
from .exceptions import (
    MigrationError,
    MigrationAlreadyActiveError,
    MigrationUserNotFoundError,
    MigrationNotConnectedError,
)
from .schemas import (
    FixRequest,
    FixResult,
    MigrationReport,
    MigrationScope,
    MigrationStateResponse,
    VerifyResult,
)
from .rate_limit import RateLimitTracker, RateLimitSnapshot, Pressure
from .repository import JobRepository, RateLimitRepository, ProgressRepository
from .importer import ActivityImporter
from .streams import StreamFetcher
from .report import ReportAggregator
from .estimator import QueuePositionEstimator
from .scheduler import MigrationScheduler, StopReason, TickResult
from .service import MigrationService
from .background import MigrationRunner, migration_runner

__all__ = [
    # Models
    "MigrationJob",
    "ActivitiesJob",
    "StreamsJob",
    "JobKind",
    "JobStatus",
    "MigrationPeriod",
    "MigrationPhase",
    "MigrationProgress",
    "ProgressStatus",
    "RateLimitState",
    # Exceptions
    "MigrationError",
    "MigrationAlreadyActiveError",
    "MigrationUserNotFoundError",
    "MigrationNotConnectedError",
    # Schemas
    "MigrationScope",
    "MigrationStateResponse",
    "MigrationReport",
    "VerifyResult",
    "FixRequest",
    "FixResult",
    # Components
    "RateLimitTracker",
    "RateLimitSnapshot",
    "Pressure",
    "JobRepository",
    "RateLimitRepository",
    "ProgressRepository",
    "ActivityImporter",
    "StreamFetcher",
    "ReportAggregator",
    "QueuePositionEstimator",
    "MigrationScheduler",
    "StopReason",
    "TickResult",
    "MigrationService",
    "MigrationRunner",
    "migration_runner",
]
