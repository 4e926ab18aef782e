"""
Activity store module.

Usage:
    from app.features.activities import Activity, ActivityRepository
"""

from .models import (
    Activity,
    ActivitySource,
    ActivityStream,
    Segment,
    SegmentEffort,
    ActivityPhoto,
)
from .repository import (
    ActivityRepository,
    ActivityStreamRepository,
    SegmentRepository,
    ActivityPhotoRepository,
)

__all__ = [
    # Models
    "Activity",
    "ActivitySource",
    "ActivityStream",
    "Segment",
    "SegmentEffort",
    "ActivityPhoto",
    # Repositories
    "ActivityRepository",
    "ActivityStreamRepository",
    "SegmentRepository",
    "ActivityPhotoRepository",
]
