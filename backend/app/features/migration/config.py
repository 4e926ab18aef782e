"""
Migration queue configuration constants.

Fixed values of the queue model. Values an operator may want to tune
(dedup window, retry caps, tick timing) are Settings fields instead.
"""

from .models import MigrationPeriod


# Activity types imported from the provider; everything else is skipped
CYCLING_ACTIVITY_TYPES = frozenset({
    "Ride",
    "VirtualRide",
    "EBikeRide",
    "Handcycle",
    "Velomobile",
})


class MigrationConfig:
    """Configuration for the migration queue."""

    # Activities per list page (1 API call each)
    ACTIVITIES_PER_PAGE = 30

    # How far back each period reaches (None = everything)
    PERIOD_DAYS: dict[MigrationPeriod, int | None] = {
        MigrationPeriod.RECENT_90: 90,
        MigrationPeriod.RECENT_180: 180,
        MigrationPeriod.ALL: None,
    }

    # ==========================================================================
    # Rate limit budget
    # ==========================================================================
    # Strava default application limits: 100 / 15 min, 1000 / day
    DEFAULT_LIMIT_15MIN = 100
    DEFAULT_LIMIT_DAILY = 1000

    # Calls held back from every computed budget (estimate may be stale)
    BUDGET_SAFETY_MARGIN = 10

    # Budget before any provider response has been seen
    DEFAULT_BUDGET = 80

    # A window this close to its limit counts as pressure
    PRESSURE_MARGIN = 5

    # Added to computed retry-after so we land after the window rolls over
    RETRY_AFTER_BUFFER_SECONDS = 5

    # ==========================================================================
    # Retries
    # ==========================================================================
    # Job-level backoff, indexed by min(retry_count - 1, 4)
    BACKOFF_MINUTES = (1, 2, 5, 10, 30)

    # Processing jobs untouched this long are considered orphaned
    STALE_PROCESSING_MINUTES = 5

    # ==========================================================================
    # Queue estimate
    # ==========================================================================
    # Expected list pages per period, for ETA only
    PAGE_ESTIMATES: dict[MigrationPeriod, int] = {
        MigrationPeriod.RECENT_90: 5,
        MigrationPeriod.RECENT_180: 10,
        MigrationPeriod.ALL: 30,
    }

    # (100 - 10) calls per 15 minutes shared by every queued user
    BUDGET_PER_MINUTE = 6

    # ==========================================================================
    # Report
    # ==========================================================================
    TOP_ROUTES = 3
