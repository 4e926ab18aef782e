"""
Shared utilities (NOT business logic).

Usage:
    from app.shared import BaseRepository, now_ms
"""
from .clock import (
    Clock,
    now_ms,
    next_quarter_hour_ms,
    next_utc_midnight_ms,
    MINUTE_MS,
    QUARTER_HOUR_MS,
    DAY_MS,
)
from .repository import BaseRepository

__all__ = [
    # clock
    "Clock",
    "now_ms",
    "next_quarter_hour_ms",
    "next_utc_midnight_ms",
    "MINUTE_MS",
    "QUARTER_HOUR_MS",
    "DAY_MS",
    # repository
    "BaseRepository",
]
