"""
Wall-clock helpers.

All persisted migration timestamps are epoch milliseconds (UTC).
Components take a ``Clock`` callable so tests can pin time.
"""

import time
from typing import Callable

Clock = Callable[[], int]

MINUTE_MS = 60_000
QUARTER_HOUR_MS = 15 * MINUTE_MS
DAY_MS = 24 * 60 * MINUTE_MS


def now_ms() -> int:
    """Current UTC time in epoch milliseconds."""
    return int(time.time() * 1000)


def next_quarter_hour_ms(ts_ms: int) -> int:
    """Next 15-minute UTC boundary strictly after ts_ms."""
    return (ts_ms // QUARTER_HOUR_MS + 1) * QUARTER_HOUR_MS


def next_utc_midnight_ms(ts_ms: int) -> int:
    """Next UTC midnight strictly after ts_ms."""
    return (ts_ms // DAY_MS + 1) * DAY_MS
