"""
Database Models

Feature models live in their feature packages (app/features/*/models.py).
They are imported here lazily so that Base.metadata sees every table
without creating circular imports at module load.
"""

from app.models.base import Base


def import_all_models() -> None:
    """Import every feature model module to register its tables."""
    from app.features.users import models as _users  # noqa: F401
    from app.features.strava import models as _strava  # noqa: F401
    from app.features.activities import models as _activities  # noqa: F401
    from app.features.migration import models as _migration  # noqa: F401


__all__ = ["Base", "import_all_models"]
