"""
Migration errors surfaced to callers of MigrationService.
"""


class MigrationError(Exception):
    """Base migration error."""
    pass


class MigrationAlreadyActiveError(MigrationError):
    """User already has a queued, running or waiting migration."""
    pass


class MigrationUserNotFoundError(MigrationError):
    pass


class MigrationNotConnectedError(MigrationError):
    """User has not connected a Strava account."""
    pass
