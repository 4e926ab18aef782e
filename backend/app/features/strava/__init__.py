"""
Strava integration module.

Usage:
    from app.features.strava import StravaClient, StravaTokenProvider

Components:
- StravaOAuth: Token refresh
- StravaTokenProvider: Per-user valid access token
- StravaClient: API client (activity list, streams, detail, photos)

Models:
- StravaToken: OAuth tokens storage
"""

from .models import StravaToken
from .oauth import StravaOAuth, StravaOAuthError
from .client import (
    StravaClient,
    StravaError,
    StravaAPIError,
    StravaAuthError,
    StravaRateLimitError,
    STREAM_KEYS,
)
from .tokens import (
    StravaTokenProvider,
    StravaTokenError,
    StravaNotConnectedError,
    StravaTokenRefreshError,
)

__all__ = [
    # Models
    "StravaToken",
    # OAuth
    "StravaOAuth",
    "StravaOAuthError",
    # Client
    "StravaClient",
    "StravaError",
    "StravaAPIError",
    "StravaAuthError",
    "StravaRateLimitError",
    "STREAM_KEYS",
    # Tokens
    "StravaTokenProvider",
    "StravaTokenError",
    "StravaNotConnectedError",
    "StravaTokenRefreshError",
]
