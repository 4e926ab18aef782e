"""
Access-token resolution for background work.

`StravaTokenProvider.get_valid_access_token(user_id)` is the single entry
point the migration scheduler uses; any failure here is fatal for the
job because only the user can fix it (reconnect the account).
"""

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import StravaToken
from .oauth import StravaOAuth, StravaOAuthError

logger = logging.getLogger(__name__)

# Refresh tokens that expire within this many seconds
REFRESH_MARGIN_SECONDS = 300


class StravaTokenError(Exception):
    """Access token could not be obtained."""
    pass


class StravaNotConnectedError(StravaTokenError):
    """User has no stored Strava grant."""
    pass


class StravaTokenRefreshError(StravaTokenError):
    """Stored grant could not be refreshed."""
    pass


class StravaTokenProvider:
    """
    Resolves a valid access token per user, refreshing when needed.

    Usage:
        tokens = StravaTokenProvider(db)
        access_token = await tokens.get_valid_access_token(user_id)
    """

    def __init__(self, db: AsyncSession, oauth: StravaOAuth | None = None):
        self.db = db
        self._oauth = oauth or StravaOAuth()

    async def get_valid_access_token(self, user_id: str) -> str:
        """
        Get a valid access token for user, refreshing if needed.

        Raises:
            StravaNotConnectedError: No token stored for user
            StravaTokenRefreshError: Refresh was rejected
        """
        result = await self.db.execute(
            select(StravaToken).where(StravaToken.user_id == user_id)
        )
        token = result.scalar_one_or_none()

        if not token:
            raise StravaNotConnectedError(f"Strava not connected for user {user_id}")

        if not token.expires_within(REFRESH_MARGIN_SECONDS):
            return token.access_token

        logger.info(f"Refreshing Strava token for user {user_id}")
        try:
            new_tokens = await self._oauth.refresh_token(token.refresh_token)
        except StravaOAuthError as e:
            raise StravaTokenRefreshError(str(e)) from e

        token.access_token = new_tokens["access_token"]
        token.refresh_token = new_tokens["refresh_token"]
        token.expires_at = new_tokens["expires_at"]
        token.updated_at = datetime.utcnow()
        await self.db.commit()

        return token.access_token
