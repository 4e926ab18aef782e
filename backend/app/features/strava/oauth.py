"""
Strava OAuth token refresh.

The authorization-code exchange happens in the connect flow elsewhere;
the migration queue only ever needs to refresh an existing grant.
"""

import logging
from typing import Optional

import httpx

from app.config import settings

logger = logging.getLogger(__name__)


class StravaOAuthError(Exception):
    """OAuth-related error."""
    pass


class StravaOAuth:
    """
    Strava OAuth handler.

    Usage:
        oauth = StravaOAuth()
        tokens = await oauth.refresh_token(refresh_token)
    """

    TOKEN_URL = "https://www.strava.com/oauth/token"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.client_id = settings.strava_client_id
        self.client_secret = settings.strava_client_secret
        self._transport = transport

    async def refresh_token(self, refresh_token: str) -> dict:
        """
        Refresh an expired access token.

        Args:
            refresh_token: Current refresh token

        Returns:
            {
                "access_token": "...",
                "refresh_token": "...",
                "expires_at": 1234567890
            }

        Raises:
            StravaOAuthError: If token refresh fails
        """
        async with httpx.AsyncClient(transport=self._transport) as client:
            try:
                response = await client.post(
                    self.TOKEN_URL,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "refresh_token": refresh_token,
                        "grant_type": "refresh_token"
                    }
                )
            except httpx.HTTPError as e:
                raise StravaOAuthError(f"Token refresh request failed: {e}") from e

            if response.status_code != 200:
                logger.error(f"Strava token refresh failed: {response.text}")
                raise StravaOAuthError(
                    f"Token refresh failed: {response.status_code}"
                )

            return response.json()
