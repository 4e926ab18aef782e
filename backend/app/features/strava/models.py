"""
Strava-related database models.

Models:
- StravaToken: OAuth tokens for Strava API
"""

import time
from datetime import datetime

from sqlalchemy import Column, String, DateTime, Integer, ForeignKey, Text

from app.models.base import Base


class StravaToken(Base):
    """
    Strava OAuth token storage.

    Stores access and refresh tokens for Strava API authentication.
    Tokens should be encrypted in production.
    """

    __tablename__ = "strava_tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), ForeignKey("users.id"), unique=True, nullable=False)

    # Strava athlete info
    strava_athlete_id = Column(String(20), unique=True, nullable=False)

    # OAuth tokens (should be encrypted in production)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=False)
    expires_at = Column(Integer, nullable=False)  # Unix timestamp

    # Token scope
    scope = Column(String(255), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def expires_within(self, seconds: int) -> bool:
        """Check if access token expires in the next `seconds`."""
        return self.expires_at < time.time() + seconds

    def __repr__(self):
        return f"<StravaToken user_id={self.user_id} athlete_id={self.strava_athlete_id}>"
