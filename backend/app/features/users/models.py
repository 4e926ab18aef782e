"""
User-related models.

Models:
- User: Application user (rider) who may connect a Strava account
"""

from datetime import datetime
from sqlalchemy import Column, String, DateTime, Boolean
import uuid

from app.models.base import Base


class Visibility:
    """Who can see an activity by default."""
    EVERYONE = "everyone"
    FRIENDS = "friends"
    PRIVATE = "private"


class User(Base):
    """
    Application user.

    Imported activities are written with the user's nickname and
    default visibility.
    """

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, index=True, nullable=True)

    # Profile
    nickname = Column(String(100), nullable=False, default="Rider")
    default_visibility = Column(String(20), nullable=False, default=Visibility.EVERYONE)

    # Strava integration
    strava_athlete_id = Column(String(20), nullable=True)
    strava_connected = Column(Boolean, default=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<User {self.id} ({self.nickname})>"
