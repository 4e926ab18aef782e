"""
Activity store models.

Models:
- Activity: A ride, either recorded natively or imported from Strava
- ActivityStream: Cached GPS/sensor streams for an imported activity
- Segment: A Strava segment (shared across users)
- SegmentEffort: One user's effort on a segment during an activity
- ActivityPhoto: A photo attached to an imported activity

All timestamps here are epoch milliseconds.
"""

from sqlalchemy import (
    Column, String, Integer, Float, ForeignKey, BigInteger, Text, JSON, Index,
)

from app.models.base import Base


class ActivitySource:
    NATIVE = "native"
    STRAVA = "strava"


class Activity(Base):
    """Ride summary as shown in feeds and reports."""

    __tablename__ = "activities"
    __table_args__ = (
        Index("ix_activities_user_source", "user_id", "source"),
    )

    id = Column(String(64), primary_key=True)  # "strava_<id>" for imports
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    nickname = Column(String(100), nullable=True)

    source = Column(String(20), nullable=False, default=ActivitySource.NATIVE)
    strava_activity_id = Column(BigInteger, nullable=True, unique=True)

    title = Column(String(255), nullable=True)
    visibility = Column(String(20), nullable=False, default="everyone")

    start_time = Column(BigInteger, nullable=False, index=True)
    end_time = Column(BigInteger, nullable=True)

    # Summary metrics
    distance_m = Column(Float, nullable=True)
    riding_time_ms = Column(BigInteger, nullable=True)
    elevation_gain_m = Column(Float, nullable=True)
    avg_speed_kmh = Column(Float, nullable=True)
    max_speed_kmh = Column(Float, nullable=True)
    avg_heartrate = Column(Float, nullable=True)
    max_heartrate = Column(Float, nullable=True)
    avg_power = Column(Float, nullable=True)
    max_power = Column(Float, nullable=True)
    normalized_power = Column(Float, nullable=True)
    avg_cadence = Column(Float, nullable=True)
    calories = Column(Integer, nullable=True)

    thumbnail_track = Column(Text, nullable=True)  # encoded summary polyline

    photo_count = Column(Integer, nullable=False, default=0)
    segment_effort_count = Column(Integer, nullable=False, default=0)

    created_at = Column(BigInteger, nullable=False)

    def __repr__(self):
        return f"<Activity {self.id} {self.source} {self.distance_m}m>"


class ActivityStream(Base):
    """
    Cached detail record for an imported activity.

    The compressed payload itself lives in the object store.
    """

    __tablename__ = "activity_streams"

    id = Column(String(64), primary_key=True)  # same id as the activity
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    strava_activity_id = Column(BigInteger, nullable=False, unique=True)

    object_path = Column(String(512), nullable=False)
    stream_keys = Column(JSON, nullable=False, default=list)
    size_bytes = Column(Integer, nullable=False, default=0)

    created_at = Column(BigInteger, nullable=False)


class Segment(Base):
    """Provider segment, upserted from segment efforts."""

    __tablename__ = "segments"

    id = Column(String(64), primary_key=True)  # "strava_<segment id>"
    strava_segment_id = Column(BigInteger, nullable=False, unique=True)

    name = Column(String(255), nullable=True)
    distance_m = Column(Float, nullable=True)
    average_grade = Column(Float, nullable=True)
    maximum_grade = Column(Float, nullable=True)
    elevation_high = Column(Float, nullable=True)
    elevation_low = Column(Float, nullable=True)
    climb_category = Column(Integer, nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(100), nullable=True)
    start_latlng = Column(JSON, nullable=True)
    end_latlng = Column(JSON, nullable=True)

    updated_at = Column(BigInteger, nullable=False)


class SegmentEffort(Base):
    """A single effort on a segment."""

    __tablename__ = "segment_efforts"

    id = Column(String(64), primary_key=True)  # "strava_<effort id>"
    segment_id = Column(String(64), ForeignKey("segments.id"), nullable=False, index=True)
    activity_id = Column(String(64), ForeignKey("activities.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    elapsed_time_ms = Column(BigInteger, nullable=True)
    moving_time_ms = Column(BigInteger, nullable=True)
    distance_m = Column(Float, nullable=True)
    avg_speed_kmh = Column(Float, nullable=True)
    avg_power = Column(Float, nullable=True)
    avg_heartrate = Column(Float, nullable=True)
    max_heartrate = Column(Float, nullable=True)
    avg_cadence = Column(Float, nullable=True)
    pr_rank = Column(Integer, nullable=True)
    kom_rank = Column(Integer, nullable=True)

    start_date = Column(BigInteger, nullable=True)
    created_at = Column(BigInteger, nullable=False)


class ActivityPhoto(Base):
    """Photo re-hosted from the provider (or linked, if download failed)."""

    __tablename__ = "activity_photos"

    id = Column(String(128), primary_key=True)  # "strava_<unique_id>"
    activity_id = Column(String(64), ForeignKey("activities.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)

    url = Column(Text, nullable=False)
    rehosted = Column(Integer, nullable=False, default=0)  # Boolean as int for SQLite
    caption = Column(Text, nullable=True)

    created_at = Column(BigInteger, nullable=False)
