"""Initial migration - create all tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_JOB = "status IN ('pending', 'processing', 'waiting')"


def upgrade() -> None:
    # Create users table
    op.create_table(
        'users',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('email', sa.String(255), unique=True, index=True, nullable=True),
        sa.Column('nickname', sa.String(100), nullable=False),
        sa.Column('default_visibility', sa.String(20), nullable=False),
        sa.Column('strava_athlete_id', sa.String(20), nullable=True),
        sa.Column('strava_connected', sa.Boolean(), default=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    # Create strava_tokens table
    op.create_table(
        'strava_tokens',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), unique=True, nullable=False),
        sa.Column('strava_athlete_id', sa.String(20), unique=True, nullable=False),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('refresh_token', sa.Text(), nullable=False),
        sa.Column('expires_at', sa.Integer(), nullable=False),
        sa.Column('scope', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )

    # Create activities table
    op.create_table(
        'activities',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('nickname', sa.String(100), nullable=True),
        sa.Column('source', sa.String(20), nullable=False),
        sa.Column('strava_activity_id', sa.BigInteger(), nullable=True, unique=True),
        sa.Column('title', sa.String(255), nullable=True),
        sa.Column('visibility', sa.String(20), nullable=False),
        sa.Column('start_time', sa.BigInteger(), nullable=False, index=True),
        sa.Column('end_time', sa.BigInteger(), nullable=True),
        sa.Column('distance_m', sa.Float(), nullable=True),
        sa.Column('riding_time_ms', sa.BigInteger(), nullable=True),
        sa.Column('elevation_gain_m', sa.Float(), nullable=True),
        sa.Column('avg_speed_kmh', sa.Float(), nullable=True),
        sa.Column('max_speed_kmh', sa.Float(), nullable=True),
        sa.Column('avg_heartrate', sa.Float(), nullable=True),
        sa.Column('max_heartrate', sa.Float(), nullable=True),
        sa.Column('avg_power', sa.Float(), nullable=True),
        sa.Column('max_power', sa.Float(), nullable=True),
        sa.Column('normalized_power', sa.Float(), nullable=True),
        sa.Column('avg_cadence', sa.Float(), nullable=True),
        sa.Column('calories', sa.Integer(), nullable=True),
        sa.Column('thumbnail_track', sa.Text(), nullable=True),
        sa.Column('photo_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('segment_effort_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
    )
    op.create_index('ix_activities_user_source', 'activities', ['user_id', 'source'])

    # Create activity_streams table
    op.create_table(
        'activity_streams',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('strava_activity_id', sa.BigInteger(), nullable=False, unique=True),
        sa.Column('object_path', sa.String(512), nullable=False),
        sa.Column('stream_keys', sa.JSON(), nullable=False),
        sa.Column('size_bytes', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
    )

    # Create segments table
    op.create_table(
        'segments',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('strava_segment_id', sa.BigInteger(), nullable=False, unique=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('distance_m', sa.Float(), nullable=True),
        sa.Column('average_grade', sa.Float(), nullable=True),
        sa.Column('maximum_grade', sa.Float(), nullable=True),
        sa.Column('elevation_high', sa.Float(), nullable=True),
        sa.Column('elevation_low', sa.Float(), nullable=True),
        sa.Column('climb_category', sa.Integer(), nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('state', sa.String(100), nullable=True),
        sa.Column('start_latlng', sa.JSON(), nullable=True),
        sa.Column('end_latlng', sa.JSON(), nullable=True),
        sa.Column('updated_at', sa.BigInteger(), nullable=False),
    )

    # Create segment_efforts table
    op.create_table(
        'segment_efforts',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('segment_id', sa.String(64), sa.ForeignKey('segments.id'), nullable=False, index=True),
        sa.Column('activity_id', sa.String(64), sa.ForeignKey('activities.id'), nullable=False, index=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('elapsed_time_ms', sa.BigInteger(), nullable=True),
        sa.Column('moving_time_ms', sa.BigInteger(), nullable=True),
        sa.Column('distance_m', sa.Float(), nullable=True),
        sa.Column('avg_speed_kmh', sa.Float(), nullable=True),
        sa.Column('avg_power', sa.Float(), nullable=True),
        sa.Column('avg_heartrate', sa.Float(), nullable=True),
        sa.Column('max_heartrate', sa.Float(), nullable=True),
        sa.Column('avg_cadence', sa.Float(), nullable=True),
        sa.Column('pr_rank', sa.Integer(), nullable=True),
        sa.Column('kom_rank', sa.Integer(), nullable=True),
        sa.Column('start_date', sa.BigInteger(), nullable=True),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
    )

    # Create activity_photos table
    op.create_table(
        'activity_photos',
        sa.Column('id', sa.String(128), primary_key=True),
        sa.Column('activity_id', sa.String(64), sa.ForeignKey('activities.id'), nullable=False, index=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('rehosted', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('caption', sa.Text(), nullable=True),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
    )

    # Create migration_jobs table (single-table inheritance on kind)
    op.create_table(
        'migration_jobs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), nullable=False, index=True),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('period', sa.String(20), nullable=False),
        sa.Column('include_photos', sa.Boolean(), nullable=False),
        sa.Column('include_segments', sa.Boolean(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('retry_count', sa.Integer(), nullable=False),
        sa.Column('max_retries', sa.Integer(), nullable=False),
        sa.Column('last_error', sa.String(500), nullable=True),
        sa.Column('wait_until', sa.BigInteger(), nullable=True),
        sa.Column('priority', sa.BigInteger(), nullable=False),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.Column('updated_at', sa.BigInteger(), nullable=False),
        # ActivitiesJob
        sa.Column('next_page', sa.Integer(), nullable=True),
        sa.Column('imported', sa.Integer(), nullable=True),
        sa.Column('skipped', sa.Integer(), nullable=True),
        # StreamsJob
        sa.Column('remaining', sa.JSON(), nullable=True),
        sa.Column('item_retries', sa.JSON(), nullable=True),
        sa.Column('total_items', sa.Integer(), nullable=True),
        sa.Column('fetched', sa.Integer(), nullable=True),
        sa.Column('failed', sa.Integer(), nullable=True),
    )
    op.create_index(
        'uq_migration_jobs_active_user',
        'migration_jobs',
        ['user_id'],
        unique=True,
        sqlite_where=sa.text(ACTIVE_JOB),
        postgresql_where=sa.text(ACTIVE_JOB),
    )
    op.create_index(
        'ix_migration_jobs_status_updated', 'migration_jobs', ['status', 'updated_at']
    )

    # Create rate_limit_state table (single row)
    op.create_table(
        'rate_limit_state',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('usage_15min', sa.Integer(), nullable=False),
        sa.Column('limit_15min', sa.Integer(), nullable=False),
        sa.Column('usage_daily', sa.Integer(), nullable=False),
        sa.Column('limit_daily', sa.Integer(), nullable=False),
        sa.Column('window_reset_at', sa.BigInteger(), nullable=False),
        sa.Column('updated_at', sa.BigInteger(), nullable=False),
    )

    # Create migration_progress table
    op.create_table(
        'migration_progress',
        sa.Column('user_id', sa.String(36), sa.ForeignKey('users.id'), primary_key=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('phase', sa.String(20), nullable=True),
        sa.Column('scope', sa.JSON(), nullable=True),
        sa.Column('totals', sa.JSON(), nullable=True),
        sa.Column('queue_position', sa.Integer(), nullable=True),
        sa.Column('estimated_minutes', sa.Integer(), nullable=True),
        sa.Column('wait_until', sa.BigInteger(), nullable=True),
        sa.Column('last_error', sa.String(500), nullable=True),
        sa.Column('report', sa.JSON(), nullable=True),
        sa.Column('started_at', sa.BigInteger(), nullable=True),
        sa.Column('updated_at', sa.BigInteger(), nullable=True),
    )


def downgrade() -> None:
    op.drop_table('migration_progress')
    op.drop_table('rate_limit_state')
    op.drop_index('ix_migration_jobs_status_updated', 'migration_jobs')
    op.drop_index('uq_migration_jobs_active_user', 'migration_jobs')
    op.drop_table('migration_jobs')
    op.drop_table('activity_photos')
    op.drop_table('segment_efforts')
    op.drop_table('segments')
    op.drop_table('activity_streams')
    op.drop_table('activities')
    op.drop_table('strava_tokens')
    op.drop_table('users')
