"""Create location search audit log and listed items

Revision ID: 001
Revises:
Create Date: 2025-01-15 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Append-only audit log of location searches
    op.create_table(
        'location_search_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', sa.String(64), nullable=True),
        sa.Column('target_id', sa.String(64), nullable=True),
        sa.Column('search_type', sa.String(32), nullable=False),
        sa.Column('search_lat', sa.Float(), nullable=True),
        sa.Column('search_lng', sa.Float(), nullable=True),
        sa.Column('search_radius_km', sa.Float(), nullable=True),
        sa.Column('search_query', sa.String(500), nullable=True),
        sa.Column('user_agent', sa.String(500), nullable=True),
        sa.Column('ip_address', sa.String(45), nullable=True),
        sa.Column('session_id', sa.String(100), nullable=True),
        sa.Column('is_suspicious', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('suspicious_reason', sa.Text(), nullable=True),
        sa.Column('result_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('response_time_ms', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_location_search_logs_user_created', 'location_search_logs', ['user_id', 'created_at'])
    op.create_index(
        'ix_location_search_logs_user_target_created',
        'location_search_logs',
        ['user_id', 'target_id', 'created_at'],
    )
    op.create_index('ix_location_search_logs_search_type', 'location_search_logs', ['search_type'])
    op.create_index('ix_location_search_logs_suspicious', 'location_search_logs', ['is_suspicious'])
    op.create_index('ix_location_search_logs_is_deleted', 'location_search_logs', ['is_deleted'])

    # Location-bearing listings (written by the marketplace)
    op.create_table(
        'listed_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column(
            'target_class',
            sa.Enum('tool', 'bundle', 'user', name='targetclass'),
            nullable=False,
        ),
        sa.Column('owner_id', sa.String(64), nullable=True),
        sa.Column('latitude', sa.Float(), nullable=True),
        sa.Column('longitude', sa.Float(), nullable=True),
        sa.Column('location_display', sa.String(255), nullable=True),
        sa.Column('area', sa.String(100), nullable=True),
        sa.Column('city', sa.String(100), nullable=True),
        sa.Column('state', sa.String(100), nullable=True),
        sa.Column('country', sa.String(100), nullable=True),
        sa.Column(
            'privacy_level',
            sa.Enum('exact', 'district', 'zip_code', 'neighborhood', name='privacylevel'),
            nullable=False,
            server_default='neighborhood',
        ),
        sa.Column('is_available', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_listed_items_class_lat_lng', 'listed_items', ['target_class', 'latitude', 'longitude'])
    op.create_index('ix_listed_items_is_deleted', 'listed_items', ['is_deleted'])


def downgrade() -> None:
    op.drop_index('ix_listed_items_is_deleted', 'listed_items')
    op.drop_index('ix_listed_items_class_lat_lng', 'listed_items')
    op.drop_table('listed_items')

    op.drop_index('ix_location_search_logs_is_deleted', 'location_search_logs')
    op.drop_index('ix_location_search_logs_suspicious', 'location_search_logs')
    op.drop_index('ix_location_search_logs_search_type', 'location_search_logs')
    op.drop_index('ix_location_search_logs_user_target_created', 'location_search_logs')
    op.drop_index('ix_location_search_logs_user_created', 'location_search_logs')
    op.drop_table('location_search_logs')

    op.execute('DROP TYPE IF EXISTS privacylevel')
    op.execute('DROP TYPE IF EXISTS targetclass')
