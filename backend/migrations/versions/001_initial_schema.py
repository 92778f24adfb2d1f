"""Initial schema: users, channels, library, videos, variables, history, usage

Revision ID: 001
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    # Tables may already exist when Base.metadata.create_all ran first
    conn = op.get_bind()
    existing_tables = inspect(conn).get_table_names()

    if 'users' not in existing_tables:
        op.create_table(
            'users',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('email', sa.String(length=255), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_users_id', 'users', ['id'])
        op.create_index('ix_users_email', 'users', ['email'], unique=True)

    if 'subscriptions' not in existing_tables:
        op.create_table(
            'subscriptions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('plan_type', sa.String(length=50), nullable=False, server_default='free'),
            sa.Column('status', sa.String(length=50), nullable=False, server_default='active'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_subscriptions_id', 'subscriptions', ['id'])
        op.create_index('ix_subscriptions_user_id', 'subscriptions', ['user_id'], unique=True)

    if 'channels' not in existing_tables:
        op.create_table(
            'channels',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('youtube_channel_id', sa.String(length=64), nullable=False),
            sa.Column('title', sa.String(length=255), nullable=True),
            sa.Column('thumbnail_url', sa.Text(), nullable=True),
            sa.Column('subscriber_count', sa.Integer(), nullable=True),
            sa.Column('access_token', sa.Text(), nullable=True),
            sa.Column('refresh_token', sa.Text(), nullable=True),
            sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('granted_scopes', sa.JSON(), nullable=True),
            sa.Column('token_status', sa.String(length=20), nullable=False, server_default='valid'),
            sa.Column('sync_status', sa.String(length=20), nullable=False, server_default='idle'),
            sa.Column('sync_started_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('sync_error', sa.Text(), nullable=True),
            sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_channels_id', 'channels', ['id'])
        op.create_index('ix_channels_user_id', 'channels', ['user_id'])
        op.create_index('ix_channels_youtube_channel_id', 'channels', ['youtube_channel_id'], unique=True)
        op.create_index('ix_channels_user_sync_status', 'channels', ['user_id', 'sync_status'])

    if 'templates' not in existing_tables:
        op.create_table(
            'templates',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('content', sa.Text(), nullable=False, server_default=''),
            *_timestamps(),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_templates_id', 'templates', ['id'])
        op.create_index('ix_templates_user_id', 'templates', ['user_id'])

    if 'containers' not in existing_tables:
        op.create_table(
            'containers',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('name', sa.String(length=255), nullable=False),
            sa.Column('separator', sa.Text(), nullable=False),
            sa.Column('template_order', sa.JSON(), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_containers_id', 'containers', ['id'])
        op.create_index('ix_containers_user_id', 'containers', ['user_id'])

    if 'videos' not in existing_tables:
        op.create_table(
            'videos',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('channel_id', sa.Integer(), nullable=False),
            sa.Column('youtube_video_id', sa.String(length=64), nullable=False),
            sa.Column('title', sa.Text(), nullable=True),
            sa.Column('current_description', sa.Text(), nullable=True),
            sa.Column('published_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('container_id', sa.Integer(), nullable=True),
            sa.Column('removed_at', sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(['channel_id'], ['channels.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['container_id'], ['containers.id'], ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('channel_id', 'youtube_video_id', name='uq_videos_channel_youtube_video')
        )
        op.create_index('ix_videos_id', 'videos', ['id'])
        op.create_index('ix_videos_channel_id', 'videos', ['channel_id'])
        op.create_index('ix_videos_container_id', 'videos', ['container_id'])
        op.create_index('ix_videos_channel_container', 'videos', ['channel_id', 'container_id'])

    if 'video_variables' not in existing_tables:
        op.create_table(
            'video_variables',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('video_id', sa.Integer(), nullable=False),
            sa.Column('template_id', sa.Integer(), nullable=False),
            sa.Column('variable_name', sa.String(length=255), nullable=False),
            sa.Column('variable_value', sa.Text(), nullable=False, server_default=''),
            *_timestamps(),
            sa.ForeignKeyConstraint(['video_id'], ['videos.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['template_id'], ['templates.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('video_id', 'template_id', 'variable_name', name='uq_video_variables_triple')
        )
        op.create_index('ix_video_variables_id', 'video_variables', ['id'])
        op.create_index('ix_video_variables_video_id', 'video_variables', ['video_id'])
        op.create_index('ix_video_variables_template_id', 'video_variables', ['template_id'])

    if 'description_history' not in existing_tables:
        op.create_table(
            'description_history',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('video_id', sa.Integer(), nullable=False),
            sa.Column('description', sa.Text(), nullable=False, server_default=''),
            sa.Column('version_number', sa.Integer(), nullable=False),
            sa.Column('created_by', sa.Integer(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(['video_id'], ['videos.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['created_by'], ['users.id'], ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id'),
            sa.UniqueConstraint('video_id', 'version_number', name='uq_description_history_version')
        )
        op.create_index('ix_description_history_id', 'description_history', ['id'])
        op.create_index('ix_description_history_video_id', 'description_history', ['video_id'])

    if 'usage_logs' not in existing_tables:
        op.create_table(
            'usage_logs',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.Integer(), nullable=False),
            sa.Column('channel_id', sa.Integer(), nullable=True),
            sa.Column('endpoint', sa.String(length=100), nullable=False),
            sa.Column('method', sa.String(length=10), nullable=False),
            sa.Column('pool', sa.String(length=20), nullable=False, server_default='data'),
            sa.Column('quota_units', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('status', sa.String(length=20), nullable=False),
            sa.Column('status_code', sa.Integer(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
            sa.ForeignKeyConstraint(['channel_id'], ['channels.id'], ondelete='SET NULL'),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_usage_logs_id', 'usage_logs', ['id'])
        op.create_index('ix_usage_logs_user_id', 'usage_logs', ['user_id'])
        op.create_index('ix_usage_logs_user_created', 'usage_logs', ['user_id', 'created_at'])


def downgrade() -> None:
    conn = op.get_bind()
    existing_tables = inspect(conn).get_table_names()

    for table in (
        'usage_logs', 'description_history', 'video_variables', 'videos',
        'containers', 'templates', 'channels', 'subscriptions', 'users',
    ):
        if table in existing_tables:
            op.drop_table(table)
