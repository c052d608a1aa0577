"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create initial database schema:
    - links table: slug to destination mappings
    - api_keys table: hashed API key credentials
    - rate_limit_windows table: per-key request counters per fixed window
    """
    bind = op.get_bind()
    existing_tables = inspect(bind).get_table_names()

    if 'links' not in existing_tables:
        op.create_table(
            'links',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('user_id', sa.String(length=64), nullable=False),
            sa.Column('slug', sa.String(length=50), nullable=False),
            sa.Column('destination_url', sa.Text(), nullable=False),
            sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('click_count', sa.Integer(), nullable=False, server_default='0'),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_links_slug', 'links', ['slug'], unique=True)
        op.create_index('ix_links_user_id', 'links', ['user_id'])
        op.create_index('ix_links_created_at', 'links', ['created_at'])

    if 'api_keys' not in existing_tables:
        op.create_table(
            'api_keys',
            sa.Column('id', sa.String(length=36), nullable=False),
            sa.Column('user_id', sa.String(length=64), nullable=False),
            sa.Column('key_hash', sa.String(length=64), nullable=False),
            sa.Column('name', sa.String(length=100), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint('id')
        )
        op.create_index('ix_api_keys_key_hash', 'api_keys', ['key_hash'], unique=True)
        op.create_index('ix_api_keys_user_id', 'api_keys', ['user_id'])

    if 'rate_limit_windows' not in existing_tables:
        # Foreign key is declared inline: SQLite cannot add it after creation
        op.create_table(
            'rate_limit_windows',
            sa.Column('api_key_id', sa.String(length=36), nullable=False),
            sa.Column('window_start_ms', sa.BigInteger(), nullable=False),
            sa.Column('request_count', sa.Integer(), nullable=False, server_default='1'),
            sa.ForeignKeyConstraint(['api_key_id'], ['api_keys.id'], ondelete='CASCADE'),
            sa.PrimaryKeyConstraint('api_key_id', 'window_start_ms')
        )
        op.create_index(
            'ix_rate_limit_windows_window_start_ms',
            'rate_limit_windows',
            ['window_start_ms']
        )


def downgrade() -> None:
    """Drop all tables and indexes."""
    op.drop_index('ix_rate_limit_windows_window_start_ms', table_name='rate_limit_windows')
    op.drop_table('rate_limit_windows')

    op.drop_index('ix_api_keys_user_id', table_name='api_keys')
    op.drop_index('ix_api_keys_key_hash', table_name='api_keys')
    op.drop_table('api_keys')

    op.drop_index('ix_links_created_at', table_name='links')
    op.drop_index('ix_links_user_id', table_name='links')
    op.drop_index('ix_links_slug', table_name='links')
    op.drop_table('links')
