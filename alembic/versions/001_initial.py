"""Initial migration

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum labels are the Python member names, as SQLAlchemy stores them
media_kind = sa.Enum('IMAGE', 'AUDIO', 'VIDEO', 'OTHER', name='mediakind')
enrichment_state = sa.Enum(
    'NOT_APPLICABLE', 'PENDING', 'SUCCEEDED', 'FAILED', name='enrichmentstate'
)


def upgrade() -> None:
    # Create users table
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column('username', sa.String(100), nullable=False, unique=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Create api_keys table
    op.create_table(
        'api_keys',
        sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=False), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('key_hash', sa.String(255), nullable=False, unique=True, index=True),
        sa.Column('key_prefix', sa.String(12), nullable=False, index=True),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('scopes', postgresql.JSON(), nullable=True, default=[]),
        sa.Column('rate_limit_per_minute', sa.Integer(), nullable=False, default=60),
        sa.Column('rate_limit_per_hour', sa.Integer(), nullable=False, default=500),
        sa.Column('is_active', sa.Boolean(), nullable=False, default=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
    )

    # Create entries table
    op.create_table(
        'entries',
        sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column('user_id', postgresql.UUID(as_uuid=False), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('title', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Create media_files table
    op.create_table(
        'media_files',
        sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column('entry_id', postgresql.UUID(as_uuid=False), sa.ForeignKey('entries.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('storage_key', sa.String(255), nullable=False, unique=True),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('original_name', sa.String(255), nullable=False),
        sa.Column('mime_type', sa.String(100), nullable=False),
        sa.Column('media_kind', media_kind, nullable=False),
        sa.Column('size_bytes', sa.BigInteger(), nullable=False),
        sa.Column('duration_seconds', sa.Float(), nullable=True),
        sa.Column('caption', sa.Text(), nullable=True),
        sa.Column('enrichment_state', enrichment_state, nullable=False, default='NOT_APPLICABLE'),
        sa.Column('enrichment_error', sa.Text(), nullable=True),
        sa.Column('enrichment_attempts', sa.Integer(), nullable=False, default=0),
        sa.Column('pending_since', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('enriched_at', sa.DateTime(timezone=True), nullable=True),
    )

    # Create transcriptions table
    op.create_table(
        'transcriptions',
        sa.Column('id', postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column('media_file_id', postgresql.UUID(as_uuid=False), sa.ForeignKey('media_files.id', ondelete='CASCADE'), nullable=False, unique=True, index=True),
        sa.Column('text', sa.Text(), nullable=False),
        sa.Column('confidence', sa.Integer(), nullable=True),
        sa.Column('language', sa.String(10), nullable=False, default='en'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Create indexes
    op.create_index('ix_media_files_enrichment_state', 'media_files', ['enrichment_state'])
    op.create_index('ix_media_files_created_at', 'media_files', ['created_at'])
    op.create_index('ix_media_files_pending_since', 'media_files', ['pending_since'])


def downgrade() -> None:
    op.drop_index('ix_media_files_pending_since')
    op.drop_index('ix_media_files_created_at')
    op.drop_index('ix_media_files_enrichment_state')
    op.drop_table('transcriptions')
    op.drop_table('media_files')
    op.drop_table('entries')
    op.drop_table('api_keys')
    op.drop_table('users')
    op.execute('DROP TYPE IF EXISTS enrichmentstate')
    op.execute('DROP TYPE IF EXISTS mediakind')
