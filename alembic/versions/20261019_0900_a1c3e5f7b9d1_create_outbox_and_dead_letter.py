"""create outbox and dead-letter tables

Revision ID: a1c3e5f7b9d1
Revises:
Create Date: 2026-10-19 09:00:00.000000+00:00

"""
from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'a1c3e5f7b9d1'
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

BIGINT_PK = sa.BigInteger().with_variant(sa.Integer(), 'sqlite')
JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    """Upgrade database schema."""
    op.create_table(
        'outbox_events',
        sa.Column('id', BIGINT_PK, autoincrement=True, nullable=False, comment='Auto-incrementing primary key'),
        sa.Column('aggregate_type', sa.String(length=100), nullable=False, comment='Aggregate type (e.g., Project, Task)'),
        sa.Column('aggregate_id', sa.String(length=100), nullable=False, comment='Aggregate identifier'),
        sa.Column('event_type', sa.String(length=100), nullable=False, comment='Event type identifier'),
        sa.Column('event_version', sa.Integer(), nullable=False, comment='Event schema version'),
        sa.Column('payload', JSON_TYPE, nullable=False, comment='Event data'),
        sa.Column('tenant_id', sa.String(length=64), nullable=True, comment='Owning tenant'),
        sa.Column('user_id', sa.String(length=64), nullable=True, comment='User who caused the change'),
        sa.Column('correlation_id', sa.String(length=64), nullable=True, comment='Distributed tracing correlation ID'),
        sa.Column('status', sa.String(length=16), nullable=False, comment='pending, processing, published or failed'),
        sa.Column('attempts', sa.Integer(), nullable=False, comment='Failed publish attempts'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, comment='Attempt limit before terminal failure'),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True, comment='Earliest time the event may be claimed'),
        sa.Column('claimed_by', sa.String(length=255), nullable=True, comment='Worker currently processing the event'),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True, comment='When the current claim was taken'),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True, comment='When the event was successfully published'),
        sa.Column('error_message', sa.Text(), nullable=True, comment='Last error message if publishing failed'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='Timestamp of record creation'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False, comment='Timestamp of last update'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_outbox_events')),
    )
    op.create_index(op.f('ix_outbox_events_event_type'), 'outbox_events', ['event_type'], unique=False)
    op.create_index(op.f('ix_outbox_events_tenant_id'), 'outbox_events', ['tenant_id'], unique=False)
    op.create_index(op.f('ix_outbox_events_correlation_id'), 'outbox_events', ['correlation_id'], unique=False)
    op.create_index('ix_outbox_events_claimable', 'outbox_events', ['status', 'next_retry_at', 'created_at'], unique=False)
    op.create_index('ix_outbox_events_processing', 'outbox_events', ['status', 'claimed_at'], unique=False)
    op.create_index('ix_outbox_events_aggregate', 'outbox_events', ['aggregate_type', 'aggregate_id', 'created_at'], unique=False)

    op.create_table(
        'dead_letter_entries',
        sa.Column('id', BIGINT_PK, autoincrement=True, nullable=False, comment='Auto-incrementing primary key'),
        sa.Column('job_id', sa.String(length=255), nullable=False, comment='Job identifier'),
        sa.Column('job_class', sa.String(length=200), nullable=False, comment='Symbolic job name'),
        sa.Column('queue', sa.String(length=100), nullable=True, comment='Queue the job ran on'),
        sa.Column('payload', sa.Text(), nullable=False, comment='Original job arguments (JSON, verbatim)'),
        sa.Column('exception_class', sa.String(length=200), nullable=True, comment='Exception or outcome type of the last failure'),
        sa.Column('exception_message', sa.Text(), nullable=True, comment='Last failure message'),
        sa.Column('attempts_made', sa.Integer(), nullable=False, comment='Attempts consumed'),
        sa.Column('escalation_count', sa.Integer(), nullable=False, comment='Times this job was dead-lettered'),
        sa.Column('tenant_id', sa.String(length=64), nullable=True, comment='Owning tenant'),
        sa.Column('moved_at', sa.DateTime(timezone=True), nullable=False, comment='Last escalation time'),
        sa.PrimaryKeyConstraint('id', name=op.f('pk_dead_letter_entries')),
        sa.UniqueConstraint('job_id', name=op.f('uq_dead_letter_entries_job_id')),
    )
    op.create_index('ix_dead_letter_entries_tenant_moved', 'dead_letter_entries', ['tenant_id', 'moved_at'], unique=False)
    op.create_index('ix_dead_letter_entries_job_class', 'dead_letter_entries', ['job_class'], unique=False)


def downgrade() -> None:
    """Downgrade database schema."""
    op.drop_index('ix_dead_letter_entries_job_class', table_name='dead_letter_entries')
    op.drop_index('ix_dead_letter_entries_tenant_moved', table_name='dead_letter_entries')
    op.drop_table('dead_letter_entries')

    op.drop_index('ix_outbox_events_aggregate', table_name='outbox_events')
    op.drop_index('ix_outbox_events_processing', table_name='outbox_events')
    op.drop_index('ix_outbox_events_claimable', table_name='outbox_events')
    op.drop_index(op.f('ix_outbox_events_correlation_id'), table_name='outbox_events')
    op.drop_index(op.f('ix_outbox_events_tenant_id'), table_name='outbox_events')
    op.drop_index(op.f('ix_outbox_events_event_type'), table_name='outbox_events')
    op.drop_table('outbox_events')
