"""create_waitlist_tables

Revision ID: w001_create_waitlist
Revises:
Create Date: 2026-10-19 09:12:40.118233

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = 'w001_create_waitlist'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create waitlist_entries and waitlist_lifecycle_events.

    offer_slot_key is unique so two offers can never hold the same
    calendar slot; offer_token_hash is unique so a token resolves to one entry.
    """
    op.create_table(
        'waitlist_entries',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('salon_id', sa.String(), nullable=False),
        sa.Column('customer_id', sa.String(), nullable=True),
        sa.Column('customer_name', sa.String(length=255), nullable=False),
        sa.Column('customer_email', sa.String(length=320), nullable=True),
        sa.Column('customer_phone', sa.String(length=32), nullable=True),
        sa.Column('service_id', sa.String(), nullable=False),
        sa.Column('employee_id', sa.String(), nullable=True),
        sa.Column('preferred_date', sa.Date(), nullable=False),
        sa.Column('preferred_time_start', sa.Time(), nullable=True),
        sa.Column('preferred_time_end', sa.Time(), nullable=True),
        sa.Column('status', sa.String(length=20), server_default=sa.text("'waiting'"), nullable=False),
        sa.Column('offer_token_hash', sa.String(length=64), nullable=True),
        sa.Column('reminder_token_hash', sa.String(length=64), nullable=True),
        sa.Column('offer_slot_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('offer_slot_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('offer_employee_id', sa.String(), nullable=True),
        sa.Column('offer_slot_key', sa.String(), nullable=True),
        sa.Column('offer_trigger', sa.String(length=32), nullable=True),
        sa.Column('offer_from_status', sa.String(length=20), nullable=True),
        sa.Column('offer_attempt', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('notified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('claim_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reminder_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cooldown_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cooldown_reason', sa.String(length=20), nullable=True),
        sa.Column('decline_count', sa.Integer(), server_default=sa.text('0'), nullable=False),
        sa.Column('booking_id', sa.String(), nullable=True),
        sa.Column('responded_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('response_channel', sa.String(length=20), nullable=True),
        sa.Column('cancellation_reason', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "status IN ('waiting', 'notified', 'booked', 'cancelled', 'expired')",
            name='check_waitlist_entry_status',
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('offer_token_hash'),
        sa.UniqueConstraint('reminder_token_hash'),
        sa.UniqueConstraint('offer_slot_key'),
    )
    op.create_index('ix_waitlist_entries_salon_id', 'waitlist_entries', ['salon_id'], unique=False)
    op.create_index(
        'ix_wtl_candidates',
        'waitlist_entries',
        ['salon_id', 'service_id', 'preferred_date', 'status', 'created_at'],
        unique=False,
    )
    op.create_index('ix_wtl_status_expires', 'waitlist_entries', ['status', 'expires_at'], unique=False)
    op.create_index('ix_wtl_status_cooldown', 'waitlist_entries', ['status', 'cooldown_until'], unique=False)

    op.create_table(
        'waitlist_lifecycle_events',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('salon_id', sa.String(), nullable=False),
        sa.Column('waitlist_entry_id', sa.String(), nullable=False),
        sa.Column('from_status', sa.String(length=20), nullable=True),
        sa.Column('to_status', sa.String(length=20), nullable=True),
        sa.Column('reason', sa.String(length=50), nullable=False),
        sa.Column('channel', sa.String(length=20), nullable=False),
        sa.Column('event_data', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_waitlist_lifecycle_events_waitlist_entry_id',
        'waitlist_lifecycle_events',
        ['waitlist_entry_id'],
        unique=False,
    )
    op.create_index(
        'ix_wle_salon_created', 'waitlist_lifecycle_events', ['salon_id', 'created_at'], unique=False
    )


def downgrade() -> None:
    op.drop_index('ix_wle_salon_created', table_name='waitlist_lifecycle_events')
    op.drop_index('ix_waitlist_lifecycle_events_waitlist_entry_id', table_name='waitlist_lifecycle_events')
    op.drop_table('waitlist_lifecycle_events')
    op.drop_index('ix_wtl_status_cooldown', table_name='waitlist_entries')
    op.drop_index('ix_wtl_status_expires', table_name='waitlist_entries')
    op.drop_index('ix_wtl_candidates', table_name='waitlist_entries')
    op.drop_index('ix_waitlist_entries_salon_id', table_name='waitlist_entries')
    op.drop_table('waitlist_entries')
