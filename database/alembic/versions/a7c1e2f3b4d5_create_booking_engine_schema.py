"""create booking engine schema

Revision ID: a7c1e2f3b4d5
Revises:
Create Date: 2025-09-02

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'a7c1e2f3b4d5'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


USER_ROLE = ('CONCIERGE', 'COUNCIL', 'PROPERTY_MANAGER')
BOOKING_TYPE = ('MOVE_IN', 'MOVE_OUT', 'DELIVERY', 'RENO')
BOOKING_STATUS = ('SUBMITTED', 'PENDING', 'APPROVED', 'REJECTED', 'CANCELLED')
FEE_TYPE = ('move_in', 'move_out', 'unknown')


def upgrade() -> None:
    # Enums
    for values, name in (
        (USER_ROLE, 'user_role'),
        (BOOKING_TYPE, 'booking_type'),
        (BOOKING_STATUS, 'booking_status'),
        (FEE_TYPE, 'fee_type'),
    ):
        postgresql.ENUM(*values, name=name, create_type=False).create(op.get_bind(), checkfirst=True)

    # users
    op.create_table(
        'users',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(120), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('role', postgresql.ENUM(*USER_ROLE, name='user_role', create_type=False), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
    )
    op.create_index('ix_users_role', 'users', ['role'])

    # bookings
    op.create_table(
        'bookings',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('resident_name', sa.String(120), nullable=False),
        sa.Column('resident_email', sa.String(255), nullable=False),
        sa.Column('resident_phone', sa.String(40), nullable=True),
        sa.Column('unit', sa.String(20), nullable=False),
        sa.Column('public_unit_mask', sa.String(20), nullable=True),
        sa.Column('company_name', sa.String(120), nullable=True),
        sa.Column('booking_type', postgresql.ENUM(*BOOKING_TYPE, name='booking_type', create_type=False),
                  nullable=False),
        sa.Column('move_date', sa.Date(), nullable=False),
        sa.Column('start_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('end_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('elevator_required', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('loading_bay_required', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', postgresql.ENUM(*BOOKING_STATUS, name='booking_status', create_type=False),
                  nullable=False, server_default='SUBMITTED'),
        sa.Column('created_by_id', sa.UUID(), nullable=False),
        sa.Column('approved_by_id', sa.UUID(), nullable=True),
        sa.Column('approved_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('last_payment_reminder_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['created_by_id'], ['users.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['approved_by_id'], ['users.id'], ondelete='SET NULL'),
        sa.CheckConstraint('end_at > start_at', name='check_booking_end_after_start'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_bookings_unit', 'bookings', ['unit'])
    op.create_index('ix_bookings_move_date', 'bookings', ['move_date'])
    op.create_index('ix_bookings_start_at', 'bookings', ['start_at'])
    op.create_index('ix_bookings_status', 'bookings', ['status'])
    op.create_index('idx_bookings_elevator_window', 'bookings', ['elevator_required', 'status', 'start_at'])
    op.create_index('idx_bookings_status_created', 'bookings', ['status', 'created_at'])
    op.create_index('idx_bookings_unit_type_status', 'bookings', ['unit', 'booking_type', 'status'])

    # audit_log
    op.create_table(
        'audit_log',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('actor_id', sa.UUID(), nullable=False),
        sa.Column('action', sa.String(64), nullable=False),
        sa.Column('booking_id', sa.UUID(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['actor_id'], ['users.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_log_actor_id', 'audit_log', ['actor_id'])
    op.create_index('ix_audit_log_action', 'audit_log', ['action'])
    op.create_index('ix_audit_log_booking_id', 'audit_log', ['booking_id'])

    # notification_recipients
    op.create_table(
        'notification_recipients',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(120), nullable=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('enabled', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('notify_on', postgresql.JSONB(astext_type=sa.Text()), nullable=False,
                  server_default=sa.text("'[]'::jsonb")),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
    )

    # payment_records
    op.create_table(
        'payment_records',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('invoice_id', sa.String(64), nullable=False),
        sa.Column('client_id', sa.String(64), nullable=False),
        sa.Column('billing_period', sa.String(7), nullable=False),
        sa.Column('fee_type', postgresql.ENUM(*FEE_TYPE, name='fee_type', create_type=False),
                  nullable=False, server_default='unknown'),
        sa.Column('unit', sa.String(20), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('paid_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('dismissed', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('dismissed_reason', sa.Text(), nullable=True),
        sa.Column('dismissed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_id'),
    )
    op.create_index('ix_payment_records_client_id', 'payment_records', ['client_id'])
    op.create_index('ix_payment_records_billing_period', 'payment_records', ['billing_period'])
    op.create_index('idx_payment_records_matchable', 'payment_records', ['dismissed', 'fee_type'])

    # approval_links
    op.create_table(
        'approval_links',
        sa.Column('id', sa.UUID(), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('booking_id', sa.UUID(), nullable=True),
        sa.Column('client_id', sa.String(64), nullable=False),
        sa.Column('invoice_id', sa.String(64), nullable=False),
        sa.Column('billing_period', sa.String(7), nullable=False),
        sa.Column('approved_at', sa.TIMESTAMP(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['invoice_id'], ['payment_records.invoice_id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('invoice_id'),
    )
    op.create_index('ix_approval_links_booking_id', 'approval_links', ['booking_id'])


def downgrade() -> None:
    op.drop_table('approval_links')
    op.drop_table('payment_records')
    op.drop_table('notification_recipients')
    op.drop_table('audit_log')
    op.drop_table('bookings')
    op.drop_table('users')
    for name in ('fee_type', 'booking_status', 'booking_type', 'user_role'):
        op.execute(f'DROP TYPE IF EXISTS {name}')
