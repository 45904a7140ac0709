"""Initial rehearsal scheduling schema

Revision ID: 3f1a9c0d7b21
Revises:
Create Date: 2026-10-19

Creates users, bands, memberships, venues, rehearsal series and
occurrences, invitations, availability responses, attendance records,
scheduling conflicts and band webhook subscriptions.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from rehearsal_scheduler.models.base import GUID, UTCDateTime


# revision identifiers, used by Alembic.
revision: str = '3f1a9c0d7b21'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def _audit_columns() -> list:
    return [
        sa.Column('id', GUID(), nullable=False),
        sa.Column('created_at', UTCDateTime(),
                  server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', UTCDateTime(), nullable=True),
        sa.Column('deleted_at', UTCDateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    ]


def upgrade() -> None:
    op.create_table('users',
        sa.Column('display_name', sa.String(length=100), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        *_audit_columns(),
        sa.UniqueConstraint('email'),
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index('idx_user_email', ['email'], unique=False)
        batch_op.create_index('idx_user_deleted', ['deleted_at'], unique=False)

    op.create_table('bands',
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('logo_url', sa.String(length=500), nullable=True),
        sa.Column('owner_id', GUID(), nullable=False),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id']),
    )
    with op.batch_alter_table('bands', schema=None) as batch_op:
        batch_op.create_index('idx_band_owner', ['owner_id'], unique=False)
        batch_op.create_index('idx_band_deleted', ['deleted_at'], unique=False)

    op.create_table('band_members',
        sa.Column('band_id', GUID(), nullable=False),
        sa.Column('user_id', GUID(), nullable=False),
        sa.Column('role', sa.String(length=50), nullable=False, server_default='member'),
        sa.Column('joined_at', UTCDateTime(), nullable=False),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['band_id'], ['bands.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('band_id', 'user_id', name='uq_band_member'),
    )
    with op.batch_alter_table('band_members', schema=None) as batch_op:
        batch_op.create_index('idx_band_member_band', ['band_id'], unique=False)
        batch_op.create_index('idx_band_member_user', ['user_id'], unique=False)

    op.create_table('venues',
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('location', sa.String(length=500), nullable=True),
        sa.Column('capacity', sa.Integer(), nullable=True),
        sa.Column('venue_metadata', JSON_TYPE, nullable=False),
        *_audit_columns(),
    )
    with op.batch_alter_table('venues', schema=None) as batch_op:
        batch_op.create_index('idx_venue_deleted', ['deleted_at'], unique=False)

    op.create_table('rehearsal_series',
        sa.Column('band_id', GUID(), nullable=False),
        sa.Column('created_by', GUID(), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('anchor_start', UTCDateTime(), nullable=False),
        sa.Column('anchor_end', UTCDateTime(), nullable=False),
        sa.Column('timezone', sa.String(length=64), nullable=False, server_default='UTC'),
        sa.Column('venue_id', GUID(), nullable=True),
        sa.Column('recurrence', JSON_TYPE, nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='draft'),
        sa.Column('committed_at', UTCDateTime(), nullable=True),
        sa.Column('previous_series_id', GUID(), nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['band_id'], ['bands.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['created_by'], ['users.id']),
        sa.ForeignKeyConstraint(['venue_id'], ['venues.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['previous_series_id'], ['rehearsal_series.id']),
    )
    with op.batch_alter_table('rehearsal_series', schema=None) as batch_op:
        batch_op.create_index('idx_series_band', ['band_id'], unique=False)
        batch_op.create_index('idx_series_status', ['status'], unique=False)
        batch_op.create_index('idx_series_deleted', ['deleted_at'], unique=False)

    op.create_table('rehearsal_occurrences',
        sa.Column('series_id', GUID(), nullable=False),
        sa.Column('band_id', GUID(), nullable=False),
        sa.Column('start_time', UTCDateTime(), nullable=False),
        sa.Column('end_time', UTCDateTime(), nullable=False),
        sa.Column('venue_id', GUID(), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='proposed'),
        sa.Column('needs_reschedule', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('replaces_occurrence_id', GUID(), nullable=True),
        sa.Column('cancellation_reason', sa.String(length=200), nullable=True),
        sa.Column('proposed_at', UTCDateTime(), nullable=False),
        sa.Column('confirmed_at', UTCDateTime(), nullable=True),
        sa.Column('cancelled_at', UTCDateTime(), nullable=True),
        sa.Column('completed_at', UTCDateTime(), nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['series_id'], ['rehearsal_series.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['band_id'], ['bands.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['venue_id'], ['venues.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['replaces_occurrence_id'], ['rehearsal_occurrences.id']),
    )
    with op.batch_alter_table('rehearsal_occurrences', schema=None) as batch_op:
        batch_op.create_index('idx_occurrence_series', ['series_id'], unique=False)
        batch_op.create_index('idx_occurrence_band_start', ['band_id', 'start_time'], unique=False)
        batch_op.create_index('idx_occurrence_venue_start', ['venue_id', 'start_time'], unique=False)
        batch_op.create_index('idx_occurrence_status_start', ['status', 'start_time'], unique=False)
        batch_op.create_index('idx_occurrence_deleted', ['deleted_at'], unique=False)

    op.create_table('invitations',
        sa.Column('occurrence_id', GUID(), nullable=False),
        sa.Column('user_id', GUID(), nullable=False),
        sa.Column('invited_at', UTCDateTime(), nullable=False),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['occurrence_id'], ['rehearsal_occurrences.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('occurrence_id', 'user_id', name='uq_invitation'),
    )
    with op.batch_alter_table('invitations', schema=None) as batch_op:
        batch_op.create_index('idx_invitation_occurrence', ['occurrence_id'], unique=False)
        batch_op.create_index('idx_invitation_user', ['user_id'], unique=False)

    op.create_table('availability_responses',
        sa.Column('occurrence_id', GUID(), nullable=False),
        sa.Column('user_id', GUID(), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('responded_at', UTCDateTime(), nullable=False),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['occurrence_id'], ['rehearsal_occurrences.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('occurrence_id', 'user_id', name='uq_availability_response'),
    )
    with op.batch_alter_table('availability_responses', schema=None) as batch_op:
        batch_op.create_index('idx_availability_occurrence', ['occurrence_id'], unique=False)
        batch_op.create_index('idx_availability_user', ['user_id'], unique=False)

    op.create_table('attendance_records',
        sa.Column('occurrence_id', GUID(), nullable=False),
        sa.Column('user_id', GUID(), nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('recorded_at', UTCDateTime(), nullable=False),
        sa.Column('manual_override', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['occurrence_id'], ['rehearsal_occurrences.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('occurrence_id', 'user_id', name='uq_attendance_record'),
    )
    with op.batch_alter_table('attendance_records', schema=None) as batch_op:
        batch_op.create_index('idx_attendance_occurrence', ['occurrence_id'], unique=False)
        batch_op.create_index('idx_attendance_user', ['user_id'], unique=False)

    op.create_table('scheduling_conflicts',
        sa.Column('series_id', GUID(), nullable=False),
        sa.Column('occurrence_id', GUID(), nullable=False),
        sa.Column('conflicting_occurrence_id', GUID(), nullable=True),
        sa.Column('conflict_kind', sa.String(length=50), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('member_ids', JSON_TYPE, nullable=False),
        sa.Column('status', sa.String(length=50), nullable=False, server_default='detected'),
        sa.Column('detected_at', UTCDateTime(), nullable=False),
        sa.Column('resolved_at', UTCDateTime(), nullable=True),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['series_id'], ['rehearsal_series.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['occurrence_id'], ['rehearsal_occurrences.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['conflicting_occurrence_id'], ['rehearsal_occurrences.id'], ondelete='SET NULL'),
    )
    with op.batch_alter_table('scheduling_conflicts', schema=None) as batch_op:
        batch_op.create_index('idx_conflict_series', ['series_id'], unique=False)
        batch_op.create_index('idx_conflict_occurrence', ['occurrence_id'], unique=False)
        batch_op.create_index('idx_conflict_kind', ['conflict_kind'], unique=False)
        batch_op.create_index('idx_conflict_status', ['status'], unique=False)

    op.create_table('band_subscriptions',
        sa.Column('band_id', GUID(), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('secret', sa.String(length=255), nullable=False),
        sa.Column('event_types', sa.String(length=255), nullable=False,
                  server_default='rehearsal.scheduled,rehearsal.cancelled,rehearsal.rescheduled,'
                                 'rehearsal.completed,availability.updated'),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_triggered', UTCDateTime(), nullable=True),
        sa.Column('failure_count', sa.Integer(), nullable=False, server_default='0'),
        *_audit_columns(),
        sa.ForeignKeyConstraint(['band_id'], ['bands.id'], ondelete='CASCADE'),
    )
    with op.batch_alter_table('band_subscriptions', schema=None) as batch_op:
        batch_op.create_index('ix_band_subscriptions_band_active', ['band_id', 'active'], unique=False)


def downgrade() -> None:
    for table in (
        'band_subscriptions',
        'scheduling_conflicts',
        'attendance_records',
        'availability_responses',
        'invitations',
        'rehearsal_occurrences',
        'rehearsal_series',
        'venues',
        'band_members',
        'bands',
        'users',
    ):
        op.drop_table(table)
