"""001 Initial schema - tours, bokun_config, sync_logs

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'tours',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('external_id', sa.String(100), nullable=True),
        sa.Column('upstream_booking_id', sa.String(100), nullable=True),
        sa.Column('confirmation_code', sa.String(100), nullable=True),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('external_source', sa.String(20), server_default='bokun'),
        sa.Column('date', sa.Date(), nullable=False),
        sa.Column('time', sa.String(5), nullable=False, server_default='09:00'),
        sa.Column('duration', sa.String(50), nullable=True),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('language', sa.String(50), nullable=True),
        sa.Column('participant_count', sa.Integer(), server_default='1'),
        sa.Column('participant_names', sa.JSON(), nullable=True),
        sa.Column('customer_name', sa.String(200), nullable=True),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('customer_phone', sa.String(50), nullable=True),
        sa.Column('booking_channel', sa.String(100), nullable=True),
        sa.Column('amount', sa.Numeric(10, 2), server_default='0'),
        sa.Column('cancelled', sa.Boolean(), server_default=sa.false()),
        sa.Column('assignment_needed', sa.Boolean(), server_default=sa.true()),
        sa.Column('guide_payment_status', sa.String(50), server_default='awaiting guide payment'),
        sa.Column('rescheduled', sa.Boolean(), server_default=sa.false()),
        sa.Column('original_date', sa.Date(), nullable=True),
        sa.Column('original_time', sa.String(5), nullable=True),
        sa.Column('rescheduled_at', sa.DateTime(), nullable=True),
        sa.Column('last_sync_timestamp', sa.DateTime(), nullable=True),
        sa.Column('raw_payload', sa.JSON(), nullable=True),
        sa.Column('guide_id', sa.String(36), nullable=True),
        sa.Column('guide_name', sa.String(100), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )
    op.create_index('ix_tour_upstream_booking_id', 'tours', ['upstream_booking_id'])
    op.create_index('ix_tour_external_id', 'tours', ['external_id'])
    op.create_index('ix_tour_date_time', 'tours', ['date', 'time'])

    op.create_table(
        'bokun_config',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('access_key', sa.Text(), nullable=True),
        sa.Column('secret_key', sa.Text(), nullable=True),
        sa.Column('vendor_id', sa.String(50), nullable=True),
        sa.Column('sync_enabled', sa.Boolean(), server_default=sa.false()),
        sa.Column('last_sync', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        'sync_logs',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('sync_type', sa.String(20), server_default='manual'),
        sa.Column('start_date', sa.Date(), nullable=True),
        sa.Column('end_date', sa.Date(), nullable=True),
        sa.Column('status', sa.String(20), server_default='started'),
        sa.Column('bookings_found', sa.Integer(), server_default='0'),
        sa.Column('bookings_synced', sa.Integer(), server_default='0'),
        sa.Column('bookings_created', sa.Integer(), server_default='0'),
        sa.Column('bookings_updated', sa.Integer(), server_default='0'),
        sa.Column('bookings_failed', sa.Integer(), server_default='0'),
        sa.Column('search_variant', sa.String(50), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('triggered_by', sa.String(100), nullable=True),
        sa.Column('duration_seconds', sa.Float(), nullable=True),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_sync_log_created_at', 'sync_logs', ['created_at'])


def downgrade():
    op.drop_index('ix_sync_log_created_at', table_name='sync_logs')
    op.drop_table('sync_logs')
    op.drop_table('bokun_config')
    op.drop_index('ix_tour_date_time', table_name='tours')
    op.drop_index('ix_tour_external_id', table_name='tours')
    op.drop_index('ix_tour_upstream_booking_id', table_name='tours')
    op.drop_table('tours')
