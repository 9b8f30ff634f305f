"""Initial billing schema: devices, sessions, orders, bills, payments

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18

This migration adds:
1. Devices with per-device rate overrides
2. Device sessions and their controller segments (one active session per device)
3. Orders and order items
4. Bills, full payments, itemized partial payments, session payments
5. Append-only bill events
6. Document sequences for bill and order numbers
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. DEVICES
    # ==========================================================================
    op.create_table('devices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('number', sa.String(length=32), nullable=False),
        sa.Column('device_type', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('hourly_rate_cents', sa.Integer(), nullable=True),
        sa.Column('playstation_rates', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('number', name='uq_devices_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_devices_device_type', 'devices', ['device_type'], unique=False)
    op.create_index('ix_devices_status', 'devices', ['status'], unique=False)

    # ==========================================================================
    # 2. BILLS (referenced by sessions and orders)
    # ==========================================================================
    op.create_table('bills',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('bill_number', sa.String(length=64), nullable=False),
        sa.Column('bill_type', sa.String(length=16), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('customer_name', sa.String(length=128), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('due_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('discount_percentage', sa.Integer(), nullable=True),
        sa.Column('tax_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('applied_discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('paid_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('remaining_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_reason', sa.String(length=255), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('cancelled_by_user_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('bill_number', name='uq_bills_bill_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_bills_status', 'bills', ['status'], unique=False)
    op.create_index('ix_bills_status_created', 'bills', ['status', 'created_at'], unique=False)

    # ==========================================================================
    # 3. DEVICE SESSIONS + SEGMENTS
    # ==========================================================================
    op.create_table('device_sessions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('device_id', sa.Integer(), nullable=False),
        sa.Column('device_type', sa.String(length=16), nullable=False),
        sa.Column('bill_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('customer_name', sa.String(length=128), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('total_cost_cents', sa.Integer(), nullable=True),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('final_cost_cents', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('ended_by_user_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['device_id'], ['devices.id']),
        sa.ForeignKeyConstraint(['bill_id'], ['bills.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_device_sessions_device_id', 'device_sessions', ['device_id'], unique=False)
    op.create_index('ix_device_sessions_bill_id', 'device_sessions', ['bill_id'], unique=False)
    op.create_index('ix_device_sessions_status', 'device_sessions', ['status'], unique=False)
    op.create_index('ix_device_sessions_status_started', 'device_sessions', ['status', 'started_at'], unique=False)
    # At most one active session per device
    op.create_index(
        'uq_device_sessions_one_active',
        'device_sessions',
        ['device_id'],
        unique=True,
        sqlite_where=sa.text("status = 'active'"),
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table('session_segments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('controller_count', sa.Integer(), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['session_id'], ['device_sessions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('session_id', 'position', name='uq_session_segments_position'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_segments_session_id', 'session_segments', ['session_id'], unique=False)

    # ==========================================================================
    # 4. ORDERS
    # ==========================================================================
    op.create_table('orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=64), nullable=False),
        sa.Column('bill_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('customer_name', sa.String(length=128), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('ready_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['bill_id'], ['bills.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number', name='uq_orders_order_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_orders_bill_id', 'orders', ['bill_id'], unique=False)
    op.create_index('ix_orders_status', 'orders', ['status'], unique=False)

    op.create_table('order_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('prepared_count', sa.Integer(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'name', name='uq_order_items_order_name'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'], unique=False)

    # ==========================================================================
    # 5. PAYMENTS
    # ==========================================================================
    op.create_table('bill_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('bill_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['bill_id'], ['bills.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_bill_payments_bill_id', 'bill_payments', ['bill_id'], unique=False)
    op.create_index('ix_bill_payments_created_at', 'bill_payments', ['created_at'], unique=False)

    op.create_table('partial_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('bill_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=64), nullable=False),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['bill_id'], ['bills.id']),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_partial_payments_bill_id', 'partial_payments', ['bill_id'], unique=False)
    op.create_index('ix_partial_payments_order_id', 'partial_payments', ['order_id'], unique=False)
    op.create_index('ix_partial_payments_order_number', 'partial_payments', ['order_number'], unique=False)

    op.create_table('partial_payment_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('partial_payment_id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=64), nullable=False),
        sa.Column('item_name', sa.String(length=128), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('price_cents', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['partial_payment_id'], ['partial_payments.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_partial_payment_items_partial_payment_id', 'partial_payment_items', ['partial_payment_id'], unique=False)
    op.create_index('ix_partial_payment_items_name', 'partial_payment_items', ['order_number', 'item_name'], unique=False)

    op.create_table('session_payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('bill_id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['bill_id'], ['bills.id']),
        sa.ForeignKeyConstraint(['session_id'], ['device_sessions.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_payments_bill_id', 'session_payments', ['bill_id'], unique=False)
    op.create_index('ix_session_payments_session_id', 'session_payments', ['session_id'], unique=False)

    # ==========================================================================
    # 6. BILL EVENTS + DOCUMENT SEQUENCES
    # ==========================================================================
    op.create_table('bill_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('bill_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=True),
        sa.Column('method', sa.String(length=16), nullable=True),
        sa.Column('entity_type', sa.String(length=32), nullable=True),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['bill_id'], ['bills.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_bill_events_bill_id', 'bill_events', ['bill_id'], unique=False)
    op.create_index('ix_bill_events_event_type', 'bill_events', ['event_type'], unique=False)
    op.create_index('ix_bill_events_bill_occurred', 'bill_events', ['bill_id', 'occurred_at'], unique=False)

    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_type', name='uq_doc_sequences_type'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_document_sequences_document_type', 'document_sequences', ['document_type'], unique=False)


def downgrade():
    op.drop_index('ix_document_sequences_document_type', table_name='document_sequences')
    op.drop_table('document_sequences')

    op.drop_index('ix_bill_events_bill_occurred', table_name='bill_events')
    op.drop_index('ix_bill_events_event_type', table_name='bill_events')
    op.drop_index('ix_bill_events_bill_id', table_name='bill_events')
    op.drop_table('bill_events')

    op.drop_index('ix_session_payments_session_id', table_name='session_payments')
    op.drop_index('ix_session_payments_bill_id', table_name='session_payments')
    op.drop_table('session_payments')

    op.drop_index('ix_partial_payment_items_name', table_name='partial_payment_items')
    op.drop_index('ix_partial_payment_items_partial_payment_id', table_name='partial_payment_items')
    op.drop_table('partial_payment_items')

    op.drop_index('ix_partial_payments_order_number', table_name='partial_payments')
    op.drop_index('ix_partial_payments_order_id', table_name='partial_payments')
    op.drop_index('ix_partial_payments_bill_id', table_name='partial_payments')
    op.drop_table('partial_payments')

    op.drop_index('ix_bill_payments_created_at', table_name='bill_payments')
    op.drop_index('ix_bill_payments_bill_id', table_name='bill_payments')
    op.drop_table('bill_payments')

    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_table('order_items')

    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_bill_id', table_name='orders')
    op.drop_table('orders')

    op.drop_index('ix_session_segments_session_id', table_name='session_segments')
    op.drop_table('session_segments')

    op.drop_index('uq_device_sessions_one_active', table_name='device_sessions')
    op.drop_index('ix_device_sessions_status_started', table_name='device_sessions')
    op.drop_index('ix_device_sessions_status', table_name='device_sessions')
    op.drop_index('ix_device_sessions_bill_id', table_name='device_sessions')
    op.drop_index('ix_device_sessions_device_id', table_name='device_sessions')
    op.drop_table('device_sessions')

    op.drop_index('ix_bills_status_created', table_name='bills')
    op.drop_index('ix_bills_status', table_name='bills')
    op.drop_table('bills')

    op.drop_index('ix_devices_status', table_name='devices')
    op.drop_index('ix_devices_device_type', table_name='devices')
    op.drop_table('devices')
