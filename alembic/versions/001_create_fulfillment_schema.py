"""Create fulfillment schema: catalog, demand, runs, confirmations, ledger.

Revision ID: 001_fulfillment_schema
Revises:
Create Date: 2026-10-19

The ledger's (run_number, store_id) uniqueness is added separately in 002
because existing ledgers may already hold duplicates.
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_fulfillment_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


UUID = sa.Uuid(as_uuid=True)
MONEY = sa.Numeric(12, 2)


def _timestamps(updated: bool = True) -> list:
    cols = [sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now())]
    if updated:
        cols.append(sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()))
    return cols


def upgrade() -> None:
    """Create all engine tables."""

    # ==================== Reference data ====================

    op.create_table(
        'stores',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('location', sa.String(255), nullable=True),
        sa.Column('is_active', sa.Boolean, nullable=True, server_default=sa.true()),
        *_timestamps(updated=False),
    )

    op.create_table(
        'products',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('barcode', sa.String(64), nullable=False),
        sa.Column('store_id', UUID, sa.ForeignKey('stores.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('style_name', sa.String(255), nullable=False, server_default=''),
        sa.Column('size', sa.String(50), nullable=True),
        sa.Column('color', sa.String(50), nullable=True),
        sa.Column('image_url', sa.String(500), nullable=True),
        sa.Column('inventory', sa.Integer, nullable=False, server_default='0'),
        sa.Column('cost_price', MONEY, nullable=False, server_default='0'),
        *_timestamps(),
    )
    op.create_index('ix_products_barcode', 'products', ['barcode'], unique=True)
    op.create_index('ix_products_store_id', 'products', ['store_id'])

    # ==================== Runs ====================

    op.create_table(
        'runs',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('run_number', sa.Integer, nullable=False),
        sa.Column('date', sa.Date, nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft',
                  comment='draft, active, completed, cancelled'),
        sa.Column('total_items', sa.Integer, nullable=True, server_default='0'),
        sa.Column('total_stores', sa.Integer, nullable=True, server_default='0'),
        sa.Column('total_styles', sa.Integer, nullable=True, server_default='0'),
        sa.Column('has_returns', sa.Boolean, nullable=True, server_default=sa.false()),
        sa.Column('runner_id', UUID, nullable=True),
        sa.Column('runner_name', sa.String(255), nullable=True),
        *_timestamps(),
        sa.Column('activated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
    )
    op.create_index('ix_runs_run_number', 'runs', ['run_number'], unique=True)
    op.create_index('ix_runs_status', 'runs', ['status'])
    op.create_index('ix_runs_runner_id', 'runs', ['runner_id'])
    op.create_index('ix_runs_created_at', 'runs', ['created_at'])

    op.create_table(
        'run_sequences',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('name', sa.String(30), nullable=False, unique=True),
        sa.Column('current_number', sa.Integer, nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    # ==================== Demand ====================

    op.create_table(
        'orders',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('platform', sa.String(50), nullable=False),
        sa.Column('platform_order_id', sa.String(100), nullable=False),
        sa.Column('order_date', sa.Date, nullable=True),
        *_timestamps(updated=False),
        sa.UniqueConstraint('platform', 'platform_order_id', name='uq_orders_platform_order'),
    )

    op.create_table(
        'order_items',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('order_id', UUID, sa.ForeignKey('orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('barcode', sa.String(64), nullable=False),
        sa.Column('product_name', sa.String(255), nullable=True),
        sa.Column('quantity', sa.Integer, nullable=False, server_default='1'),
        sa.Column('status', sa.String(30), nullable=False, server_default='pending'),
        sa.Column('run_id', UUID, sa.ForeignKey('runs.id', ondelete='SET NULL'), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_barcode', 'order_items', ['barcode'])
    op.create_index('ix_order_items_status', 'order_items', ['status'])
    op.create_index('ix_order_items_run_barcode', 'order_items', ['run_id', 'barcode'])

    op.create_table(
        'return_requests',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('store_id', UUID, sa.ForeignKey('stores.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('store_name', sa.String(255), nullable=False, server_default=''),
        sa.Column('barcode', sa.String(64), nullable=False),
        sa.Column('style_name', sa.String(255), nullable=False, server_default=''),
        sa.Column('size', sa.String(50), nullable=True),
        sa.Column('quantity', sa.Integer, nullable=False, server_default='1'),
        sa.Column('reason', sa.String(30), nullable=False, server_default='other'),
        sa.Column('return_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('status', sa.String(30), nullable=False, server_default='pending'),
        sa.Column('run_id', UUID, sa.ForeignKey('runs.id', ondelete='SET NULL'), nullable=True),
        sa.Column('run_number', sa.Integer, nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_return_requests_store_id', 'return_requests', ['store_id'])
    op.create_index('ix_return_requests_barcode', 'return_requests', ['barcode'])
    op.create_index('ix_return_requests_status', 'return_requests', ['status'])
    op.create_index('ix_return_requests_run_barcode', 'return_requests', ['run_id', 'barcode'])

    # ==================== Run lines & visits ====================

    op.create_table(
        'run_items',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('run_id', UUID, sa.ForeignKey('runs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('type', sa.String(20), nullable=False, server_default='pickup'),
        sa.Column('barcode', sa.String(64), nullable=False),
        sa.Column('store_id', UUID, sa.ForeignKey('stores.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('store_name', sa.String(255), nullable=False, server_default=''),
        sa.Column('style_name', sa.String(255), nullable=False, server_default=''),
        sa.Column('size', sa.String(50), nullable=True),
        sa.Column('color', sa.String(50), nullable=True),
        sa.Column('image_url', sa.String(500), nullable=True),
        sa.Column('cost_price', MONEY, nullable=False, server_default='0'),
        sa.Column('target_qty', sa.Integer, nullable=False),
        sa.Column('picked_qty', sa.Integer, nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('original_return_id', UUID,
                  sa.ForeignKey('return_requests.id', ondelete='SET NULL'), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('picked_qty >= 0', name='ck_run_items_picked_qty_non_negative'),
    )
    op.create_index('ix_run_items_run_id', 'run_items', ['run_id'])
    op.create_index('ix_run_items_barcode', 'run_items', ['barcode'])
    op.create_index('ix_run_items_run_store', 'run_items', ['run_id', 'store_id'])

    op.create_table(
        'run_confirmations',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('run_id', UUID, sa.ForeignKey('runs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('store_id', UUID, sa.ForeignKey('stores.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('store_name', sa.String(255), nullable=False, server_default=''),
        sa.Column('receipt_image_url', sa.String(1000), nullable=False),
        sa.Column('pickup_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('return_amount', MONEY, nullable=False, server_default='0'),
        sa.Column('total_amount', MONEY, nullable=False),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('confirmed_by', UUID, nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('run_id', 'store_id', name='uq_run_confirmations_run_store'),
    )
    op.create_index('ix_run_confirmations_run_id', 'run_confirmations', ['run_id'])

    # ==================== Ledger ====================

    op.create_table(
        'ledger_entries',
        sa.Column('id', UUID, primary_key=True),
        sa.Column('store_id', UUID, sa.ForeignKey('stores.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('store_name', sa.String(255), nullable=False, server_default=''),
        sa.Column('transaction_type', sa.String(10), nullable=False, comment='debit, credit'),
        sa.Column('amount', MONEY, nullable=False),
        sa.Column('discount', MONEY, nullable=False, server_default='0'),
        sa.Column('date', sa.Date, nullable=False),
        sa.Column('run_number', sa.Integer, nullable=True),
        sa.Column('run_confirmation_id', UUID,
                  sa.ForeignKey('run_confirmations.id', ondelete='SET NULL'), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        *_timestamps(),
    )
    op.create_index('ix_ledger_entries_store_id', 'ledger_entries', ['store_id'])
    op.create_index('ix_ledger_entries_date', 'ledger_entries', ['date'])
    op.create_index('ix_ledger_entries_run_number', 'ledger_entries', ['run_number'])
    op.create_index('ix_ledger_entries_run_confirmation_id', 'ledger_entries', ['run_confirmation_id'])


def downgrade() -> None:
    """Drop all engine tables in dependency order."""
    op.drop_table('ledger_entries')
    op.drop_table('run_confirmations')
    op.drop_table('run_items')
    op.drop_table('return_requests')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('run_sequences')
    op.drop_table('runs')
    op.drop_table('products')
    op.drop_table('stores')
