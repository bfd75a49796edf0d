"""Orders and order items.

Revision ID: 001_orders
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = '001_orders'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ### Orders table ###
    op.create_table(
        'orders',
        sa.Column('order_id', sa.Uuid(), primary_key=True),
        sa.Column('customer_id', sa.String(50), nullable=False),
        sa.Column('customer_email', sa.String(100)),
        sa.Column('customer_name', sa.String(100)),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('total_amount', sa.Numeric(precision=19, scale=2), nullable=False),
        sa.Column('currency', sa.String(3), server_default='USD'),
        sa.Column('shipping_address', sa.Text()),
        sa.Column('billing_address', sa.Text()),
        sa.Column('notes', sa.Text()),
        sa.Column('tracking_number', sa.String(100)),
        sa.Column('payment_method', sa.String(50)),
        sa.Column('payment_status', sa.String(20), server_default='PENDING'),
        sa.Column('cancelled_reason', sa.Text()),
        sa.Column('cancelled_by', sa.String(100)),
        sa.Column('cancelled_at', sa.DateTime(timezone=True)),
        sa.Column('processed_at', sa.DateTime(timezone=True)),
        sa.Column('shipped_at', sa.DateTime(timezone=True)),
        sa.Column('delivered_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('version', sa.BigInteger(), nullable=False, server_default='0'),
    )
    op.create_index('ix_orders_customer_id', 'orders', ['customer_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    # Supports the pending-order sweep range scan
    op.create_index('idx_order_status_created', 'orders', ['status', 'created_at'])

    # ### Order items table ###
    op.create_table(
        'order_items',
        sa.Column('item_id', sa.Uuid(), primary_key=True),
        sa.Column('order_id', sa.Uuid(), sa.ForeignKey('orders.order_id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('product_id', sa.String(50), nullable=False),
        sa.Column('product_name', sa.String(200), nullable=False),
        sa.Column('product_description', sa.Text()),
        sa.Column('product_sku', sa.String(50)),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(precision=19, scale=2), nullable=False),
        sa.Column('discount_amount', sa.Numeric(precision=19, scale=2), server_default='0'),
        sa.Column('tax_amount', sa.Numeric(precision=19, scale=2), server_default='0'),
        sa.Column('subtotal', sa.Numeric(precision=19, scale=2), nullable=False),
        sa.Column('notes', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_product_id', 'order_items', ['product_id'])


def downgrade() -> None:
    op.drop_table('order_items')
    op.drop_table('orders')
