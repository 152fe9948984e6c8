"""create_fulfillment_tables

Revision ID: 3f9c1e2a7b10
Revises:
Create Date: 2026-03-02 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f9c1e2a7b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')

ORDER_STATUS = sa.Enum(
    'pending', 'paid', 'shipped', 'delivered', 'cancelled',
    name='fulfillment_order_status_enum',
)
PAYMENT_STATUS = sa.Enum(
    'pending', 'approved', 'rejected', 'cancelled',
    name='fulfillment_payment_status_enum',
)
SHIPPING_TYPE = sa.Enum(
    'standard', 'express', 'pickup',
    name='fulfillment_shipping_type_enum',
)
MOVEMENT_REASON = sa.Enum(
    'sale', 'restock', 'return', 'adjustment',
    name='store_stock_movement_reason_enum',
)


def upgrade() -> None:
    """Upgrade schema - Add product stock, orders and order history tables."""

    op.create_table(
        'store_products',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('sizes', JSON_TYPE, nullable=False),
        sa.Column('weight_kg', sa.Numeric(8, 3), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_store_products_name', 'store_products', ['name'])

    op.create_table(
        'store_product_stock',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('size', sa.String(length=20), nullable=False),
        sa.Column('quantity', sa.Integer(), server_default='0', nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['product_id'], ['store_products.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'size', name='unique_product_size'),
        sa.CheckConstraint('quantity >= 0', name='non_negative_stock')
    )

    op.create_table(
        'store_stock_movements',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=False),
        sa.Column('size', sa.String(length=20), nullable=False),
        sa.Column('reason', MOVEMENT_REASON, nullable=False),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('quantity_after', sa.Integer(), nullable=False),
        sa.Column('actor', sa.String(length=100), nullable=False),
        sa.Column('reference_type', sa.String(length=30), nullable=True),
        sa.Column('reference_id', sa.String(length=100), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['product_id'], ['store_products.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'ix_store_stock_movements_product_id', 'store_stock_movements', ['product_id']
    )

    op.create_table(
        'fulfillment_orders',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('customer_name', sa.String(length=255), nullable=False),
        sa.Column('customer_email', sa.String(length=255), nullable=False),
        sa.Column('customer_phone', sa.String(length=50), nullable=True),
        sa.Column('address_street', sa.String(length=255), nullable=True),
        sa.Column('address_number', sa.String(length=20), nullable=True),
        sa.Column('address_floor_unit', sa.String(length=50), nullable=True),
        sa.Column('address_postal_code', sa.String(length=20), nullable=True),
        sa.Column('address_city', sa.String(length=100), nullable=True),
        sa.Column('address_province', sa.String(length=100), nullable=True),
        sa.Column('address_country', sa.String(length=100), server_default='Argentina', nullable=True),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount', sa.Numeric(12, 2), server_default='0', nullable=True),
        sa.Column('shipping_cost', sa.Numeric(12, 2), server_default='0', nullable=True),
        sa.Column('total', sa.Numeric(12, 2), nullable=False),
        sa.Column('shipping_type', SHIPPING_TYPE, server_default='standard', nullable=True),
        sa.Column('shipping_method', sa.String(length=100), nullable=True),
        sa.Column('shipping_provider', sa.String(length=100), nullable=True),
        sa.Column('tracking_number', sa.String(length=100), nullable=True),
        sa.Column('status', ORDER_STATUS, server_default='pending', nullable=True),
        sa.Column('status_changed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_status', PAYMENT_STATUS, server_default='pending', nullable=True),
        sa.Column('payment_id', sa.String(length=100), nullable=True),
        sa.Column('payment_preference_id', sa.String(length=100), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "tracking_number IS NULL OR status IN ('shipped', 'delivered')",
            name='tracking_only_when_shipped',
        ),
        sa.CheckConstraint(
            'ABS(total - (subtotal - COALESCE(discount, 0) + COALESCE(shipping_cost, 0))) < 0.01',
            name='consistent_order_total',
        )
    )
    op.create_index('ix_fulfillment_orders_tracking_number', 'fulfillment_orders', ['tracking_number'])
    op.create_index('ix_fulfillment_orders_payment_id', 'fulfillment_orders', ['payment_id'])
    op.create_index(
        'ix_fulfillment_orders_payment_preference_id',
        'fulfillment_orders',
        ['payment_preference_id'],
    )

    op.create_table(
        'fulfillment_order_items',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Uuid(), nullable=True),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('size', sa.String(length=20), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.ForeignKeyConstraint(['order_id'], ['fulfillment_orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity > 0', name='positive_item_quantity')
    )

    op.create_table(
        'fulfillment_order_logs',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('previous_value', JSON_TYPE, nullable=True),
        sa.Column('new_value', JSON_TYPE, nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('actor', sa.String(length=100), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['fulfillment_orders.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(
        'ix_fulfillment_order_logs_order_created',
        'fulfillment_order_logs',
        ['order_id', 'created_at'],
    )


def downgrade() -> None:
    """Downgrade schema - Remove fulfillment tables."""

    op.drop_index('ix_fulfillment_order_logs_order_created', table_name='fulfillment_order_logs')
    op.drop_table('fulfillment_order_logs')
    op.drop_table('fulfillment_order_items')
    op.drop_index('ix_fulfillment_orders_payment_preference_id', table_name='fulfillment_orders')
    op.drop_index('ix_fulfillment_orders_payment_id', table_name='fulfillment_orders')
    op.drop_index('ix_fulfillment_orders_tracking_number', table_name='fulfillment_orders')
    op.drop_table('fulfillment_orders')
    op.drop_index('ix_store_stock_movements_product_id', table_name='store_stock_movements')
    op.drop_table('store_stock_movements')
    op.drop_table('store_product_stock')
    op.drop_index('ix_store_products_name', table_name='store_products')
    op.drop_table('store_products')

    bind = op.get_bind()
    for enum_type in (ORDER_STATUS, PAYMENT_STATUS, SHIPPING_TYPE, MOVEMENT_REASON):
        enum_type.drop(bind, checkfirst=True)
