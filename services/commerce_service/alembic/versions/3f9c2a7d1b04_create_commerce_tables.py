"""create_commerce_tables

Revision ID: 3f9c2a7d1b04
Revises:
Create Date: 2026-09-28 10:12:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '3f9c2a7d1b04'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


store_plan_enum = sa.Enum('trial', 'starter', 'pro', 'enterprise', name='store_plan_enum')
product_status_enum = sa.Enum(
    'draft', 'active', 'out_of_stock', 'archived', name='product_status_enum'
)
variant_axis_enum = sa.Enum(
    'SIZE', 'COLOR', 'MATERIAL', 'STYLE', 'FINISH', 'FORMAT', 'CUSTOM',
    name='variant_axis_enum',
)
addon_field_type_enum = sa.Enum(
    'text', 'textarea', 'number', 'select', 'radio', 'checkbox', 'date',
    'color', 'file', 'image_buttons',
    name='addon_field_type_enum',
)
addon_price_type_enum = sa.Enum(
    'fixed', 'percentage', 'formula', name='addon_price_type_enum'
)
discount_type_enum = sa.Enum(
    'percentage', 'fixed_amount', 'free_shipping', name='discount_type_enum'
)
cart_status_enum = sa.Enum(
    'active', 'converted', 'expired', 'abandoned', name='cart_status_enum'
)
order_status_enum = sa.Enum(
    'pending_payment', 'paid', 'awaiting_cash_collection', 'payment_failed',
    'stock_conflict', 'coupon_conflict', 'fulfilled', 'cancelled', 'refunded',
    name='order_status_enum',
)
payment_method_enum = sa.Enum('stripe', 'square', 'cash', name='payment_method_enum')
inventory_movement_type_enum = sa.Enum(
    'sale', 'release', 'restock', 'adjustment', name='inventory_movement_type_enum'
)
audit_entity_type_enum = sa.Enum(
    'product', 'combination', 'inventory', 'coupon', 'order',
    name='audit_entity_type_enum',
)


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    """Upgrade schema - Create catalog, cart, coupon, order and inventory tables."""

    # ------------------------------------------------------------------ catalog
    op.create_table(
        'stores',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('owner_auth_id', sa.String(255), nullable=False),
        sa.Column('plan', store_plan_enum, server_default='trial', nullable=True),
        sa.Column('accepts_cash', sa.Boolean(), server_default='false', nullable=True),
        sa.Column('cash_instructions', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug'),
    )
    op.create_index('ix_stores_owner_auth_id', 'stores', ['owner_auth_id'])

    op.create_table(
        'categories',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('store_id', UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('slug', sa.String(100), nullable=False),
        sa.Column('sort_order', sa.Integer(), server_default='0', nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'slug', name='uq_category_store_slug'),
    )

    op.create_table(
        'products',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('store_id', UUID(as_uuid=True), nullable=False),
        sa.Column('category_id', UUID(as_uuid=True), nullable=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('slug', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('base_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('compare_at_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('track_inventory', sa.Boolean(), server_default='true', nullable=True),
        sa.Column('quantity', sa.Integer(), server_default='0', nullable=True),
        sa.Column('low_stock_threshold', sa.Integer(), server_default='5', nullable=True),
        sa.Column('status', product_status_enum, server_default='draft', nullable=True),
        sa.Column('use_multi_variants', sa.Boolean(), server_default='true', nullable=True),
        sa.Column('variant_axes', sa.JSON(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'slug', name='uq_product_store_slug'),
        sa.CheckConstraint('base_price >= 0', name='product_price_non_negative'),
        sa.CheckConstraint('quantity >= 0', name='product_quantity_non_negative'),
    )
    op.create_index('ix_products_store_id', 'products', ['store_id'])

    op.create_table(
        'variant_options',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), nullable=False),
        sa.Column('axis', variant_axis_enum, nullable=False),
        sa.Column('value', sa.String(100), nullable=False),
        sa.Column('display_name', sa.String(100), nullable=False),
        sa.Column('hex_color', sa.String(7), nullable=True),
        sa.Column('sort_order', sa.Integer(), server_default='0', nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=True),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'axis', 'value', name='uq_variant_option'),
    )

    op.create_table(
        'variant_combinations',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), nullable=False),
        sa.Column('combination_key', sa.String(500), nullable=False),
        sa.Column('option_values', sa.JSON(), nullable=False),
        sa.Column('sku', sa.String(100), nullable=True),
        sa.Column('price', sa.Numeric(12, 2), nullable=True),
        sa.Column('compare_at_price', sa.Numeric(12, 2), nullable=True),
        sa.Column('quantity', sa.Integer(), server_default='0', nullable=True),
        sa.Column('inventory_tracked', sa.Boolean(), server_default='true', nullable=True),
        sa.Column('available', sa.Boolean(), server_default='true', nullable=True),
        sa.Column('in_stock', sa.Boolean(), server_default='false', nullable=True),
        sa.Column('image_url', sa.String(512), nullable=True),
        sa.Column('sort_order', sa.Integer(), server_default='0', nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'product_id', 'combination_key', name='uq_variant_combination_key'
        ),
        sa.CheckConstraint('quantity >= 0', name='combination_quantity_non_negative'),
    )

    op.create_table(
        'product_addons',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('field_type', addon_field_type_enum, nullable=False),
        sa.Column('price_type', addon_price_type_enum, nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('is_required', sa.Boolean(), server_default='false', nullable=True),
        sa.Column('allow_multiple', sa.Boolean(), server_default='false', nullable=True),
        sa.Column('max_quantity', sa.Integer(), nullable=True),
        sa.Column('options', sa.JSON(), nullable=False),
        sa.Column('min_value', sa.Numeric(12, 2), nullable=True),
        sa.Column('max_value', sa.Numeric(12, 2), nullable=True),
        sa.Column('required_for_combinations', sa.JSON(), nullable=False),
        sa.Column('excluded_for_combinations', sa.JSON(), nullable=False),
        sa.Column('sort_order', sa.Integer(), server_default='0', nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )

    # ---------------------------------------------------------------- commerce
    op.create_table(
        'carts',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('session_id', sa.String(64), nullable=False),
        sa.Column('customer_auth_id', sa.String(255), nullable=True),
        sa.Column('store_id', UUID(as_uuid=True), nullable=True),
        sa.Column('coupon_code', sa.String(50), nullable=True),
        sa.Column('status', cart_status_enum, server_default='active', nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_carts_session_id', 'carts', ['session_id'], unique=True)
    op.create_index('ix_carts_customer_auth_id', 'carts', ['customer_auth_id'])
    op.create_index('ix_carts_status_expires_at', 'carts', ['status', 'expires_at'])

    op.create_table(
        'cart_items',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('cart_id', UUID(as_uuid=True), nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), nullable=False),
        sa.Column('combination_id', UUID(as_uuid=True), nullable=True),
        sa.Column('line_key', sa.String(64), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('addon_selections', sa.JSON(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['cart_id'], ['carts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(
            ['combination_id'], ['variant_combinations.id'], ondelete='CASCADE'
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('cart_id', 'line_key', name='uq_cart_line_key'),
        sa.CheckConstraint('quantity > 0', name='cart_item_positive_quantity'),
    )

    op.create_table(
        'coupons',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('store_id', UUID(as_uuid=True), nullable=False),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('discount_type', discount_type_enum, nullable=False),
        sa.Column('discount_value', sa.Numeric(12, 2), nullable=False),
        sa.Column('min_purchase_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('max_discount_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('usage_limit', sa.Integer(), nullable=True),
        sa.Column('per_customer_limit', sa.Integer(), nullable=True),
        sa.Column('times_used', sa.Integer(), server_default='0', nullable=True),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default='true', nullable=True),
        sa.Column('applicable_product_ids', sa.JSON(), nullable=False),
        sa.Column('applicable_category_ids', sa.JSON(), nullable=False),
        sa.Column('excluded_product_ids', sa.JSON(), nullable=False),
        sa.Column(
            'first_time_customers_only', sa.Boolean(), server_default='false', nullable=True
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'code', name='uq_coupon_store_code'),
        sa.CheckConstraint(
            "discount_type != 'percentage' OR discount_value <= 100",
            name='coupon_percentage_max_100',
        ),
        sa.CheckConstraint(
            'starts_at IS NULL OR ends_at IS NULL OR ends_at > starts_at',
            name='coupon_window_ordered',
        ),
        sa.CheckConstraint('times_used >= 0', name='coupon_times_used_non_negative'),
    )

    op.create_table(
        'orders',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('order_number', sa.String(20), nullable=False),
        sa.Column('store_id', UUID(as_uuid=True), nullable=False),
        sa.Column('cart_id', UUID(as_uuid=True), nullable=True),
        sa.Column('customer_auth_id', sa.String(255), nullable=True),
        sa.Column('customer_email', sa.String(255), nullable=False),
        sa.Column('customer_name', sa.String(255), nullable=False),
        sa.Column('shipping_address', sa.JSON(), nullable=True),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('shipping_method', sa.String(50), nullable=False),
        sa.Column('shipping_cost', sa.Numeric(12, 2), server_default='0', nullable=True),
        sa.Column('shipping_discount', sa.Numeric(12, 2), server_default='0', nullable=True),
        sa.Column('discount_amount', sa.Numeric(12, 2), server_default='0', nullable=True),
        sa.Column('tax_rate', sa.Numeric(6, 4), nullable=False),
        sa.Column('tax_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('total', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('platform_fee', sa.Numeric(12, 2), server_default='0', nullable=True),
        sa.Column('vendor_payout', sa.Numeric(12, 2), server_default='0', nullable=True),
        sa.Column('coupon_id', UUID(as_uuid=True), nullable=True),
        sa.Column('coupon_code', sa.String(50), nullable=True),
        sa.Column('payment_method', payment_method_enum, nullable=False),
        sa.Column('payment_reference', sa.String(255), nullable=True),
        sa.Column(
            'status', order_status_enum, server_default='pending_payment', nullable=True
        ),
        sa.Column('stock_reserved', sa.Boolean(), server_default='false', nullable=True),
        sa.Column('customer_notes', sa.Text(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('refunded_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['cart_id'], ['carts.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['coupon_id'], ['coupons.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_store_id', 'orders', ['store_id'])
    op.create_index('ix_orders_customer_auth_id', 'orders', ['customer_auth_id'])
    op.create_index('ix_orders_customer_email', 'orders', ['customer_email'])
    op.create_index('ix_orders_payment_reference', 'orders', ['payment_reference'])

    op.create_table(
        'order_items',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('order_id', UUID(as_uuid=True), nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), nullable=False),
        sa.Column('combination_id', UUID(as_uuid=True), nullable=True),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('variant_label', sa.String(255), nullable=True),
        sa.Column('combination_key', sa.String(500), nullable=True),
        sa.Column('sku', sa.String(100), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('line_total', sa.Numeric(12, 2), nullable=False),
        sa.Column('inventory_tracked', sa.Boolean(), server_default='true', nullable=True),
        sa.Column('addon_selections', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(
            ['combination_id'], ['variant_combinations.id'], ondelete='RESTRICT'
        ),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity > 0', name='order_item_positive_quantity'),
    )

    op.create_table(
        'coupon_redemptions',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('coupon_id', UUID(as_uuid=True), nullable=False),
        sa.Column('order_id', UUID(as_uuid=True), nullable=False),
        sa.Column('customer_key', sa.String(255), nullable=False),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['coupon_id'], ['coupons.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('coupon_id', 'order_id', name='uq_coupon_redemption_order'),
    )
    op.create_index(
        'ix_coupon_redemptions_customer_key', 'coupon_redemptions', ['customer_key']
    )

    op.create_table(
        'processed_payment_events',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('provider', sa.String(20), nullable=False),
        sa.Column('event_id', sa.String(255), nullable=False),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('order_id', UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider', 'event_id', name='uq_payment_event'),
    )

    # --------------------------------------------------------------- inventory
    op.create_table(
        'inventory_movements',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('store_id', UUID(as_uuid=True), nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), nullable=False),
        sa.Column('combination_id', UUID(as_uuid=True), nullable=True),
        sa.Column('movement_type', inventory_movement_type_enum, nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('reference_type', sa.String(30), nullable=True),
        sa.Column('reference_id', UUID(as_uuid=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('performed_by', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(
            ['combination_id'], ['variant_combinations.id'], ondelete='CASCADE'
        ),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_inventory_movements_store_id', 'inventory_movements', ['store_id'])
    op.create_index(
        'ix_inventory_movements_product',
        'inventory_movements',
        ['product_id', 'combination_id'],
    )

    op.create_table(
        'store_audit_logs',
        sa.Column('id', UUID(as_uuid=True), nullable=False),
        sa.Column('store_id', UUID(as_uuid=True), nullable=False),
        sa.Column('entity_type', audit_entity_type_enum, nullable=False),
        sa.Column('entity_id', UUID(as_uuid=True), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('old_value', sa.JSON(), nullable=True),
        sa.Column('new_value', sa.JSON(), nullable=True),
        sa.Column('performed_by', sa.String(255), nullable=False),
        sa.Column('performed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(
        'ix_store_audit_logs_entity', 'store_audit_logs', ['entity_type', 'entity_id']
    )
    op.create_index(
        'ix_store_audit_logs_performed_at', 'store_audit_logs', ['performed_at']
    )


def downgrade() -> None:
    """Downgrade schema - Drop commerce tables and enum types."""
    op.drop_table('store_audit_logs')
    op.drop_table('inventory_movements')
    op.drop_table('processed_payment_events')
    op.drop_table('coupon_redemptions')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('coupons')
    op.drop_table('cart_items')
    op.drop_table('carts')
    op.drop_table('product_addons')
    op.drop_table('variant_combinations')
    op.drop_table('variant_options')
    op.drop_table('products')
    op.drop_table('categories')
    op.drop_table('stores')

    bind = op.get_bind()
    for enum_type in (
        audit_entity_type_enum,
        inventory_movement_type_enum,
        payment_method_enum,
        order_status_enum,
        cart_status_enum,
        discount_type_enum,
        addon_price_type_enum,
        addon_field_type_enum,
        variant_axis_enum,
        product_status_enum,
        store_plan_enum,
    ):
        enum_type.drop(bind, checkfirst=True)
