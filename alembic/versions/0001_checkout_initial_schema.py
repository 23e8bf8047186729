"""checkout initial schema

Revision ID: 0001_checkout_initial
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '0001_checkout_initial'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Shared by orders and payment_transactions; created once below.
escrow_status_enum = postgresql.ENUM(
    'held', 'released', 'disputed', name='escrow_status_enum', create_type=False
)


def upgrade() -> None:
    """Upgrade schema - storefront catalogue, orders, settlement ledger."""
    escrow_status_enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'storefronts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('slug', sa.String(length=80), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_storefronts_slug', 'storefronts', ['slug'], unique=True)

    op.create_table(
        'products',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('storefront_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('stock', sa.Integer(), nullable=True),
        sa.Column(
            'listing_type',
            sa.Enum('physical', 'service', name='listing_type_enum'),
            nullable=False,
        ),
        sa.Column(
            'service_mode',
            sa.Enum('book_only', 'payable', name='service_mode_enum'),
            nullable=True,
        ),
        sa.Column('sale_id', sa.String(length=64), nullable=True),
        sa.Column('sale_active', sa.Boolean(), nullable=False),
        sa.Column(
            'sale_type',
            sa.Enum('percent', 'fixed', name='sale_type_enum'),
            nullable=True,
        ),
        sa.Column('sale_percent', sa.Integer(), nullable=True),
        sa.Column('sale_amount_off', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('sale_starts_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('sale_ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['storefront_id'], ['storefronts.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_products_storefront_id', 'products', ['storefront_id'])

    op.create_table(
        'coupons',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('storefront_id', sa.Uuid(), nullable=False),
        sa.Column('code', sa.String(length=20), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False),
        sa.Column(
            'discount_type',
            sa.Enum('percent', 'fixed', name='coupon_discount_type_enum'),
            nullable=False,
        ),
        sa.Column('percent', sa.Integer(), nullable=True),
        sa.Column('amount_off_kobo', sa.Integer(), nullable=True),
        sa.Column('min_order_kobo', sa.Integer(), nullable=False),
        sa.Column('max_discount_kobo', sa.Integer(), nullable=True),
        sa.Column('usage_limit_total', sa.Integer(), nullable=True),
        sa.Column('used_count', sa.Integer(), nullable=False),
        sa.Column('starts_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['storefront_id'], ['storefronts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('storefront_id', 'code', name='unique_storefront_coupon_code'),
    )
    op.create_index('ix_coupons_storefront_id', 'coupons', ['storefront_id'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('storefront_id', sa.Uuid(), nullable=False),
        sa.Column('storefront_slug', sa.String(length=80), nullable=False),
        sa.Column('items', postgresql.JSONB(), nullable=False),
        sa.Column('customer', postgresql.JSONB(), nullable=True),
        sa.Column('customer_email', sa.String(length=255), nullable=True),
        sa.Column('coupon', postgresql.JSONB(), nullable=True),
        sa.Column('shipping', postgresql.JSONB(), nullable=True),
        sa.Column('pricing', postgresql.JSONB(), nullable=False),
        sa.Column('payment', postgresql.JSONB(), nullable=True),
        sa.Column(
            'payment_type',
            sa.Enum('escrow', 'direct_transfer', name='payment_type_enum'),
            nullable=False,
        ),
        sa.Column(
            'payment_status',
            sa.Enum('pending', 'paid', name='payment_status_enum'),
            nullable=False,
        ),
        sa.Column('escrow_status', escrow_status_enum, nullable=True),
        sa.Column(
            'order_status',
            sa.Enum(
                'pending_payment',
                'paid_held',
                'paid',
                'released_to_vendor_wallet',
                name='order_status_enum',
            ),
            nullable=False,
        ),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('amount_kobo', sa.Integer(), nullable=False),
        sa.Column('hold_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('released_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_plan', postgresql.JSONB(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['storefront_id'], ['storefronts.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_orders_storefront_id', 'orders', ['storefront_id'])
    op.create_index('ix_orders_customer_email', 'orders', ['customer_email'])
    op.create_index('ix_orders_escrow_hold', 'orders', ['escrow_status', 'hold_until'])

    op.create_table(
        'payment_transactions',
        sa.Column('reference', sa.String(length=128), nullable=False),
        sa.Column('order_id', sa.Uuid(), nullable=False),
        sa.Column('storefront_id', sa.Uuid(), nullable=False),
        sa.Column('storefront_slug', sa.String(length=80), nullable=False),
        sa.Column('amount_kobo', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column(
            'provider',
            sa.Enum('flutterwave', 'paystack', name='payment_provider_enum'),
            nullable=False,
        ),
        sa.Column('escrow_status', escrow_status_enum, nullable=False),
        sa.Column('hold_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.PrimaryKeyConstraint('reference'),
    )
    op.create_index('ix_payment_transactions_order_id', 'payment_transactions', ['order_id'])
    op.create_index(
        'ix_payment_transactions_storefront_id', 'payment_transactions', ['storefront_id']
    )

    op.create_table(
        'wallets',
        sa.Column('storefront_id', sa.Uuid(), nullable=False),
        sa.Column('pending_balance_kobo', sa.Integer(), nullable=False),
        sa.Column('available_balance_kobo', sa.Integer(), nullable=False),
        sa.Column('total_earned_kobo', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('storefront_id'),
    )

    op.create_table(
        'payment_mismatches',
        sa.Column('reference', sa.String(length=128), nullable=False),
        sa.Column('storefront_id', sa.Uuid(), nullable=True),
        sa.Column('storefront_slug', sa.String(length=80), nullable=False),
        sa.Column('expected_kobo', sa.Integer(), nullable=False),
        sa.Column('paid_kobo', sa.Integer(), nullable=False),
        sa.Column('pricing', postgresql.JSONB(), nullable=False),
        sa.Column('coupon_code', sa.String(length=20), nullable=True),
        sa.Column('provider', sa.String(length=20), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('reference'),
    )


def downgrade() -> None:
    """Downgrade schema - drop checkout tables."""
    op.drop_table('payment_mismatches')
    op.drop_table('wallets')
    op.drop_index('ix_payment_transactions_storefront_id', table_name='payment_transactions')
    op.drop_index('ix_payment_transactions_order_id', table_name='payment_transactions')
    op.drop_table('payment_transactions')
    op.drop_index('ix_orders_escrow_hold', table_name='orders')
    op.drop_index('ix_orders_customer_email', table_name='orders')
    op.drop_index('ix_orders_storefront_id', table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_coupons_storefront_id', table_name='coupons')
    op.drop_table('coupons')
    op.drop_index('ix_products_storefront_id', table_name='products')
    op.drop_table('products')
    op.drop_index('ix_storefronts_slug', table_name='storefronts')
    op.drop_table('storefronts')

    bind = op.get_bind()
    for name in (
        'payment_provider_enum',
        'order_status_enum',
        'payment_status_enum',
        'payment_type_enum',
        'coupon_discount_type_enum',
        'sale_type_enum',
        'service_mode_enum',
        'listing_type_enum',
    ):
        sa.Enum(name=name).drop(bind, checkfirst=True)
    escrow_status_enum.drop(bind, checkfirst=True)
