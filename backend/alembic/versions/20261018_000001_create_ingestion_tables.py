"""Create ingestion tables (tenants, products, customers, orders, abandoned_checkouts)

Revision ID: 20261018_000001
Revises:
Create Date: 2026-10-18 09:00:00.000000

WHAT:
    - tenants: one row per installed shop, encrypted access token
    - products / customers / orders / abandoned_checkouts: last-seen snapshot
      per (tenant_id, external_id), projected columns plus raw JSON

WHY:
    The unique (tenant_id, external_id) constraints are the conflict targets
    for the reconciler's INSERT ... ON CONFLICT upserts.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '20261018_000001'
down_revision = None
branch_labels = None
depends_on = None


def _entity_columns():
    return [
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('tenant_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('tenants.id'), nullable=False),
        sa.Column('external_id', sa.String(), nullable=False),
    ]


def _audit_columns():
    return [
        sa.Column('raw', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        'tenants',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('shop_domain', sa.String(), nullable=False),
        sa.Column('access_token_enc', sa.String(), nullable=False),
        sa.Column('scope', sa.String(), nullable=True),
        sa.Column('installed_at', sa.DateTime(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('shop_name', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('currency', sa.String(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_tenants_shop_domain', 'tenants', ['shop_domain'], unique=True)

    op.create_table(
        'products',
        *_entity_columns(),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('handle', sa.String(), nullable=True),
        sa.Column('vendor', sa.String(), nullable=True),
        sa.Column('product_type', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=True),
        sa.Column('price', sa.Numeric(18, 4), nullable=True),
        sa.Column('variants', sa.JSON(), nullable=True),
        sa.Column('published_at', sa.DateTime(), nullable=True),
        sa.Column('source_created_at', sa.DateTime(), nullable=True),
        sa.Column('source_updated_at', sa.DateTime(), nullable=True),
        *_audit_columns(),
        sa.UniqueConstraint('tenant_id', 'external_id', name='uq_products_tenant_external'),
    )
    op.create_index('ix_products_tenant_id', 'products', ['tenant_id'])

    op.create_table(
        'customers',
        *_entity_columns(),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('first_name', sa.String(), nullable=True),
        sa.Column('last_name', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('total_spent', sa.Numeric(18, 4), nullable=True),
        sa.Column('orders_count', sa.Integer(), nullable=True),
        sa.Column('source_created_at', sa.DateTime(), nullable=True),
        sa.Column('source_updated_at', sa.DateTime(), nullable=True),
        *_audit_columns(),
        sa.UniqueConstraint('tenant_id', 'external_id', name='uq_customers_tenant_external'),
    )
    op.create_index('ix_customers_tenant_id', 'customers', ['tenant_id'])

    op.create_table(
        'orders',
        *_entity_columns(),
        sa.Column('order_number', sa.String(), nullable=True),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('customer_external_id', sa.String(), nullable=True),
        sa.Column('total_price', sa.Numeric(18, 4), nullable=True),
        sa.Column('subtotal_price', sa.Numeric(18, 4), nullable=True),
        sa.Column('total_tax', sa.Numeric(18, 4), nullable=True),
        sa.Column('currency', sa.String(), nullable=True),
        sa.Column('financial_status', sa.String(), nullable=True),
        sa.Column('fulfillment_status', sa.String(), nullable=True),
        sa.Column('source_created_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        *_audit_columns(),
        sa.UniqueConstraint('tenant_id', 'external_id', name='uq_orders_tenant_external'),
    )
    op.create_index('ix_orders_tenant_id', 'orders', ['tenant_id'])
    op.create_index('ix_orders_source_created_at', 'orders', ['source_created_at'])

    op.create_table(
        'abandoned_checkouts',
        *_entity_columns(),
        sa.Column('token', sa.String(), nullable=True),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('total_price', sa.Numeric(18, 4), nullable=True),
        sa.Column('currency', sa.String(), nullable=True),
        sa.Column('line_items', sa.JSON(), nullable=True),
        sa.Column('abandoned_checkout_url', sa.String(), nullable=True),
        sa.Column('source_created_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        *_audit_columns(),
        sa.UniqueConstraint('tenant_id', 'external_id', name='uq_abandoned_checkouts_tenant_external'),
    )
    op.create_index('ix_abandoned_checkouts_tenant_id', 'abandoned_checkouts', ['tenant_id'])


def downgrade() -> None:
    op.drop_index('ix_abandoned_checkouts_tenant_id', table_name='abandoned_checkouts')
    op.drop_table('abandoned_checkouts')
    op.drop_index('ix_orders_source_created_at', table_name='orders')
    op.drop_index('ix_orders_tenant_id', table_name='orders')
    op.drop_table('orders')
    op.drop_index('ix_customers_tenant_id', table_name='customers')
    op.drop_table('customers')
    op.drop_index('ix_products_tenant_id', table_name='products')
    op.drop_table('products')
    op.drop_index('ix_tenants_shop_domain', table_name='tenants')
    op.drop_table('tenants')
