"""create orderhub tables

Revision ID: 20251101_orderhub_initial
Revises:
Create Date: 2025-11-01 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20251101_orderhub_initial'
down_revision = None
branch_labels = None
depends_on = None

inventory_job_type = sa.Enum('RESERVE', 'CONSUME', 'REFUND', name='inventoryjobtype')
inventory_job_status = sa.Enum('PENDING', 'PROCESSING', 'DONE', 'FAILED', name='inventoryjobstatus')
reservation_status = sa.Enum('RESERVED', 'CONSUMED', 'REFUNDED', name='reservationstatus')


def upgrade():
    op.create_table(
        'companies',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('organization_id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(255)),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_companies_organization_id', 'companies', ['organization_id'])

    op.create_table(
        'apps',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('client_id', sa.String(255)),
        sa.Column('client_secret', sa.Text()),
        sa.Column('auth_url', sa.String(500)),
        sa.Column('config', sa.JSON()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )

    op.create_table(
        'marketplace_integrations',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('organizations_id', sa.String(36), nullable=False),
        sa.Column('company_id', sa.String(36)),
        sa.Column('marketplace_name', sa.String(50), nullable=False),
        sa.Column('access_token', sa.Text()),
        sa.Column('refresh_token', sa.Text()),
        sa.Column('expires_at', sa.DateTime()),
        sa.Column('meli_user_id', sa.String(50)),
        sa.Column('config', sa.JSON()),
        sa.Column('enabled', sa.Boolean(), server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_marketplace_integrations_organizations_id', 'marketplace_integrations', ['organizations_id'])
    op.create_index('ix_marketplace_integrations_company_id', 'marketplace_integrations', ['company_id'])
    op.create_index('ix_marketplace_integrations_marketplace_name', 'marketplace_integrations', ['marketplace_name'])
    op.create_index('ix_marketplace_integrations_meli_user_id', 'marketplace_integrations', ['meli_user_id'])

    op.create_table(
        'marketplace_orders_raw',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('organizations_id', sa.String(36), nullable=False),
        sa.Column('company_id', sa.String(36)),
        sa.Column('marketplace_name', sa.String(50), nullable=False),
        sa.Column('marketplace_order_id', sa.String(50), nullable=False),
        sa.Column('status', sa.String(50)),
        sa.Column('status_detail', sa.String(255)),
        sa.Column('order_items', sa.JSON()),
        sa.Column('buyer', sa.JSON()),
        sa.Column('seller', sa.JSON()),
        sa.Column('payments', sa.JSON()),
        sa.Column('shipments', sa.JSON()),
        sa.Column('billing_info', sa.JSON()),
        sa.Column('labels', sa.JSON()),
        sa.Column('feedback', sa.JSON()),
        sa.Column('tags', sa.JSON()),
        sa.Column('data', sa.JSON()),
        sa.Column('linked_products', sa.JSON()),
        sa.Column('date_created', sa.DateTime()),
        sa.Column('date_closed', sa.DateTime()),
        sa.Column('last_updated', sa.DateTime()),
        sa.Column('last_synced_at', sa.DateTime()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organizations_id', 'marketplace_name', 'marketplace_order_id',
                            name='uq_orders_raw_org_marketplace_order')
    )
    op.create_index('ix_marketplace_orders_raw_organizations_id', 'marketplace_orders_raw', ['organizations_id'])
    op.create_index('ix_orders_raw_last_updated', 'marketplace_orders_raw',
                    ['organizations_id', 'marketplace_name', 'last_updated'])

    op.create_table(
        'marketplace_orders_presented',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('organizations_id', sa.String(36)),
        sa.Column('company_id', sa.String(36)),
        sa.Column('marketplace', sa.String(50)),
        sa.Column('marketplace_order_id', sa.String(50)),
        sa.Column('status', sa.String(50)),
        sa.Column('status_detail', sa.String(255)),
        sa.Column('status_interno', sa.String(50)),
        sa.Column('created_at', sa.DateTime()),
        sa.Column('last_updated', sa.DateTime()),
        sa.Column('last_synced_at', sa.DateTime()),
        sa.Column('order_total', sa.Numeric(12, 2)),
        sa.Column('has_multiple_products', sa.Boolean()),
        sa.Column('has_unlinked_items', sa.Boolean()),
        sa.Column('first_item_id', sa.String(50)),
        sa.Column('first_item_title', sa.String(500)),
        sa.Column('first_item_sku', sa.String(100)),
        sa.Column('first_item_variation_id', sa.BigInteger()),
        sa.Column('first_item_permalink', sa.String(1000)),
        sa.Column('items_total_quantity', sa.Integer()),
        sa.Column('items_total_amount', sa.Numeric(12, 2)),
        sa.Column('items_total_full_amount', sa.Numeric(12, 2)),
        sa.Column('items_total_sale_fee', sa.Numeric(12, 2)),
        sa.Column('items_currency_id', sa.String(10)),
        sa.Column('category_ids', sa.JSON()),
        sa.Column('listing_type_ids', sa.JSON()),
        sa.Column('stock_node_ids', sa.JSON()),
        sa.Column('has_variations', sa.Boolean()),
        sa.Column('has_bundle', sa.Boolean()),
        sa.Column('has_kit', sa.Boolean()),
        sa.Column('variation_color_names', sa.JSON()),
        sa.Column('pack_id', sa.String(50)),
        sa.Column('linked_products', sa.JSON()),
        sa.Column('id_buyer', sa.BigInteger()),
        sa.Column('first_name_buyer', sa.String(255)),
        sa.Column('last_name_buyer', sa.String(255)),
        sa.Column('customer_name', sa.String(255)),
        sa.Column('shipping_city_name', sa.String(255)),
        sa.Column('shipping_state_name', sa.String(255)),
        sa.Column('shipping_state_uf', sa.String(2)),
        sa.Column('shipping_address_line', sa.String(500)),
        sa.Column('shipping_street_name', sa.String(255)),
        sa.Column('shipping_street_number', sa.String(50)),
        sa.Column('shipping_neighborhood', sa.String(255)),
        sa.Column('shipping_zip_code', sa.String(20)),
        sa.Column('shipping_comment', sa.String(500)),
        sa.Column('shipment_status', sa.String(50)),
        sa.Column('shipment_substatus', sa.String(50)),
        sa.Column('shipping_type', sa.String(100)),
        sa.Column('shipping_method_name', sa.String(255)),
        sa.Column('estimated_delivery_limit_at', sa.String(50)),
        sa.Column('shipment_sla_status', sa.String(50)),
        sa.Column('shipment_sla_service', sa.String(100)),
        sa.Column('shipment_sla_expected_date', sa.String(50)),
        sa.Column('shipment_sla_last_updated', sa.String(50)),
        sa.Column('shipment_delays', sa.JSON()),
        sa.Column('printed_label', sa.Boolean()),
        sa.Column('tracking_number', sa.String(100)),
        sa.Column('shipping_info', sa.JSON()),
        sa.Column('ship_order_planned_at', sa.DateTime()),
        sa.Column('payment_status', sa.String(50)),
        sa.Column('payment_total_paid_amount', sa.Numeric(12, 2)),
        sa.Column('payment_marketplace_fee', sa.Numeric(12, 2)),
        sa.Column('payment_shipping_cost', sa.Numeric(12, 2)),
        sa.Column('payment_date_created', sa.String(50)),
        sa.Column('payment_date_approved', sa.String(50)),
        sa.Column('payment_refunded_amount', sa.Numeric(12, 2)),
        sa.Column('is_cancelled', sa.Boolean()),
        sa.Column('is_refunded', sa.Boolean()),
        sa.Column('billing_doc_number', sa.String(50)),
        sa.Column('billing_doc_type', sa.String(20)),
        sa.Column('billing_email', sa.String(255)),
        sa.Column('billing_phone', sa.String(50)),
        sa.Column('billing_name', sa.String(255)),
        sa.Column('billing_state_registration', sa.String(50)),
        sa.Column('billing_taxpayer_type', sa.String(100)),
        sa.Column('billing_cust_type', sa.String(50)),
        sa.Column('billing_is_normalized', sa.Boolean()),
        sa.Column('billing_address', sa.JSON()),
        sa.Column('label_cached', sa.Boolean()),
        sa.Column('label_response_type', sa.String(20)),
        sa.Column('label_fetched_at', sa.String(50)),
        sa.Column('label_size_bytes', sa.Integer()),
        sa.Column('label_content_base64', sa.Text()),
        sa.Column('label_content_type', sa.String(100)),
        sa.Column('label_pdf_base64', sa.Text()),
        sa.Column('label_zpl2_base64', sa.Text()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_marketplace_orders_presented_organizations_id', 'marketplace_orders_presented', ['organizations_id'])
    op.create_index('ix_marketplace_orders_presented_marketplace_order_id', 'marketplace_orders_presented', ['marketplace_order_id'])
    op.create_index('ix_marketplace_orders_presented_status_interno', 'marketplace_orders_presented', ['status_interno'])
    op.create_index('ix_marketplace_orders_presented_pack_id', 'marketplace_orders_presented', ['pack_id'])

    op.create_table(
        'marketplace_order_items',
        sa.Column('row_id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('pack_id', sa.String(50)),
        sa.Column('model_sku_externo', sa.String(100)),
        sa.Column('model_id_externo', sa.String(50)),
        sa.Column('variation_name', sa.String(255)),
        sa.Column('item_name', sa.String(500)),
        sa.Column('quantity', sa.Integer()),
        sa.Column('unit_price', sa.Numeric(12, 2)),
        sa.Column('image_url', sa.String(1000)),
        sa.Column('linked_products', sa.String(36)),
        sa.Column('has_unlinked_items', sa.Boolean()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('row_id')
    )
    op.create_index('ix_marketplace_order_items_id', 'marketplace_order_items', ['id'])
    op.create_index('ix_marketplace_order_items_pack_id', 'marketplace_order_items', ['pack_id'])

    op.create_table(
        'marketplace_item_product_links',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('organizations_id', sa.String(36), nullable=False),
        sa.Column('company_id', sa.String(36)),
        sa.Column('marketplace_name', sa.String(50), nullable=False),
        sa.Column('marketplace_item_id', sa.String(50), nullable=False),
        sa.Column('variation_id', sa.String(50), nullable=False, server_default=''),
        sa.Column('product_id', sa.String(36), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organizations_id', 'marketplace_name', 'marketplace_item_id', 'variation_id',
                            name='uq_item_product_link')
    )

    op.create_table(
        'marketplace_items',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('organizations_id', sa.String(36), nullable=False),
        sa.Column('company_id', sa.String(36)),
        sa.Column('marketplace_name', sa.String(50), nullable=False),
        sa.Column('marketplace_item_id', sa.String(50), nullable=False),
        sa.Column('title', sa.String(500)),
        sa.Column('sku', sa.String(100)),
        sa.Column('condition', sa.String(50)),
        sa.Column('status', sa.String(50)),
        sa.Column('price', sa.Numeric(12, 2)),
        sa.Column('available_quantity', sa.Integer()),
        sa.Column('sold_quantity', sa.Integer()),
        sa.Column('category_id', sa.String(50)),
        sa.Column('permalink', sa.String(1000)),
        sa.Column('attributes', sa.JSON()),
        sa.Column('variations', sa.JSON()),
        sa.Column('pictures', sa.JSON()),
        sa.Column('tags', sa.JSON()),
        sa.Column('seller_id', sa.String(50)),
        sa.Column('data', sa.JSON()),
        sa.Column('published_at', sa.DateTime()),
        sa.Column('last_synced_at', sa.DateTime()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organizations_id', 'marketplace_name', 'marketplace_item_id', name='uq_marketplace_item')
    )

    op.create_table(
        'products',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('organizations_id', sa.String(36), nullable=False),
        sa.Column('company_id', sa.String(36)),
        sa.Column('sku', sa.String(100)),
        sa.Column('name', sa.String(500)),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_products_organizations_id', 'products', ['organizations_id'])
    op.create_index('ix_products_sku', 'products', ['sku'])

    op.create_table(
        'storage',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('organizations_id', sa.String(36), nullable=False),
        sa.Column('name', sa.String(255)),
        sa.Column('is_default', sa.Boolean(), server_default=sa.false()),
        sa.Column('active', sa.Boolean(), server_default=sa.true()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_storage_organizations_id', 'storage', ['organizations_id'])

    op.create_table(
        'products_stock',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('product_id', sa.String(36), nullable=False),
        sa.Column('storage_id', sa.String(36), nullable=False),
        sa.Column('company_id', sa.String(36)),
        sa.Column('current', sa.Integer(), server_default='0'),
        sa.Column('reserved', sa.Integer(), server_default='0'),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'storage_id', name='uq_product_stock_storage')
    )
    op.create_index('ix_products_stock_product_id', 'products_stock', ['product_id'])

    op.create_table(
        'order_stock_reservations',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('order_id', sa.String(36), nullable=False),
        sa.Column('product_id', sa.String(36), nullable=False),
        sa.Column('storage_id', sa.String(36), nullable=False),
        sa.Column('quantity', sa.Integer(), server_default='0'),
        sa.Column('status', reservation_status),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'product_id', 'storage_id', name='uq_reservation_order_product')
    )
    op.create_index('ix_order_stock_reservations_order_id', 'order_stock_reservations', ['order_id'])

    op.create_table(
        'inventory_jobs',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('order_id', sa.String(36), nullable=False),
        sa.Column('job_type', inventory_job_type, nullable=False),
        sa.Column('status', inventory_job_status),
        sa.Column('attempts', sa.Integer(), server_default='0'),
        sa.Column('error_log', sa.Text()),
        sa.Column('correlation_id', sa.String(64)),
        sa.Column('last_attempt_at', sa.DateTime()),
        sa.Column('next_attempt_at', sa.DateTime()),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_inventory_jobs_order_id', 'inventory_jobs', ['order_id'])
    op.create_index('ix_inventory_jobs_status', 'inventory_jobs', ['status'])

    op.create_table(
        'notas_fiscais',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('company_id', sa.String(36)),
        sa.Column('marketplace_order_id', sa.String(50)),
        sa.Column('marketplace_submission_status', sa.String(50)),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_notas_fiscais_marketplace_order_id', 'notas_fiscais', ['marketplace_order_id'])


def downgrade():
    op.drop_table('notas_fiscais')
    op.drop_table('inventory_jobs')
    op.drop_table('order_stock_reservations')
    op.drop_table('products_stock')
    op.drop_table('storage')
    op.drop_table('products')
    op.drop_table('marketplace_items')
    op.drop_table('marketplace_item_product_links')
    op.drop_table('marketplace_order_items')
    op.drop_table('marketplace_orders_presented')
    op.drop_table('marketplace_orders_raw')
    op.drop_table('marketplace_integrations')
    op.drop_table('apps')
    op.drop_table('companies')

    bind = op.get_bind()
    reservation_status.drop(bind, checkfirst=True)
    inventory_job_status.drop(bind, checkfirst=True)
    inventory_job_type.drop(bind, checkfirst=True)
