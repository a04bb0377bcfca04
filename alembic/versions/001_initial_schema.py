"""Initial Square sync schema

Revision ID: 001_initial_schema
Revises:
Create Date: 2026-10-19

Creates the connection table, one table per synced Square entity and the
webhook event log.

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_initial_schema'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'connections',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('merchant_id', sa.String(), nullable=False),
        sa.Column('square_merchant_id', sa.String(), nullable=True),
        sa.Column('access_token_enc', sa.Text(), nullable=False),
        sa.Column('refresh_token_enc', sa.Text(), nullable=True),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('token_type', sa.String(), nullable=True),
        sa.Column('scopes', sa.Text(), nullable=True),
        sa.Column('sync_status', sa.String(), nullable=True),
        sa.Column('sync_started_at', sa.DateTime(), nullable=True),
        sa.Column('sync_completed_at', sa.DateTime(), nullable=True),
        sa.Column('sync_error', sa.Text(), nullable=True),
        sa.Column('connected_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_connections_id', 'connections', ['id'])
    op.create_index('ix_connections_merchant_id', 'connections', ['merchant_id'], unique=True)
    op.create_index('ix_connections_square_merchant_id', 'connections', ['square_merchant_id'])

    op.create_table(
        'locations',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('merchant_id', sa.String(), nullable=False),
        sa.Column('square_location_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=True),
        sa.Column('address', sa.String(), nullable=True),
        sa.Column('city', sa.String(), nullable=True),
        sa.Column('state', sa.String(), nullable=True),
        sa.Column('postal_code', sa.String(), nullable=True),
        sa.Column('country', sa.String(), nullable=True),
        sa.Column('timezone', sa.String(), nullable=True),
        sa.Column('business_type', sa.String(), nullable=True),
        sa.Column('phone_number', sa.String(), nullable=True),
        sa.Column('business_hours', sa.Text(), nullable=True),
        sa.Column('currency', sa.String(), nullable=True),
        sa.Column('raw_data', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('merchant_id', 'square_location_id', name='uq_locations_merchant_location'),
    )
    op.create_index('ix_locations_id', 'locations', ['id'])
    op.create_index('ix_locations_merchant_id', 'locations', ['merchant_id'])

    op.create_table(
        'catalog_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('merchant_id', sa.String(), nullable=False),
        sa.Column('square_catalog_id', sa.String(), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('base_price_cents', sa.BigInteger(), nullable=True),
        sa.Column('category_id', sa.String(), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=True),
        sa.Column('raw_data', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('merchant_id', 'square_catalog_id', name='uq_catalog_items_merchant_object'),
    )
    op.create_index('ix_catalog_items_id', 'catalog_items', ['id'])
    op.create_index('ix_catalog_items_merchant_id', 'catalog_items', ['merchant_id'])

    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('merchant_id', sa.String(), nullable=False),
        sa.Column('square_customer_id', sa.String(), nullable=False),
        sa.Column('given_name', sa.String(), nullable=True),
        sa.Column('family_name', sa.String(), nullable=True),
        sa.Column('email_address', sa.String(), nullable=True),
        sa.Column('phone_number', sa.String(), nullable=True),
        sa.Column('birthday', sa.String(), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('reference_id', sa.String(), nullable=True),
        sa.Column('creation_source', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=True),
        sa.Column('total_visit_count', sa.Integer(), nullable=True),
        sa.Column('segment', sa.String(), nullable=True),
        sa.Column('ltv_cents', sa.BigInteger(), nullable=True),
        sa.Column('raw_data', sa.Text(), nullable=True),
        sa.UniqueConstraint('merchant_id', 'square_customer_id', name='uq_customers_merchant_customer'),
    )
    op.create_index('ix_customers_id', 'customers', ['id'])
    op.create_index('ix_customers_merchant_id', 'customers', ['merchant_id'])

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('merchant_id', sa.String(), nullable=False),
        sa.Column('square_order_id', sa.String(), nullable=False),
        sa.Column('square_location_id', sa.String(), nullable=True),
        sa.Column('square_customer_id', sa.String(), nullable=True),
        sa.Column('state', sa.String(), nullable=True),
        sa.Column('total_amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_tax', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_discount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_tip', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(), nullable=True),
        sa.Column('source_name', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('closed_at', sa.DateTime(), nullable=True),
        sa.Column('raw_data', sa.Text(), nullable=True),
        sa.Column('synced_at', sa.DateTime(), nullable=True),
        sa.UniqueConstraint('merchant_id', 'square_order_id', name='uq_orders_merchant_order'),
    )
    op.create_index('ix_orders_id', 'orders', ['id'])
    op.create_index('ix_orders_merchant_id', 'orders', ['merchant_id'])
    op.create_index(
        'ix_orders_merchant_location_created', 'orders',
        ['merchant_id', 'square_location_id', 'created_at'],
    )

    op.create_table(
        'order_line_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('merchant_id', sa.String(), nullable=False),
        sa.Column('square_order_id', sa.String(), nullable=False),
        sa.Column('uid', sa.String(), nullable=True),
        sa.Column('catalog_object_id', sa.String(), nullable=True),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('variation_name', sa.String(), nullable=True),
        sa.Column('quantity', sa.Numeric(18, 5), nullable=False, server_default='1'),
        sa.Column('base_price', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('gross_amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('note', sa.Text(), nullable=True),
        sa.Column('raw_data', sa.Text(), nullable=True),
    )
    op.create_index('ix_order_line_items_id', 'order_line_items', ['id'])
    op.create_index('ix_order_line_items_square_order_id', 'order_line_items', ['square_order_id'])

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('merchant_id', sa.String(), nullable=False),
        sa.Column('square_payment_id', sa.String(), nullable=False),
        sa.Column('square_order_id', sa.String(), nullable=True),
        sa.Column('square_location_id', sa.String(), nullable=True),
        sa.Column('square_customer_id', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=True),
        sa.Column('amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('tip_amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('refunded_amount', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('currency', sa.String(), nullable=True),
        sa.Column('source_type', sa.String(), nullable=True),
        sa.Column('card_brand', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('raw_data', sa.Text(), nullable=True),
        sa.UniqueConstraint('merchant_id', 'square_payment_id', name='uq_payments_merchant_payment'),
    )
    op.create_index('ix_payments_id', 'payments', ['id'])
    op.create_index('ix_payments_merchant_id', 'payments', ['merchant_id'])
    op.create_index('ix_payments_square_order_id', 'payments', ['square_order_id'])

    op.create_table(
        'appointments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('merchant_id', sa.String(), nullable=False),
        sa.Column('square_booking_id', sa.String(), nullable=False),
        sa.Column('square_location_id', sa.String(), nullable=True),
        sa.Column('square_customer_id', sa.String(), nullable=True),
        sa.Column('customer_note', sa.Text(), nullable=True),
        sa.Column('team_member_id', sa.String(), nullable=True),
        sa.Column('service_variation_id', sa.String(), nullable=True),
        sa.Column('service_variation_version', sa.BigInteger(), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(), nullable=True),
        sa.Column('no_show', sa.Boolean(), nullable=True),
        sa.Column('source', sa.String(), nullable=True),
        sa.Column('start_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('raw_data', sa.Text(), nullable=True),
        sa.UniqueConstraint('merchant_id', 'square_booking_id', name='uq_appointments_merchant_booking'),
    )
    op.create_index('ix_appointments_id', 'appointments', ['id'])
    op.create_index('ix_appointments_merchant_id', 'appointments', ['merchant_id'])

    op.create_table(
        'inventory',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('merchant_id', sa.String(), nullable=False),
        sa.Column('catalog_object_id', sa.String(), nullable=False),
        sa.Column('square_location_id', sa.String(), nullable=False),
        sa.Column('catalog_object_type', sa.String(), nullable=True),
        sa.Column('state', sa.String(), nullable=True),
        sa.Column('quantity', sa.Numeric(18, 5), nullable=False, server_default='0'),
        sa.Column('calculated_at', sa.DateTime(), nullable=True),
        sa.Column('raw_data', sa.Text(), nullable=True),
        sa.UniqueConstraint(
            'merchant_id', 'catalog_object_id', 'square_location_id',
            name='uq_inventory_merchant_object_location',
        ),
    )
    op.create_index('ix_inventory_id', 'inventory', ['id'])
    op.create_index('ix_inventory_merchant_id', 'inventory', ['merchant_id'])

    op.create_table(
        'team_members',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('merchant_id', sa.String(), nullable=False),
        sa.Column('square_team_member_id', sa.String(), nullable=False),
        sa.Column('given_name', sa.String(), nullable=True),
        sa.Column('family_name', sa.String(), nullable=True),
        sa.Column('email_address', sa.String(), nullable=True),
        sa.Column('phone_number', sa.String(), nullable=True),
        sa.Column('status', sa.String(), nullable=True),
        sa.Column('is_owner', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('raw_data', sa.Text(), nullable=True),
        sa.UniqueConstraint('merchant_id', 'square_team_member_id', name='uq_team_members_merchant_member'),
    )
    op.create_index('ix_team_members_id', 'team_members', ['id'])
    op.create_index('ix_team_members_merchant_id', 'team_members', ['merchant_id'])

    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('event_id', sa.String(), nullable=False),
        sa.Column('event_type', sa.String(), nullable=True),
        sa.Column('square_merchant_id', sa.String(), nullable=True),
        sa.Column('merchant_id', sa.String(), nullable=True),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='received'),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('received_at', sa.DateTime(), nullable=True),
        sa.Column('processed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_webhook_events_id', 'webhook_events', ['id'])
    op.create_index('ix_webhook_events_event_id', 'webhook_events', ['event_id'], unique=True)


def downgrade() -> None:
    for table in (
        'webhook_events', 'team_members', 'inventory', 'appointments', 'payments',
        'order_line_items', 'orders', 'customers', 'catalog_items', 'locations',
        'connections',
    ):
        op.drop_table(table)
