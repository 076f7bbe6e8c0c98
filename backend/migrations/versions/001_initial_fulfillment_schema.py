"""
Alembic migration: Initial fulfillment schema.

Creates companies, rate configuration (pricing tiers, transport rates,
vehicle types), assets and bookings, orders with items and status
history, the service catalog with line items, and reskin requests.

Revision ID: 001
Revises:
Create Date: 2025-06-20 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ORDER_STATUSES = (
    'DRAFT', 'SUBMITTED', 'PRICING_REVIEW', 'PENDING_APPROVAL', 'QUOTED',
    'DECLINED', 'CONFIRMED', 'AWAITING_FABRICATION', 'IN_PREPARATION',
    'READY_FOR_DELIVERY', 'IN_TRANSIT', 'DELIVERED', 'IN_USE',
    'AWAITING_RETURN', 'CLOSED', 'CANCELLED',
)

order_status = postgresql.ENUM(*ORDER_STATUSES, name='order_status', create_type=False)
trip_type = postgresql.ENUM('ONE_WAY', 'ROUND_TRIP', name='trip_type', create_type=False)
cancellation_reason = postgresql.ENUM(
    'CLIENT_REQUESTED', 'ASSET_UNAVAILABLE', 'PRICING_DISPUTE',
    'EVENT_CANCELLED', 'FABRICATION_FAILED', 'OTHER',
    name='cancellation_reason',
    create_type=False,
)
service_category = postgresql.ENUM(
    'ASSEMBLY', 'EQUIPMENT', 'HANDLING', 'RESKIN', 'TRANSPORT', 'OTHER',
    name='service_category',
    create_type=False,
)
line_item_type = postgresql.ENUM('CATALOG', 'CUSTOM', name='line_item_type', create_type=False)
billing_mode = postgresql.ENUM(
    'BILLABLE', 'NON_BILLABLE', 'COMPLIMENTARY', name='billing_mode', create_type=False
)
purpose_type = postgresql.ENUM(
    'ORDER', 'INBOUND_REQUEST', name='purpose_type', create_type=False
)
reskin_status = postgresql.ENUM(
    'pending', 'complete', 'cancelled', name='reskin_status', create_type=False
)

ENUMS = (
    order_status,
    trip_type,
    cancellation_reason,
    service_category,
    line_item_type,
    billing_mode,
    purpose_type,
    reskin_status,
)


def _id_column() -> sa.Column:
    return sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True, nullable=False)


def _timestamp_columns() -> list[sa.Column]:
    return [
        sa.Column(
            'created_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
            comment='Timestamp when record was created',
        ),
        sa.Column(
            'updated_at',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
            comment='Timestamp when record was last updated',
        ),
    ]


def upgrade() -> None:
    """Create the fulfillment schema."""
    bind = op.get_bind()
    for enum in ENUMS:
        enum.create(bind, checkfirst=True)

    op.create_table(
        'companies',
        _id_column(),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column(
            'platform_margin_percent',
            sa.Numeric(5, 2),
            server_default=sa.text('25.00'),
            nullable=False,
            comment='Default margin percent applied to logistics sub-total',
        ),
        *_timestamp_columns(),
        sa.UniqueConstraint('name', name='uq_companies_name'),
        sa.CheckConstraint(
            'platform_margin_percent >= 0 AND platform_margin_percent <= 100',
            name='ck_companies_margin_range',
        ),
    )

    op.create_table(
        'pricing_tiers',
        _id_column(),
        sa.Column('volume_min', sa.Numeric(10, 3), nullable=False),
        sa.Column(
            'volume_max',
            sa.Numeric(10, 3),
            nullable=True,
            comment='Exclusive upper bound; NULL means unbounded',
        ),
        sa.Column('base_rate', sa.Numeric(12, 2), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        *_timestamp_columns(),
        sa.CheckConstraint('volume_min >= 0', name='ck_pricing_tiers_min'),
        sa.CheckConstraint(
            'volume_max IS NULL OR volume_max > volume_min',
            name='ck_pricing_tiers_range',
        ),
    )

    op.create_table(
        'transport_rates',
        _id_column(),
        sa.Column('emirate', sa.String(length=100), nullable=False),
        sa.Column('city', sa.String(length=100), nullable=True),
        sa.Column('trip_type', trip_type, nullable=False),
        sa.Column('vehicle_type', sa.String(length=50), nullable=False),
        sa.Column('rate', sa.Numeric(12, 2), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        *_timestamp_columns(),
        sa.CheckConstraint('rate >= 0', name='ck_transport_rates_rate'),
    )
    op.create_index(
        'ix_transport_rates_lookup',
        'transport_rates',
        ['emirate', 'city', 'trip_type', 'vehicle_type'],
    )

    op.create_table(
        'vehicle_types',
        _id_column(),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=100), nullable=False),
        sa.Column(
            'capacity_volume',
            sa.Numeric(10, 3),
            nullable=False,
            comment='Load capacity in cubic metres',
        ),
        sa.Column('is_default', sa.Boolean(), server_default=sa.false(), nullable=False),
        *_timestamp_columns(),
        sa.UniqueConstraint('code', name='uq_vehicle_types_code'),
    )

    op.create_table(
        'assets',
        _id_column(),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column(
            'company_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('companies.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('total_quantity', sa.Integer(), nullable=False),
        sa.Column(
            'refurb_days_estimate',
            sa.Integer(),
            server_default=sa.text('0'),
            nullable=False,
        ),
        sa.Column(
            'source_asset_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('assets.id', ondelete='SET NULL'),
            nullable=True,
            comment='Original asset this one was reskinned from',
        ),
        *_timestamp_columns(),
        sa.CheckConstraint('total_quantity >= 0', name='ck_assets_quantity'),
    )
    op.create_index('ix_assets_company_id', 'assets', ['company_id'])

    op.create_table(
        'orders',
        _id_column(),
        sa.Column(
            'order_id',
            sa.String(length=32),
            nullable=False,
            comment='Human-readable order code',
        ),
        sa.Column(
            'company_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('companies.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('status', order_status, server_default='DRAFT', nullable=False),
        sa.Column('event_start_date', sa.Date(), nullable=True),
        sa.Column('event_end_date', sa.Date(), nullable=True),
        sa.Column('venue_name', sa.String(length=200), nullable=True),
        sa.Column('venue_city', sa.String(length=100), nullable=True),
        sa.Column('venue_emirate', sa.String(length=100), nullable=True),
        sa.Column('venue_address', sa.Text(), nullable=True),
        sa.Column('delivery_window_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivery_window_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('pickup_window_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('pickup_window_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('job_number', sa.String(length=50), nullable=True),
        sa.Column(
            'calculated_volume',
            sa.Numeric(10, 3),
            server_default=sa.text('0'),
            nullable=False,
            comment='Total volume in cubic metres',
        ),
        sa.Column(
            'calculated_weight',
            sa.Numeric(10, 2),
            server_default=sa.text('0'),
            nullable=False,
            comment='Total weight in kilograms',
        ),
        sa.Column(
            'transport_trip_type',
            trip_type,
            server_default='ROUND_TRIP',
            nullable=False,
        ),
        sa.Column(
            'transport_vehicle_type',
            sa.String(length=50),
            server_default='STANDARD',
            nullable=False,
        ),
        sa.Column('vehicle_changed', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('vehicle_change_reason', sa.Text(), nullable=True),
        sa.Column('margin_override_percent', sa.Numeric(5, 2), nullable=True),
        sa.Column('margin_override_reason', sa.Text(), nullable=True),
        sa.Column('margin_overridden_by', sa.String(length=255), nullable=True),
        sa.Column('margin_overridden_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancellation_reason', cancellation_reason, nullable=True),
        sa.Column('cancellation_notes', sa.Text(), nullable=True),
        *_timestamp_columns(),
        sa.UniqueConstraint('order_id', name='uq_orders_order_id'),
        sa.CheckConstraint(
            'delivery_window_start IS NULL OR delivery_window_end IS NULL '
            'OR delivery_window_start < delivery_window_end',
            name='ck_orders_delivery_window',
        ),
        sa.CheckConstraint(
            'pickup_window_start IS NULL OR pickup_window_end IS NULL '
            'OR pickup_window_start < pickup_window_end',
            name='ck_orders_pickup_window',
        ),
        sa.CheckConstraint(
            'pickup_window_start IS NULL OR delivery_window_end IS NULL '
            'OR pickup_window_start >= delivery_window_end',
            name='ck_orders_pickup_after_delivery',
        ),
    )
    op.create_index('ix_orders_company_id', 'orders', ['company_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_company_status', 'orders', ['company_id', 'status'])

    op.create_table(
        'order_items',
        _id_column(),
        sa.Column(
            'order_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'asset_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('assets.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column(
            'refurb_days',
            sa.Integer(),
            server_default=sa.text('0'),
            nullable=False,
            comment='Refurbishment days added to the preparation buffer',
        ),
        *_timestamp_columns(),
        sa.CheckConstraint('quantity > 0', name='ck_order_items_quantity_positive'),
        sa.CheckConstraint('refurb_days >= 0', name='ck_order_items_refurb_non_negative'),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])
    op.create_index('ix_order_items_asset_id', 'order_items', ['asset_id'])

    op.create_table(
        'order_status_history',
        _id_column(),
        sa.Column(
            'order_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('status', order_status, nullable=False),
        sa.Column(
            'timestamp',
            sa.DateTime(timezone=True),
            server_default=sa.text('now()'),
            nullable=False,
        ),
        sa.Column('updated_by', sa.String(length=255), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
    )
    op.create_index(
        'ix_order_status_history_order_ts',
        'order_status_history',
        ['order_id', 'timestamp'],
    )

    op.create_table(
        'asset_bookings',
        _id_column(),
        sa.Column(
            'asset_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('assets.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column(
            'order_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('blocked_from', sa.Date(), nullable=False),
        sa.Column(
            'blocked_until',
            sa.Date(),
            nullable=False,
            comment='Exclusive end of the blocked period',
        ),
        sa.Column('released_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('release_reason', sa.Text(), nullable=True),
        *_timestamp_columns(),
        sa.CheckConstraint('quantity > 0', name='ck_asset_bookings_quantity'),
        sa.CheckConstraint('blocked_from < blocked_until', name='ck_asset_bookings_window'),
    )
    op.create_index('ix_asset_bookings_order_id', 'asset_bookings', ['order_id'])
    op.create_index(
        'ix_asset_bookings_active_window',
        'asset_bookings',
        ['asset_id', 'blocked_from', 'blocked_until'],
        postgresql_where=sa.text('released_at IS NULL'),
    )

    op.create_table(
        'service_types',
        _id_column(),
        sa.Column('name', sa.String(length=200), nullable=False),
        sa.Column('category', service_category, nullable=False),
        sa.Column('unit', sa.String(length=50), nullable=False),
        sa.Column(
            'default_rate',
            sa.Numeric(12, 2),
            nullable=True,
            comment='Unit rate; NULL means the service must be quoted as custom',
        ),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        *_timestamp_columns(),
        sa.UniqueConstraint('name', name='uq_service_types_name'),
    )

    op.create_table(
        'line_items',
        _id_column(),
        sa.Column(
            'order_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=True,
        ),
        sa.Column(
            'inbound_request_id',
            postgresql.UUID(as_uuid=True),
            nullable=True,
            comment='Inbound stock request owning the item',
        ),
        sa.Column('purpose_type', purpose_type, nullable=False),
        sa.Column(
            'service_type_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('service_types.id', ondelete='RESTRICT'),
            nullable=True,
        ),
        sa.Column('line_item_type', line_item_type, nullable=False),
        sa.Column('category', service_category, nullable=False),
        sa.Column('description', sa.String(length=500), nullable=False),
        sa.Column('quantity', sa.Numeric(10, 2), nullable=True),
        sa.Column('unit', sa.String(length=50), nullable=True),
        sa.Column('unit_rate', sa.Numeric(12, 2), nullable=True),
        sa.Column('total', sa.Numeric(12, 2), nullable=False),
        sa.Column('billing_mode', billing_mode, server_default='BILLABLE', nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column(
            'metadata',
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=True,
            comment='Transport trip details for transport catalog items',
        ),
        sa.Column('added_by', sa.String(length=255), nullable=False),
        sa.Column('is_voided', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('void_reason', sa.Text(), nullable=True),
        sa.Column('voided_by', sa.String(length=255), nullable=True),
        sa.Column('voided_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamp_columns(),
        sa.CheckConstraint(
            "(order_id IS NOT NULL AND purpose_type = 'ORDER') OR "
            "(inbound_request_id IS NOT NULL AND purpose_type = 'INBOUND_REQUEST')",
            name='ck_line_items_owner',
        ),
        sa.CheckConstraint('total >= 0', name='ck_line_items_total_non_negative'),
        sa.CheckConstraint(
            'NOT is_voided OR void_reason IS NOT NULL',
            name='ck_line_items_void_reason',
        ),
    )
    op.create_index('ix_line_items_order', 'line_items', ['order_id'])
    op.create_index('ix_line_items_inbound_request', 'line_items', ['inbound_request_id'])

    op.create_table(
        'reskin_requests',
        _id_column(),
        sa.Column(
            'order_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('orders.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'order_item_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('order_items.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'original_asset_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('assets.id', ondelete='RESTRICT'),
            nullable=False,
        ),
        sa.Column('target_brand', sa.String(length=200), nullable=False),
        sa.Column('client_notes', sa.Text(), nullable=True),
        sa.Column('status', reskin_status, server_default='pending', nullable=False),
        sa.Column(
            'new_asset_id',
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey('assets.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_by', sa.String(length=255), nullable=True),
        sa.Column('completion_notes', sa.Text(), nullable=True),
        sa.Column(
            'completion_photos',
            postgresql.ARRAY(sa.Text()),
            server_default=sa.text("'{}'"),
            nullable=False,
        ),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by', sa.String(length=255), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        *_timestamp_columns(),
    )
    op.create_index(
        'ix_reskin_requests_order_status',
        'reskin_requests',
        ['order_id', 'status'],
    )


def downgrade() -> None:
    """Drop the fulfillment schema."""
    op.drop_index('ix_reskin_requests_order_status', table_name='reskin_requests')
    op.drop_table('reskin_requests')

    op.drop_index('ix_line_items_inbound_request', table_name='line_items')
    op.drop_index('ix_line_items_order', table_name='line_items')
    op.drop_table('line_items')
    op.drop_table('service_types')

    op.drop_index('ix_asset_bookings_active_window', table_name='asset_bookings')
    op.drop_index('ix_asset_bookings_order_id', table_name='asset_bookings')
    op.drop_table('asset_bookings')

    op.drop_index('ix_order_status_history_order_ts', table_name='order_status_history')
    op.drop_table('order_status_history')

    op.drop_index('ix_order_items_asset_id', table_name='order_items')
    op.drop_index('ix_order_items_order_id', table_name='order_items')
    op.drop_table('order_items')

    op.drop_index('ix_orders_company_status', table_name='orders')
    op.drop_index('ix_orders_status', table_name='orders')
    op.drop_index('ix_orders_company_id', table_name='orders')
    op.drop_table('orders')

    op.drop_index('ix_assets_company_id', table_name='assets')
    op.drop_table('assets')
    op.drop_table('vehicle_types')
    op.drop_index('ix_transport_rates_lookup', table_name='transport_rates')
    op.drop_table('transport_rates')
    op.drop_table('pricing_tiers')
    op.drop_table('companies')

    bind = op.get_bind()
    for enum in reversed(ENUMS):
        enum.drop(bind, checkfirst=True)
