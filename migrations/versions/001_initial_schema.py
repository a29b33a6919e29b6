"""
Alembic migration: Initial order desk schema.

Creates the SKU catalogue, sales orders with lines and add-on links, production
batches with their items and workflow steps, invoices with payments, runtime
settings and the append-only audit log. Seeds the business settings the add-on
and kit pricing rules read.

Revision ID: 001
Revises:
Create Date: 2025-11-03 09:12:40.518233
"""

import uuid
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# Revision identifiers, used by Alembic
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ORDER_STATUSES = (
    'draft', 'awaiting_approval', 'quoted', 'deposit_due', 'in_queue',
    'in_production', 'in_labeling', 'in_packing', 'packed', 'awaiting_invoice',
    'awaiting_payment', 'ready_to_ship', 'shipped', 'ready_to_stock', 'stocked',
    'on_hold', 'cancelled',
)

SEED_SETTINGS = (
    ('addon_max_percent', '100', 'Largest add-on as a percent of the parent order; 0 disables the limit'),
    ('kit_size', '10', 'Bottles per kit'),
)


def _id() -> sa.Column:
    return sa.Column('id', sa.Uuid(), primary_key=True, nullable=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def _enum(name: str, *values: str) -> sa.Enum:
    return sa.Enum(*values, name=name, create_constraint=True)


def upgrade() -> None:
    """
    Create all tables, indexes and constraints, then seed settings.
    """
    op.create_table(
        'skus',
        _id(),
        sa.Column('code', sa.String(50), nullable=False, comment='SKU code'),
        sa.Column('description', sa.String(255), nullable=False),
        sa.Column('batch_prefix', sa.String(20), nullable=True),
        sa.Column('label_required', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('price_per_kit', sa.Numeric(10, 2), nullable=False),
        sa.Column('price_per_piece', sa.Numeric(10, 2), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        *_timestamps(),
        sa.UniqueConstraint('code', name='uq_skus_code'),
    )
    op.create_index('ix_skus_code', 'skus', ['code'])

    op.create_table(
        'sales_orders',
        _id(),
        sa.Column('uid', sa.String(50), nullable=False),
        sa.Column('human_uid', sa.String(50), nullable=False, comment='Human-readable order number'),
        sa.Column('customer_id', sa.Uuid(), nullable=True),
        sa.Column('brand_id', sa.Uuid(), nullable=True),
        sa.Column('status', _enum('order_status', *ORDER_STATUSES), nullable=False),
        sa.Column('subtotal', sa.Numeric(10, 2), nullable=False),
        sa.Column('consolidated_total', sa.Numeric(10, 2), nullable=True),
        sa.Column('deposit_required', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column('deposit_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('deposit_status', _enum('deposit_status', 'unpaid', 'partial', 'paid'), nullable=False),
        sa.Column('label_required', sa.Boolean(), nullable=False, server_default=sa.text('false')),
        sa.Column(
            'parent_order_id',
            sa.Uuid(),
            sa.ForeignKey('sales_orders.id', ondelete='SET NULL'),
            nullable=True,
        ),
        *_timestamps(),
        sa.UniqueConstraint('uid', name='uq_sales_orders_uid'),
        sa.CheckConstraint('subtotal >= 0', name='ck_sales_orders_subtotal_non_negative'),
    )
    op.create_index('ix_sales_orders_human_uid', 'sales_orders', ['human_uid'])
    op.create_index('ix_sales_orders_customer_id', 'sales_orders', ['customer_id'])
    op.create_index('ix_sales_orders_brand_id', 'sales_orders', ['brand_id'])
    op.create_index('ix_sales_orders_status', 'sales_orders', ['status'])
    op.create_index('ix_sales_orders_parent_order_id', 'sales_orders', ['parent_order_id'])

    op.create_table(
        'sales_order_lines',
        _id(),
        sa.Column('so_id', sa.Uuid(), sa.ForeignKey('sales_orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sku_id', sa.Uuid(), sa.ForeignKey('skus.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('sell_mode', _enum('sell_mode', 'kit', 'piece'), nullable=False),
        sa.Column('qty_entered', sa.Integer(), nullable=False),
        sa.Column('bottle_qty', sa.Integer(), nullable=False),
        sa.Column('unit_price', sa.Numeric(10, 2), nullable=False),
        sa.Column('line_subtotal', sa.Numeric(10, 2), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('bottle_qty >= 0', name='ck_sales_order_lines_bottle_qty'),
        sa.CheckConstraint('qty_entered > 0', name='ck_sales_order_lines_qty_entered'),
    )
    op.create_index('ix_sales_order_lines_so_id', 'sales_order_lines', ['so_id'])

    op.create_table(
        'order_addons',
        _id(),
        sa.Column('parent_so_id', sa.Uuid(), sa.ForeignKey('sales_orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('addon_so_id', sa.Uuid(), sa.ForeignKey('sales_orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('status', _enum('addon_status', 'pending', 'approved', 'rejected'), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(255), nullable=True),
        sa.Column('approved_by', sa.String(255), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('addon_so_id', name='uq_order_addons_addon_so_id'),
    )
    op.create_index('ix_order_addons_parent_so_id', 'order_addons', ['parent_so_id'])

    op.create_table(
        'production_batches',
        _id(),
        sa.Column('so_id', sa.Uuid(), sa.ForeignKey('sales_orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('uid', sa.String(50), nullable=False),
        sa.Column('human_uid', sa.String(50), nullable=False, comment='Batch number, SKU prefix first'),
        sa.Column('status', _enum('batch_status', 'queued', 'wip', 'hold', 'complete'), nullable=False),
        sa.Column('priority_index', sa.Integer(), nullable=False),
        sa.Column('planned_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('qty_bottle_planned', sa.Integer(), nullable=False),
        sa.Column('qty_bottle_good', sa.Integer(), nullable=False),
        sa.Column('qty_bottle_scrap', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('uid', name='uq_production_batches_uid'),
        sa.CheckConstraint('qty_bottle_planned > 0', name='ck_production_batches_planned_positive'),
        sa.CheckConstraint(
            'qty_bottle_good >= 0 AND qty_bottle_scrap >= 0',
            name='ck_production_batches_output_non_negative',
        ),
    )
    op.create_index('ix_production_batches_so_id', 'production_batches', ['so_id'])
    op.create_index('ix_production_batches_human_uid', 'production_batches', ['human_uid'])
    op.create_index('ix_production_batches_status', 'production_batches', ['status'])

    op.create_table(
        'production_batch_items',
        _id(),
        sa.Column(
            'batch_id',
            sa.Uuid(),
            sa.ForeignKey('production_batches.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'so_line_id',
            sa.Uuid(),
            sa.ForeignKey('sales_order_lines.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('bottle_qty_allocated', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('batch_id', 'so_line_id', name='uq_batch_items_batch_line'),
        sa.CheckConstraint('bottle_qty_allocated > 0', name='ck_batch_items_allocated_positive'),
    )
    op.create_index('ix_production_batch_items_batch_id', 'production_batch_items', ['batch_id'])
    op.create_index('ix_production_batch_items_so_line_id', 'production_batch_items', ['so_line_id'])

    op.create_table(
        'workflow_steps',
        _id(),
        sa.Column(
            'batch_id',
            sa.Uuid(),
            sa.ForeignKey('production_batches.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column(
            'step',
            _enum('workflow_step_type', 'produce', 'bottle_cap', 'label', 'pack'),
            nullable=False,
        ),
        sa.Column('status', _enum('step_status', 'pending', 'wip', 'done'), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('finished_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('batch_id', 'step', name='uq_workflow_steps_batch_step'),
    )
    op.create_index('ix_workflow_steps_batch_id', 'workflow_steps', ['batch_id'])

    op.create_table(
        'invoices',
        _id(),
        sa.Column('so_id', sa.Uuid(), sa.ForeignKey('sales_orders.id', ondelete='CASCADE'), nullable=False),
        sa.Column('invoice_no', sa.String(50), nullable=False),
        sa.Column('type', _enum('invoice_type', 'deposit', 'final'), nullable=False),
        sa.Column('status', _enum('invoice_status', 'unpaid', 'paid'), nullable=False),
        sa.Column('subtotal', sa.Numeric(10, 2), nullable=False),
        sa.Column('tax', sa.Numeric(10, 2), nullable=False),
        sa.Column('total', sa.Numeric(10, 2), nullable=False),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.UniqueConstraint('invoice_no', name='uq_invoices_invoice_no'),
        sa.CheckConstraint('total >= 0', name='ck_invoices_total_non_negative'),
    )
    op.create_index('ix_invoices_so_id', 'invoices', ['so_id'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])

    op.create_table(
        'invoice_payments',
        _id(),
        sa.Column('invoice_id', sa.Uuid(), sa.ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column(
            'method',
            _enum('payment_method', 'cash', 'check', 'ach', 'wire', 'other'),
            nullable=False,
        ),
        sa.Column('external_ref', sa.String(255), nullable=True),
        sa.Column('recorded_by', sa.String(255), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('amount > 0', name='ck_invoice_payments_amount_positive'),
    )
    op.create_index('ix_invoice_payments_invoice_id', 'invoice_payments', ['invoice_id'])

    settings_table = op.create_table(
        'settings',
        _id(),
        sa.Column('key', sa.String(100), nullable=False),
        sa.Column('value', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint('key', name='uq_settings_key'),
    )

    op.create_table(
        'audit_log',
        _id(),
        sa.Column('entity', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.Uuid(), nullable=False),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('before', sa.JSON(), nullable=True),
        sa.Column('after', sa.JSON(), nullable=True),
        sa.Column('actor_id', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_audit_log_entity', 'audit_log', ['entity', 'entity_id'])

    op.bulk_insert(
        settings_table,
        [
            {'id': uuid.uuid4(), 'key': key, 'value': value, 'description': description}
            for key, value, description in SEED_SETTINGS
        ],
    )


def downgrade() -> None:
    """
    Drop every table in reverse dependency order along with its enum types.
    """
    op.drop_index('ix_audit_log_entity', table_name='audit_log')
    op.drop_table('audit_log')
    op.drop_table('settings')
    op.drop_table('invoice_payments')
    op.drop_table('invoices')
    op.drop_table('workflow_steps')
    op.drop_table('production_batch_items')
    op.drop_table('production_batches')
    op.drop_table('order_addons')
    op.drop_table('sales_order_lines')
    op.drop_table('sales_orders')
    op.drop_table('skus')

    bind = op.get_bind()
    for enum_name in (
        'payment_method', 'invoice_status', 'invoice_type', 'step_status',
        'workflow_step_type', 'batch_status', 'addon_status', 'sell_mode',
        'deposit_status', 'order_status',
    ):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
