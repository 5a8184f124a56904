"""Add physical stock count tables

Revision ID: 20261017_physical_stock
Revises:
Create Date: 2026-10-17

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '20261017_physical_stock'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Inventory item master
    op.create_table(
        'inventory_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('supplier_code', sa.String(255), nullable=False),
        sa.Column('barcode', sa.String(255)),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('category', sa.String(255)),
        sa.Column('unit_of_measure', sa.String(100)),
        sa.Column('unit_cost', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_inventory_items_supplier_code', 'inventory_items', ['supplier_code'], unique=True)
    op.create_index('ix_inventory_items_barcode', 'inventory_items', ['barcode'])

    # Stock levels per location
    op.create_table(
        'inventory_levels',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('inventory_item_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('inventory_items.id', ondelete='CASCADE'), nullable=False),
        sa.Column('storage_location', sa.String(255), nullable=False),
        sa.Column('quantity_available', sa.Integer, nullable=False, server_default='0'),
        sa.Column('quantity_reserved', sa.Integer, nullable=False, server_default='0'),
        sa.Column('reorder_level', sa.Integer, server_default='0'),
        sa.Column('max_stock_level', sa.Integer, server_default='0'),
        sa.Column('last_updated', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('inventory_item_id', 'storage_location', name='uq_inventory_level_location'),
    )
    op.create_index('ix_inventory_levels_inventory_item_id', 'inventory_levels', ['inventory_item_id'])
    op.create_index('ix_inventory_levels_storage_location', 'inventory_levels', ['storage_location'])

    # Stock movement ledger
    op.create_table(
        'stock_movements',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('movement_number', sa.String(50), nullable=False),
        sa.Column('movement_type', sa.String(50), nullable=False,
                  comment='RECEIPT, ISSUE, TRANSFER_IN, TRANSFER_OUT, ADJUSTMENT_IN, ADJUSTMENT_OUT'),
        sa.Column('movement_date', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('item_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('inventory_items.id'), nullable=False),
        sa.Column('storage_location', sa.String(255)),
        sa.Column('quantity_before', sa.Integer, nullable=False),
        sa.Column('quantity_moved', sa.Integer, nullable=False),
        sa.Column('quantity_after', sa.Integer, nullable=False),
        sa.Column('reference_type', sa.String(50)),
        sa.Column('reference_id', postgresql.UUID(as_uuid=True)),
        sa.Column('reference_number', sa.String(100)),
        sa.Column('unit_cost', sa.Numeric(12, 2), server_default='0'),
        sa.Column('total_value', sa.Numeric(12, 2), server_default='0'),
        sa.Column('notes', sa.Text),
        sa.Column('created_by', sa.String(100)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_stock_movements_movement_number', 'stock_movements', ['movement_number'], unique=True)
    op.create_index('ix_stock_movements_movement_type', 'stock_movements', ['movement_type'])
    op.create_index('ix_stock_movements_item_id', 'stock_movements', ['item_id'])
    op.create_index('ix_stock_movements_reference_type', 'stock_movements', ['reference_type'])
    op.create_index('ix_stock_movements_reference_id', 'stock_movements', ['reference_id'])

    # Audit log
    op.create_table(
        'audit_logs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', sa.String(100)),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', postgresql.UUID(as_uuid=True)),
        sa.Column('old_values', postgresql.JSONB),
        sa.Column('new_values', postgresql.JSONB),
        sa.Column('description', sa.Text),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_audit_logs_user_id', 'audit_logs', ['user_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])

    # Physical Stock Counts
    op.create_table(
        'physical_stock_counts',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('count_number', sa.String(50), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('count_date', sa.DateTime(timezone=True)),
        sa.Column('storage_location', sa.String(255)),
        sa.Column('count_type', sa.String(50), nullable=False, server_default='FULL_COUNT'),
        sa.Column('status', sa.String(50), nullable=False, server_default='PENDING'),
        sa.Column('scheduled_date', sa.DateTime(timezone=True)),
        sa.Column('started_by', sa.String(100)),
        sa.Column('started_at', sa.DateTime(timezone=True)),
        sa.Column('completed_by', sa.String(100)),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
        sa.Column('approved_by', sa.String(100)),
        sa.Column('approved_at', sa.DateTime(timezone=True)),
        sa.Column('total_items_expected', sa.Integer, nullable=False, server_default='0'),
        sa.Column('total_items_counted', sa.Integer, nullable=False, server_default='0'),
        sa.Column('total_discrepancies', sa.Integer, nullable=False, server_default='0'),
        sa.Column('notes', sa.Text),
        sa.Column('created_by', sa.String(100)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_physical_stock_counts_count_number', 'physical_stock_counts', ['count_number'], unique=True)
    op.create_index('idx_psc_status', 'physical_stock_counts', ['status'])
    op.create_index('idx_psc_count_date', 'physical_stock_counts', ['count_date'])

    # Physical Stock Count Items
    op.create_table(
        'physical_stock_count_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('physical_stock_count_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('physical_stock_counts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('inventory_item_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('inventory_items.id'), nullable=False),
        sa.Column('line_number', sa.Integer, nullable=False),
        sa.Column('supplier_code', sa.String(255), nullable=False),
        sa.Column('barcode', sa.String(255)),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('storage_location', sa.String(255)),
        sa.Column('system_quantity', sa.Integer, nullable=False, server_default='0'),
        sa.Column('reserved_quantity', sa.Integer, nullable=False, server_default='0'),
        sa.Column('available_quantity', sa.Integer, nullable=False, server_default='0'),
        sa.Column('unit_cost', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('count_pass', sa.String(20)),
        sa.Column('first_count_quantity', sa.Integer),
        sa.Column('first_count_by', sa.String(100)),
        sa.Column('first_count_at', sa.DateTime(timezone=True)),
        sa.Column('second_count_quantity', sa.Integer),
        sa.Column('second_count_by', sa.String(100)),
        sa.Column('second_count_at', sa.DateTime(timezone=True)),
        sa.Column('final_count_quantity', sa.Integer),
        sa.Column('variance', sa.Integer, nullable=False, server_default='0'),
        sa.Column('variance_value', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('status', sa.String(50), nullable=False, server_default='PENDING'),
        sa.Column('requires_recount', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('discrepancy_reason', sa.Text),
        sa.Column('adjustment_required', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('adjustment_applied', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('adjustment_applied_by', sa.String(100)),
        sa.Column('adjustment_applied_at', sa.DateTime(timezone=True)),
        sa.Column('notes', sa.Text),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('physical_stock_count_id', 'line_number', name='uq_psci_line_number'),
    )
    op.create_index('idx_psci_count_item', 'physical_stock_count_items',
                    ['physical_stock_count_id', 'inventory_item_id'])
    op.create_index('idx_psci_adjustment', 'physical_stock_count_items',
                    ['physical_stock_count_id', 'adjustment_required', 'adjustment_applied'])

    # Scanning Sessions
    op.create_table(
        'physical_stock_scanning_sessions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('physical_stock_count_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('physical_stock_counts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('session_name', sa.String(255), nullable=False),
        sa.Column('session_type', sa.String(50), nullable=False, server_default='FIRST_COUNT'),
        sa.Column('storage_location', sa.String(255)),
        sa.Column('status', sa.String(50), nullable=False, server_default='ACTIVE'),
        sa.Column('started_by', sa.String(100), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
        sa.Column('total_scans_expected', sa.Integer, nullable=False, server_default='0'),
        sa.Column('total_scans_completed', sa.Integer, nullable=False, server_default='0'),
        sa.Column('notes', sa.Text),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_pss_count_status', 'physical_stock_scanning_sessions',
                    ['physical_stock_count_id', 'status'])

    # Scanned Items
    op.create_table(
        'physical_stock_scanned_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('scanning_session_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('physical_stock_scanning_sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('physical_stock_count_item_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('physical_stock_count_items.id', ondelete='CASCADE')),
        sa.Column('inventory_item_id', postgresql.UUID(as_uuid=True), sa.ForeignKey('inventory_items.id')),
        sa.Column('barcode', sa.String(255), nullable=False),
        sa.Column('supplier_code', sa.String(255)),
        sa.Column('quantity_scanned', sa.Integer, nullable=False, server_default='1'),
        sa.Column('storage_location', sa.String(255)),
        sa.Column('scanned_by', sa.String(100), nullable=False),
        sa.Column('scanned_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('verified', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('verified_by', sa.String(100)),
        sa.Column('verified_at', sa.DateTime(timezone=True)),
        sa.Column('notes', sa.Text),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_psi_session_scanned_at', 'physical_stock_scanned_items',
                    ['scanning_session_id', 'scanned_at'])

    # Adjustments
    op.create_table(
        'physical_stock_adjustments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('adjustment_number', sa.String(50), nullable=False),
        sa.Column('physical_stock_count_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('physical_stock_counts.id'), nullable=False),
        sa.Column('adjustment_date', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('status', sa.String(50), nullable=False, server_default='DRAFT', comment='DRAFT, APPLIED'),
        sa.Column('total_adjustment_value', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('created_by', sa.String(100)),
        sa.Column('applied_by', sa.String(100)),
        sa.Column('applied_at', sa.DateTime(timezone=True)),
        sa.Column('reason', sa.Text),
        sa.Column('notes', sa.Text),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_physical_stock_adjustments_adjustment_number', 'physical_stock_adjustments',
                    ['adjustment_number'], unique=True)
    op.create_index('ix_physical_stock_adjustments_physical_stock_count_id', 'physical_stock_adjustments',
                    ['physical_stock_count_id'])
    op.create_index('ix_physical_stock_adjustments_status', 'physical_stock_adjustments', ['status'])

    op.create_table(
        'physical_stock_adjustment_items',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('adjustment_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('physical_stock_adjustments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('physical_stock_count_item_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('physical_stock_count_items.id'), nullable=False),
        sa.Column('inventory_item_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('inventory_items.id'), nullable=False),
        sa.Column('supplier_code', sa.String(255), nullable=False),
        sa.Column('description', sa.Text, nullable=False),
        sa.Column('storage_location', sa.String(255)),
        sa.Column('system_quantity', sa.Integer, nullable=False, server_default='0'),
        sa.Column('physical_quantity', sa.Integer, nullable=False, server_default='0'),
        sa.Column('adjustment_quantity', sa.Integer, nullable=False, server_default='0'),
        sa.Column('unit_cost', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('adjustment_value', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('reason', sa.Text),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_physical_stock_adjustment_items_adjustment_id', 'physical_stock_adjustment_items',
                    ['adjustment_id'])
    op.create_index('ix_physical_stock_adjustment_items_physical_stock_count_item_id',
                    'physical_stock_adjustment_items', ['physical_stock_count_item_id'], unique=True)

    # Free-standing shelf counts
    op.create_table(
        'physical_stock_records',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('inventory_item_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('inventory_items.id'), nullable=False),
        sa.Column('location', sa.String(128), nullable=False),
        sa.Column('quantity', sa.Integer, nullable=False),
        sa.Column('last_updated', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('counted_by', sa.String(100), nullable=False),
        sa.Column('notes', sa.Text),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('idx_psr_item_location', 'physical_stock_records', ['inventory_item_id', 'location'])


def downgrade() -> None:
    op.drop_table('physical_stock_records')
    op.drop_table('physical_stock_adjustment_items')
    op.drop_table('physical_stock_adjustments')
    op.drop_table('physical_stock_scanned_items')
    op.drop_table('physical_stock_scanning_sessions')
    op.drop_table('physical_stock_count_items')
    op.drop_table('physical_stock_counts')
    op.drop_table('audit_logs')
    op.drop_table('stock_movements')
    op.drop_table('inventory_levels')
    op.drop_table('inventory_items')
