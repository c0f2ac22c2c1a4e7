"""create audit tables

Revision ID: 3a1f9c0d2b7e
Revises:
Create Date: 2026-10-18 09:12:44.310521
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

revision: str = '3a1f9c0d2b7e'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _base_columns():
    return [
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('updated_by', sa.Integer(), nullable=True),
    ]


def upgrade() -> None:
    connection = op.get_bind()
    existing = set(inspect(connection).get_table_names())

    # Tables shared with the inventory system; only created when missing
    if 'users' not in existing:
        op.create_table(
            'users',
            *_base_columns(),
            sa.Column('email', sa.String(length=255), nullable=False),
            sa.Column('username', sa.String(length=100), nullable=False),
            sa.Column('full_name', sa.String(length=255), nullable=False),
            sa.Column('role', sa.String(length=20), nullable=False),
            sa.Column('is_active', sa.Boolean(), nullable=False),
        )
        op.create_index('ix_users_email', 'users', ['email'], unique=True)
        op.create_index('ix_users_username', 'users', ['username'], unique=True)
        op.create_index('ix_users_role', 'users', ['role'])
        print("✓ [3a1f9c0d2b7e] Created users")
    else:
        print("✓ [3a1f9c0d2b7e] users already exists - skipping")

    if 'warehouses' not in existing:
        op.create_table(
            'warehouses',
            *_base_columns(),
            sa.Column('code', sa.String(length=50), nullable=False),
            sa.Column('name', sa.String(length=100), nullable=False),
            sa.Column('address', sa.Text(), nullable=True),
            sa.Column('city', sa.String(length=50), nullable=True),
            sa.Column('country', sa.String(length=50), nullable=True),
            sa.Column('is_active', sa.Boolean(), nullable=True),
        )
        op.create_index('ix_warehouses_code', 'warehouses', ['code'], unique=True)
        print("✓ [3a1f9c0d2b7e] Created warehouses")
    else:
        print("✓ [3a1f9c0d2b7e] warehouses already exists - skipping")

    if 'items' not in existing:
        op.create_table(
            'items',
            *_base_columns(),
            sa.Column('item_code', sa.String(length=50), nullable=False),
            sa.Column('name', sa.String(length=200), nullable=False),
            sa.Column('description', sa.Text(), nullable=True),
            sa.Column('unit_type', sa.Enum('PCS', 'KG', 'L', 'BAG', 'BOX', 'CARTON', 'BTL', 'DOZEN', name='unittype'), nullable=False),
            sa.Column('barcode', sa.String(length=100), nullable=True),
            sa.Column('is_batch_tracked', sa.Boolean(), nullable=True),
            sa.Column('is_active', sa.Boolean(), nullable=True),
        )
        op.create_index('ix_items_item_code', 'items', ['item_code'], unique=True)
        print("✓ [3a1f9c0d2b7e] Created items")
    else:
        print("✓ [3a1f9c0d2b7e] items already exists - skipping")

    if 'stock_levels' not in existing:
        op.create_table(
            'stock_levels',
            *_base_columns(),
            sa.Column('item_id', sa.Integer(), sa.ForeignKey('items.id'), nullable=False),
            sa.Column('warehouse_id', sa.Integer(), sa.ForeignKey('warehouses.id'), nullable=False),
            sa.Column('batch_number', sa.String(length=50), nullable=True),
            sa.Column('current_stock', sa.Integer(), nullable=False),
            sa.UniqueConstraint('item_id', 'warehouse_id', 'batch_number', name='uq_stock_level_item_warehouse_batch'),
        )
        op.create_index('ix_stock_levels_warehouse_id', 'stock_levels', ['warehouse_id'])
        print("✓ [3a1f9c0d2b7e] Created stock_levels")
    else:
        print("✓ [3a1f9c0d2b7e] stock_levels already exists - skipping")

    # Audit engine tables
    op.create_table(
        'audit_manager_warehouses',
        *_base_columns(),
        sa.Column('audit_manager_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('warehouse_id', sa.Integer(), sa.ForeignKey('warehouses.id'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
    )
    op.create_index('ix_audit_manager_warehouses_audit_manager_id', 'audit_manager_warehouses', ['audit_manager_id'])
    op.create_index('ix_audit_manager_warehouses_warehouse_id', 'audit_manager_warehouses', ['warehouse_id'])
    op.create_index(
        'uq_active_manager_warehouse', 'audit_manager_warehouses', ['audit_manager_id', 'warehouse_id'],
        unique=True,
        postgresql_where=sa.text('is_active'),
        sqlite_where=sa.text('is_active = 1'),
    )

    op.create_table(
        'audit_team_assignments',
        *_base_columns(),
        sa.Column('audit_user_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('audit_manager_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('warehouse_id', sa.Integer(), sa.ForeignKey('warehouses.id'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('removed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_audit_team_assignments_audit_user_id', 'audit_team_assignments', ['audit_user_id'])
    op.create_index('ix_audit_team_assignments_audit_manager_id', 'audit_team_assignments', ['audit_manager_id'])
    op.create_index('ix_audit_team_assignments_warehouse_id', 'audit_team_assignments', ['warehouse_id'])
    op.create_index(
        'uq_active_team_assignment', 'audit_team_assignments', ['audit_user_id', 'warehouse_id'],
        unique=True,
        postgresql_where=sa.text('is_active'),
        sqlite_where=sa.text('is_active = 1'),
    )

    op.create_table(
        'audit_sessions',
        *_base_columns(),
        sa.Column('audit_code', sa.String(length=30), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('warehouse_id', sa.Integer(), sa.ForeignKey('warehouses.id'), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reconciliation_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_reason', sa.Text(), nullable=True),
        sa.CheckConstraint('start_date <= end_date', name='ck_audit_session_dates'),
    )
    op.create_index('ix_audit_sessions_audit_code', 'audit_sessions', ['audit_code'], unique=True)
    op.create_index('ix_audit_sessions_warehouse_id', 'audit_sessions', ['warehouse_id'])
    op.create_index('ix_audit_sessions_status', 'audit_sessions', ['status'])

    op.create_table(
        'audit_verifications',
        *_base_columns(),
        sa.Column('audit_session_id', sa.Integer(), sa.ForeignKey('audit_sessions.id'), nullable=False),
        sa.Column('serial_number', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), sa.ForeignKey('items.id'), nullable=False),
        sa.Column('batch_number', sa.String(length=50), nullable=True),
        sa.Column('system_quantity', sa.Integer(), nullable=False),
        sa.Column('physical_quantity', sa.Integer(), nullable=True),
        sa.Column('discrepancy', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('confirmed_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('override_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('override_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('override_notes', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.UniqueConstraint('audit_session_id', 'serial_number', name='uq_audit_verification_serial'),
    )
    op.create_index('ix_audit_verifications_audit_session_id', 'audit_verifications', ['audit_session_id'])
    op.create_index('ix_audit_verifications_status', 'audit_verifications', ['status'])

    op.create_table(
        'audit_action_logs',
        *_base_columns(),
        sa.Column('audit_session_id', sa.Integer(), sa.ForeignKey('audit_sessions.id'), nullable=False),
        sa.Column('audit_verification_id', sa.Integer(), sa.ForeignKey('audit_verifications.id'), nullable=True),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('performed_by', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('performed_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('previous_value', sa.JSON(), nullable=True),
        sa.Column('new_value', sa.JSON(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
    )
    op.create_index('ix_audit_action_logs_audit_session_id', 'audit_action_logs', ['audit_session_id'])
    op.create_index('ix_audit_action_logs_audit_verification_id', 'audit_action_logs', ['audit_verification_id'])
    print("✓ [3a1f9c0d2b7e] Created audit tables")


def downgrade() -> None:
    # Shared inventory tables are left in place
    op.drop_table('audit_action_logs')
    op.drop_table('audit_verifications')
    op.drop_table('audit_sessions')
    op.drop_table('audit_team_assignments')
    op.drop_table('audit_manager_warehouses')
