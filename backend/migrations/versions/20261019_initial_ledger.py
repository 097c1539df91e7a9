"""Initial ledger schema: workers, rates, inventory journal, production, payroll

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration adds:
1. Workers and rates (with bill-of-materials rows)
2. Inventory items and the append-only inventory journal
3. Worker logs (production)
4. Deductions, payroll runs and per-worker run entries
5. Ledger events (audit spine)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. WORKERS / INVENTORY ITEMS / RATES
    # ==========================================================================
    op.create_table('workers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('role', sa.String(length=16), nullable=False),
        sa.Column('salary_type', sa.String(length=16), nullable=False),
        sa.Column('base_salary_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_ssb', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('joined_on', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('workers', schema=None) as batch_op:
        batch_op.create_index('ix_workers_active_name', ['is_active', 'name'], unique=False)

    op.create_table('inventory_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=False),
        sa.Column('unit', sa.String(length=32), nullable=False),
        sa.Column('current_stock', sa.Numeric(precision=14, scale=3), nullable=False, server_default='0'),
        sa.Column('min_stock_level', sa.Numeric(precision=14, scale=3), nullable=False, server_default='0'),
        sa.Column('cost_per_unit_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_inventory_items_name'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('inventory_items', schema=None) as batch_op:
        batch_op.create_index('ix_inventory_items_category', ['category'], unique=False)

    op.create_table('rates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('task_name', sa.String(length=255), nullable=False),
        sa.Column('price_per_unit_cents', sa.Integer(), nullable=False),
        sa.Column('unit', sa.String(length=32), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('rates', schema=None) as batch_op:
        batch_op.create_index('ix_rates_status_task', ['status', 'task_name'], unique=False)
        batch_op.create_index(batch_op.f('ix_rates_status'), ['status'], unique=False)

    op.create_table('rate_materials',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('rate_id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('quantity_per_unit', sa.Numeric(precision=14, scale=3), nullable=False),
        sa.CheckConstraint('quantity_per_unit > 0', name='ck_rate_materials_qty_positive'),
        sa.ForeignKeyConstraint(['item_id'], ['inventory_items.id']),
        sa.ForeignKeyConstraint(['rate_id'], ['rates.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('rate_id', 'item_id', name='uq_rate_materials_rate_item'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('rate_materials', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_rate_materials_rate_id'), ['rate_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_rate_materials_item_id'), ['item_id'], unique=False)

    # ==========================================================================
    # 2. PAYROLL RUNS (referenced by worker_logs and deductions)
    # ==========================================================================
    op.create_table('payroll_runs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('total_gross_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_deductions_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_net_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('worker_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_by', sa.String(length=255), nullable=False),
        sa.Column('finalized_by', sa.String(length=255), nullable=True),
        sa.Column('finalized_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('payroll_runs', schema=None) as batch_op:
        batch_op.create_index('ix_payroll_runs_period', ['period_start', 'period_end'], unique=False)
        batch_op.create_index(batch_op.f('ix_payroll_runs_status'), ['status'], unique=False)

    # ==========================================================================
    # 3. WORKER LOGS
    # ==========================================================================
    op.create_table('worker_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('worker_id', sa.Integer(), nullable=False),
        sa.Column('rate_id', sa.Integer(), nullable=False),
        sa.Column('worker_name', sa.String(length=255), nullable=False),
        sa.Column('task_name', sa.String(length=255), nullable=False),
        sa.Column('price_per_unit_cents', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Numeric(precision=14, scale=3), nullable=False),
        sa.Column('defect_qty', sa.Numeric(precision=14, scale=3), nullable=False, server_default='0'),
        sa.Column('total_pay_cents', sa.Integer(), nullable=False),
        sa.Column('work_date', sa.Date(), nullable=False),
        sa.Column('shift', sa.String(length=8), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('payroll_run_id', sa.Integer(), nullable=True),
        sa.Column('created_by', sa.String(length=255), nullable=False),
        sa.Column('approved_by', sa.String(length=255), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('locked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_worker_logs_quantity_positive'),
        sa.CheckConstraint('defect_qty >= 0 AND defect_qty <= quantity', name='ck_worker_logs_defect_range'),
        sa.ForeignKeyConstraint(['payroll_run_id'], ['payroll_runs.id']),
        sa.ForeignKeyConstraint(['rate_id'], ['rates.id']),
        sa.ForeignKeyConstraint(['worker_id'], ['workers.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('worker_logs', schema=None) as batch_op:
        batch_op.create_index('ix_worker_logs_worker_date', ['worker_id', 'work_date'], unique=False)
        batch_op.create_index('ix_worker_logs_status_date', ['status', 'work_date'], unique=False)
        batch_op.create_index(batch_op.f('ix_worker_logs_worker_id'), ['worker_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_worker_logs_rate_id'), ['rate_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_worker_logs_work_date'), ['work_date'], unique=False)
        batch_op.create_index(batch_op.f('ix_worker_logs_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_worker_logs_payroll_run_id'), ['payroll_run_id'], unique=False)

    # ==========================================================================
    # 4. INVENTORY JOURNAL
    # ==========================================================================
    op.create_table('inventory_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=8), nullable=False),
        sa.Column('quantity', sa.Numeric(precision=14, scale=3), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=True),
        sa.Column('total_cost_cents', sa.Integer(), nullable=True),
        sa.Column('balance_after', sa.Numeric(precision=14, scale=3), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=False),
        sa.Column('worker_log_id', sa.Integer(), nullable=True),
        sa.Column('compensates_transaction_id', sa.Integer(), nullable=True),
        sa.Column('entry_date', sa.Date(), nullable=False),
        sa.Column('performed_by', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_invtx_quantity_positive'),
        sa.ForeignKeyConstraint(['compensates_transaction_id'], ['inventory_transactions.id']),
        sa.ForeignKeyConstraint(['item_id'], ['inventory_items.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('compensates_transaction_id', name='uq_invtx_compensates'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('inventory_transactions', schema=None) as batch_op:
        batch_op.create_index('ix_invtx_item_created', ['item_id', 'created_at'], unique=False)
        batch_op.create_index('ix_invtx_item_type', ['item_id', 'type'], unique=False)
        batch_op.create_index(batch_op.f('ix_inventory_transactions_item_id'), ['item_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_inventory_transactions_type'), ['type'], unique=False)
        batch_op.create_index(batch_op.f('ix_inventory_transactions_worker_log_id'), ['worker_log_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_inventory_transactions_entry_date'), ['entry_date'], unique=False)

    # ==========================================================================
    # 5. DEDUCTIONS / RUN ENTRIES
    # ==========================================================================
    op.create_table('deductions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('worker_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('deduction_date', sa.Date(), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('is_recurring', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('payroll_run_id', sa.Integer(), nullable=True),
        sa.Column('created_by', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('amount_cents > 0', name='ck_deductions_amount_positive'),
        sa.ForeignKeyConstraint(['payroll_run_id'], ['payroll_runs.id']),
        sa.ForeignKeyConstraint(['worker_id'], ['workers.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('deductions', schema=None) as batch_op:
        batch_op.create_index('ix_deductions_worker_date', ['worker_id', 'deduction_date'], unique=False)
        batch_op.create_index(batch_op.f('ix_deductions_worker_id'), ['worker_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_deductions_deduction_date'), ['deduction_date'], unique=False)
        batch_op.create_index(batch_op.f('ix_deductions_payroll_run_id'), ['payroll_run_id'], unique=False)

    op.create_table('payroll_run_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('payroll_run_id', sa.Integer(), nullable=False),
        sa.Column('worker_id', sa.Integer(), nullable=False),
        sa.Column('worker_name', sa.String(length=255), nullable=False),
        sa.Column('total_production_qty', sa.Numeric(precision=14, scale=3), nullable=False, server_default='0'),
        sa.Column('gross_pay_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('base_salary_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('bonus_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('deductions_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('statutory_deductions_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('net_pay_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('logs_snapshot', sa.JSON(), nullable=False),
        sa.Column('deductions_snapshot', sa.JSON(), nullable=False),
        sa.ForeignKeyConstraint(['payroll_run_id'], ['payroll_runs.id']),
        sa.ForeignKeyConstraint(['worker_id'], ['workers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('payroll_run_id', 'worker_id', name='uq_payroll_run_entries_run_worker'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('payroll_run_entries', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payroll_run_entries_payroll_run_id'), ['payroll_run_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_payroll_run_entries_worker_id'), ['worker_id'], unique=False)

    # ==========================================================================
    # 6. LEDGER EVENTS
    # ==========================================================================
    op.create_table('ledger_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('event_category', sa.String(length=32), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('actor', sa.String(length=255), nullable=False),
        sa.Column('occurred_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('ledger_events', schema=None) as batch_op:
        batch_op.create_index('ix_ledger_events_entity', ['entity_type', 'entity_id'], unique=False)
        batch_op.create_index('ix_ledger_events_type_occurred', ['event_type', 'occurred_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_events_event_category'), ['event_category'], unique=False)


def downgrade():
    op.drop_table('ledger_events')
    op.drop_table('payroll_run_entries')
    op.drop_table('deductions')
    op.drop_table('inventory_transactions')
    op.drop_table('worker_logs')
    op.drop_table('payroll_runs')
    op.drop_table('rate_materials')
    op.drop_table('rates')
    op.drop_table('inventory_items')
    op.drop_table('workers')
