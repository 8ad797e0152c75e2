"""Initial clinic schema: accounts, pharmacy inventory and sales, appointments

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration creates:
1. Accounts, doctor profiles and session tokens
2. Inventory items and their low-stock notifications
3. Sales and sale lines (price/cost snapshots)
4. Appointments with embedded payment columns, treatments and payment records
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
    # 1. ACCOUNTS
    # ==========================================================================
    op.create_table('accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_type', sa.String(length=16), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('reset_otp_hash', sa.String(length=255), nullable=True),
        sa.Column('reset_otp_expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('accounts', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_accounts_account_type'), ['account_type'], unique=False)
        batch_op.create_index('ix_accounts_type_active', ['account_type', 'is_active'], unique=False)

    op.create_table('doctor_profiles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('specialization', sa.String(length=128), nullable=False),
        sa.Column('fee_cents', sa.Integer(), nullable=False),
        sa.Column('available_days', sa.JSON(), nullable=True),
        sa.Column('available_from', sa.String(length=5), nullable=True),
        sa.Column('available_to', sa.String(length=5), nullable=True),
        sa.Column('payout_account_id', sa.String(length=128), nullable=True),
        sa.Column('payout_enabled', sa.Boolean(), nullable=False, server_default='0'),
        sa.CheckConstraint('fee_cents > 0', name='ck_doctor_profiles_fee_positive'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('account_id'),
        sa.UniqueConstraint('payout_account_id'),
        sqlite_autoincrement=True
    )

    op.create_table('session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('session_tokens', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_session_tokens_account_id'), ['account_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_session_tokens_token_hash'), ['token_hash'], unique=True)
        batch_op.create_index(batch_op.f('ix_session_tokens_expires_at'), ['expires_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_session_tokens_is_revoked'), ['is_revoked'], unique=False)
        batch_op.create_index('ix_session_tokens_account_active', ['account_id', 'is_revoked'], unique=False)

    # ==========================================================================
    # 2. INVENTORY
    # ==========================================================================
    op.create_table('inventory_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('distributor', sa.String(length=255), nullable=True),
        sa.Column('strength', sa.String(length=64), nullable=True),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=False),
        sa.Column('quantity_on_hand', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('low_stock_threshold', sa.Integer(), nullable=False, server_default='10'),
        sa.Column('is_low_stock', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('added_by_account_id', sa.Integer(), nullable=True),
        sa.Column('updated_by_account_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('quantity_on_hand >= 0', name='ck_inventory_items_qty_non_negative'),
        sa.CheckConstraint('unit_price_cents >= 0', name='ck_inventory_items_price_non_negative'),
        sa.CheckConstraint('unit_cost_cents >= 0', name='ck_inventory_items_cost_non_negative'),
        sa.CheckConstraint('low_stock_threshold >= 0', name='ck_inventory_items_threshold_non_negative'),
        sa.ForeignKeyConstraint(['added_by_account_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['updated_by_account_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('inventory_items', schema=None) as batch_op:
        batch_op.create_index('ix_inventory_items_name', ['name'], unique=False)
        batch_op.create_index(batch_op.f('ix_inventory_items_is_low_stock'), ['is_low_stock'], unique=False)

    op.create_table('stock_notifications',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('message', sa.String(length=255), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_read', sa.Boolean(), nullable=False, server_default='0'),
        sa.ForeignKeyConstraint(['item_id'], ['inventory_items.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_notifications', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stock_notifications_item_id'), ['item_id'], unique=False)
        batch_op.create_index('ix_stock_notifications_unread', ['is_read', 'created_at'], unique=False)

    # ==========================================================================
    # 3. SALES
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('buyer_name', sa.String(length=255), nullable=True),
        sa.Column('buyer_phone', sa.String(length=32), nullable=True),
        sa.Column('payment_method', sa.String(length=16), nullable=False),
        sa.Column('total_amount_cents', sa.Integer(), nullable=False),
        sa.Column('profit_cents', sa.Integer(), nullable=False),
        sa.Column('sold_by_account_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['sold_by_account_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sales', schema=None) as batch_op:
        batch_op.create_index('ix_sales_created_at', ['created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_sales_payment_method'), ['payment_method'], unique=False)
        batch_op.create_index(batch_op.f('ix_sales_sold_by_account_id'), ['sold_by_account_id'], unique=False)

    op.create_table('sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents_at_sale', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents_at_sale', sa.Integer(), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_sale_lines_quantity_positive'),
        sa.ForeignKeyConstraint(['item_id'], ['inventory_items.id'], ),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sale_lines', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_sale_lines_sale_id'), ['sale_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_sale_lines_item_id'), ['item_id'], unique=False)

    # ==========================================================================
    # 4. APPOINTMENTS
    # ==========================================================================
    op.create_table('appointments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('reference', sa.String(length=32), nullable=False),
        sa.Column('patient_id', sa.Integer(), nullable=False),
        sa.Column('doctor_id', sa.Integer(), nullable=False),
        sa.Column('appointment_date', sa.Date(), nullable=False),
        sa.Column('appointment_time', sa.String(length=5), nullable=False),
        sa.Column('problem', sa.Text(), nullable=False),
        sa.Column('teeth', sa.JSON(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='booked'),
        sa.Column('payment_amount_cents', sa.Integer(), nullable=False),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('payment_method', sa.String(length=16), nullable=False, server_default='none'),
        sa.Column('payment_external_charge_id', sa.String(length=128), nullable=True),
        sa.Column('payment_receipt_url', sa.String(length=512), nullable=True),
        sa.Column('payment_transfer_id', sa.String(length=128), nullable=True),
        sa.Column('payment_transfer_status', sa.String(length=16), nullable=True),
        sa.Column('payment_transfer_error', sa.String(length=255), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('payment_amount_cents > 0', name='ck_appointments_amount_positive'),
        sa.ForeignKeyConstraint(['doctor_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['patient_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('reference'),
        sa.UniqueConstraint('payment_external_charge_id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('appointments', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_appointments_patient_id'), ['patient_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_appointments_doctor_id'), ['doctor_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_appointments_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_appointments_payment_status'), ['payment_status'], unique=False)
        batch_op.create_index('ix_appointments_doctor_date', ['doctor_id', 'appointment_date'], unique=False)
        batch_op.create_index('ix_appointments_doctor_status', ['doctor_id', 'status'], unique=False)

    # One active booking per doctor slot; cancelled rows free the slot.
    op.create_index(
        'uq_appointments_doctor_active_slot',
        'appointments',
        ['doctor_id', 'appointment_date', 'appointment_time'],
        unique=True,
        sqlite_where=sa.text("status != 'cancelled'"),
        postgresql_where=sa.text("status != 'cancelled'"),
    )

    op.create_table('treatments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('appointment_id', sa.Integer(), nullable=False),
        sa.Column('doctor_id', sa.Integer(), nullable=False),
        sa.Column('patient_id', sa.Integer(), nullable=False),
        sa.Column('treatment', sa.Text(), nullable=False),
        sa.Column('teeth', sa.JSON(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('treatment_date', sa.Date(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id'], ),
        sa.ForeignKeyConstraint(['doctor_id'], ['accounts.id'], ),
        sa.ForeignKeyConstraint(['patient_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('appointment_id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('treatments', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_treatments_doctor_id'), ['doctor_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_treatments_patient_id'), ['patient_id'], unique=False)

    op.create_table('payment_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('appointment_id', sa.Integer(), nullable=False),
        sa.Column('patient_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('method', sa.String(length=16), nullable=False),
        sa.Column('transaction_id', sa.String(length=128), nullable=True),
        sa.Column('receipt_url', sa.String(length=512), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id'], ),
        sa.ForeignKeyConstraint(['patient_id'], ['accounts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('appointment_id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('payment_records', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payment_records_patient_id'), ['patient_id'], unique=False)
        batch_op.create_index('ix_payment_records_created', ['created_at'], unique=False)


def downgrade():
    op.drop_table('payment_records')
    op.drop_table('treatments')
    op.drop_index('uq_appointments_doctor_active_slot', table_name='appointments')
    op.drop_table('appointments')
    op.drop_table('sale_lines')
    op.drop_table('sales')
    op.drop_table('stock_notifications')
    op.drop_table('inventory_items')
    op.drop_table('session_tokens')
    op.drop_table('doctor_profiles')
    op.drop_table('accounts')
