"""Initial schema: stock ledger, stock projection, commissions, settlements, wallets

Revision ID: 20261018_initial
Revises:
Create Date: 2026-10-18

This migration adds:
1. products (read-only master data for the ledger)
2. stock_movements (append-only) and stock_levels (projection)
3. wallets and wallet_transactions (balance >= 0, append-only journal)
4. commission_settlements (one row per settlement call, idempotency key)
5. commissions (unpaid -> paid, optimistic version counter)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. PRODUCTS
    # ==========================================================================
    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('salon_id', sa.String(length=64), nullable=True),
        sa.Column('sku', sa.String(length=64), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('unit_price', sa.Numeric(14, 2), nullable=True),
        sa.Column('tax_rate', sa.Numeric(5, 2), nullable=True),
        sa.Column('is_inventory_item', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('salon_id', 'sku', name='uq_products_salon_sku'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_products_salon_id', 'products', ['salon_id'])
    op.create_index('ix_products_salon_name', 'products', ['salon_id', 'name'])

    # ==========================================================================
    # 2. STOCK LEDGER + PROJECTION
    # ==========================================================================
    op.create_table('stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('direction', sa.String(length=8), nullable=False),
        sa.Column('quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('performed_by', sa.String(length=64), nullable=True),
        sa.Column('level_after', sa.Numeric(14, 3), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('quantity > 0', name='ck_stock_movements_quantity_positive'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'])
    op.create_index('ix_stock_movements_movement_type', 'stock_movements', ['movement_type'])
    op.create_index('ix_stock_movements_created_at', 'stock_movements', ['created_at'])
    op.create_index('ix_stock_movements_product_created', 'stock_movements', ['product_id', 'created_at', 'id'])

    op.create_table('stock_levels',
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('movement_count', sa.Integer(), nullable=False),
        sa.Column('last_movement_id', sa.Integer(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('product_id'),
    )

    # ==========================================================================
    # 3. WALLETS
    # ==========================================================================
    op.create_table('wallets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.String(length=64), nullable=False),
        sa.Column('balance', sa.Numeric(14, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('balance >= 0', name='ck_wallets_balance_non_negative'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('owner_id', name='uq_wallets_owner'),
        sqlite_autoincrement=True,
    )

    op.create_table('wallet_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('wallet_id', sa.Integer(), nullable=False),
        sa.Column('transaction_type', sa.String(length=16), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('balance_before', sa.Numeric(14, 2), nullable=False),
        sa.Column('balance_after', sa.Numeric(14, 2), nullable=False),
        sa.Column('reference_type', sa.String(length=64), nullable=True),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['wallet_id'], ['wallets.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_wallet_transactions_wallet_id', 'wallet_transactions', ['wallet_id'])
    op.create_index('ix_wallet_transactions_wallet_created', 'wallet_transactions', ['wallet_id', 'created_at'])
    op.create_index('ix_wallet_transactions_reference', 'wallet_transactions', ['reference_type', 'reference_id'])

    # ==========================================================================
    # 4. SETTLEMENTS
    # ==========================================================================
    op.create_table('commission_settlements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.String(length=64), nullable=False),
        sa.Column('payment_method', sa.String(length=32), nullable=False),
        sa.Column('payment_reference', sa.String(length=255), nullable=True),
        sa.Column('total_amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('commission_count', sa.Integer(), nullable=False),
        sa.Column('idempotency_key', sa.String(length=128), nullable=True),
        sa.Column('wallet_transaction_id', sa.Integer(), nullable=True),
        sa.Column('balance_after', sa.Numeric(14, 2), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['wallet_transaction_id'], ['wallet_transactions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key', name='uq_commission_settlements_idempotency_key'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_commission_settlements_owner_id', 'commission_settlements', ['owner_id'])

    # ==========================================================================
    # 5. COMMISSIONS
    # ==========================================================================
    op.create_table('commissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('employee_id', sa.String(length=64), nullable=False),
        sa.Column('salon_id', sa.String(length=64), nullable=True),
        sa.Column('sale_item_id', sa.String(length=64), nullable=True),
        sa.Column('appointment_id', sa.String(length=64), nullable=True),
        sa.Column('sale_amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('commission_rate', sa.Numeric(5, 2), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('paid', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payment_method', sa.String(length=32), nullable=True),
        sa.Column('payment_reference', sa.String(length=255), nullable=True),
        sa.Column('settlement_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['settlement_id'], ['commission_settlements.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_commissions_employee_id', 'commissions', ['employee_id'])
    op.create_index('ix_commissions_salon_id', 'commissions', ['salon_id'])
    op.create_index('ix_commissions_sale_item_id', 'commissions', ['sale_item_id'])
    op.create_index('ix_commissions_appointment_id', 'commissions', ['appointment_id'])
    op.create_index('ix_commissions_paid', 'commissions', ['paid'])
    op.create_index('ix_commissions_settlement_id', 'commissions', ['settlement_id'])
    op.create_index('ix_commissions_employee_paid', 'commissions', ['employee_id', 'paid'])
    op.create_index('ix_commissions_created', 'commissions', ['created_at'])


def downgrade():
    op.drop_table('commissions')
    op.drop_table('commission_settlements')
    op.drop_table('wallet_transactions')
    op.drop_table('wallets')
    op.drop_table('stock_levels')
    op.drop_table('stock_movements')
    op.drop_table('products')
