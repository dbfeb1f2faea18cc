"""Cost layer ledger: stores, products, inventory, cost layers, sales, returns

Revision ID: 20261018_ledger
Revises:
Create Date: 2026-10-18

This migration adds:
1. stores, products (FK targets)
2. inventory_records (aggregates) and inventory_cost_layers (the ledger)
3. sales, sale_lines (with per-line cost allocations)
4. returns, return_lines
5. held_transactions
6. master_ledger_events, document_sequences
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_ledger'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. STORES / PRODUCTS
    # ==========================================================================
    op.create_table('stores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_stores_code'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_stores_code', 'stores', ['code'], unique=False)

    op.create_table('products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'sku', name='uq_products_store_sku'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_products_store_id', 'products', ['store_id'], unique=False)

    # ==========================================================================
    # 2. INVENTORY AGGREGATES AND COST LAYERS
    # ==========================================================================
    op.create_table('inventory_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('avg_cost', sa.Numeric(12, 4), nullable=False),
        sa.Column('total_cost_value', sa.Numeric(16, 4), nullable=False),
        sa.Column('last_cost_update', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'product_id', name='uq_inventory_store_product'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_inventory_records_store_id', 'inventory_records', ['store_id'], unique=False)
    op.create_index('ix_inventory_records_product_id', 'inventory_records', ['product_id'], unique=False)

    op.create_table('inventory_cost_layers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity_remaining', sa.Numeric(14, 3), nullable=False),
        sa.Column('quantity_received', sa.Numeric(14, 3), nullable=False),
        sa.Column('unit_cost', sa.Numeric(12, 4), nullable=False),
        sa.Column('source', sa.String(length=64), nullable=False),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('quantity_remaining >= 0', name='ck_cost_layers_qty_nonneg'),
        sa.CheckConstraint('unit_cost >= 0', name='ck_cost_layers_cost_nonneg'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_inventory_cost_layers_store_id', 'inventory_cost_layers', ['store_id'], unique=False)
    op.create_index('ix_inventory_cost_layers_product_id', 'inventory_cost_layers', ['product_id'], unique=False)
    op.create_index('ix_inventory_cost_layers_source', 'inventory_cost_layers', ['source'], unique=False)
    op.create_index(
        'ix_cost_layers_store_product_created',
        'inventory_cost_layers',
        ['store_id', 'product_id', 'created_at'],
        unique=False,
    )

    # ==========================================================================
    # 3. SALES
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('document_number', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=24), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('subtotal', sa.Numeric(14, 2), nullable=False),
        sa.Column('total_cogs', sa.Numeric(16, 4), nullable=False),
        sa.Column('idempotency_key', sa.String(length=128), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'document_number', name='uq_sales_store_docnum'),
        sa.UniqueConstraint('idempotency_key', name='uq_sales_idempotency_key'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sales_store_id', 'sales', ['store_id'], unique=False)
    op.create_index('ix_sales_status', 'sales', ['status'], unique=False)
    op.create_index('ix_sales_store_status_created', 'sales', ['store_id', 'status', 'created_at'], unique=False)

    op.create_table('sale_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('line_number', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('unit_price', sa.Numeric(14, 2), nullable=False),
        sa.Column('line_total', sa.Numeric(14, 2), nullable=False),
        sa.Column('cogs', sa.Numeric(16, 4), nullable=False),
        sa.Column('cost_allocations', sa.JSON(), nullable=False),
        sa.Column('shortfall_quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('returned_quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('refunded_amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_id', 'line_number', name='uq_sale_lines_sale_line'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_sale_lines_sale_id', 'sale_lines', ['sale_id'], unique=False)
    op.create_index('ix_sale_lines_product_id', 'sale_lines', ['product_id'], unique=False)

    # ==========================================================================
    # 4. RETURNS
    # ==========================================================================
    op.create_table('returns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('document_number', sa.String(length=64), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('refund_type', sa.String(length=16), nullable=False),
        sa.Column('total_refund', sa.Numeric(14, 2), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('committed_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'document_number', name='uq_returns_store_docnum'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_returns_store_id', 'returns', ['store_id'], unique=False)
    op.create_index('ix_returns_sale_id', 'returns', ['sale_id'], unique=False)
    op.create_index('ix_returns_status', 'returns', ['status'], unique=False)
    op.create_index('ix_returns_created_at', 'returns', ['created_at'], unique=False)
    op.create_index('ix_returns_store_status_created', 'returns', ['store_id', 'status', 'created_at'], unique=False)

    op.create_table('return_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('return_id', sa.Integer(), nullable=False),
        sa.Column('sale_line_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Numeric(14, 3), nullable=False),
        sa.Column('restock_action', sa.String(length=16), nullable=False),
        sa.Column('refund_type', sa.String(length=16), nullable=False),
        sa.Column('refund_amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('restored_cost', sa.Numeric(16, 4), nullable=False),
        sa.Column('restored_layer_ids', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['return_id'], ['returns.id']),
        sa.ForeignKeyConstraint(['sale_line_id'], ['sale_lines.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_return_lines_return_id', 'return_lines', ['return_id'], unique=False)
    op.create_index('ix_return_lines_sale_line_id', 'return_lines', ['sale_line_id'], unique=False)

    # ==========================================================================
    # 5. HELD TRANSACTIONS
    # ==========================================================================
    op.create_table('held_transactions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('items', sa.JSON(), nullable=False),
        sa.Column('payment', sa.JSON(), nullable=True),
        sa.Column('loyalty', sa.JSON(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_held_transactions_store_id', 'held_transactions', ['store_id'], unique=False)
    op.create_index('ix_held_transactions_store_created', 'held_transactions', ['store_id', 'created_at'], unique=False)

    # ==========================================================================
    # 6. MASTER LEDGER / DOCUMENT SEQUENCES
    # ==========================================================================
    op.create_table('master_ledger_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('event_category', sa.String(length=32), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('sale_id', sa.Integer(), nullable=True),
        sa.Column('return_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id']),
        sa.ForeignKeyConstraint(['return_id'], ['returns.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True,
    )
    for column in ('store_id', 'event_type', 'event_category', 'entity_type', 'entity_id',
                   'actor_user_id', 'product_id', 'sale_id', 'return_id', 'occurred_at'):
        op.create_index(f'ix_master_ledger_events_{column}', 'master_ledger_events', [column], unique=False)
    op.create_index('ix_master_ledger_store_occurred', 'master_ledger_events', ['store_id', 'occurred_at'], unique=False)

    op.create_table('document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), server_default='1', nullable=False),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'document_type', name='uq_doc_sequences_store_type'),
        sqlite_autoincrement=True,
    )
    op.create_index('ix_document_sequences_store_id', 'document_sequences', ['store_id'], unique=False)
    op.create_index('ix_document_sequences_document_type', 'document_sequences', ['document_type'], unique=False)


def downgrade():
    op.drop_table('document_sequences')
    op.drop_table('master_ledger_events')
    op.drop_table('held_transactions')
    op.drop_table('return_lines')
    op.drop_table('returns')
    op.drop_table('sale_lines')
    op.drop_table('sales')
    op.drop_table('inventory_cost_layers')
    op.drop_table('inventory_records')
    op.drop_table('products')
    op.drop_table('stores')
