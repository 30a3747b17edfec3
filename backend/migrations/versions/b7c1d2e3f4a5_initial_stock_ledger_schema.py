"""initial stock ledger schema

Revision ID: b7c1d2e3f4a5
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete stock ledger schema:
- users, session_tokens: accounts and bearer sessions
- products: product master with running balance and optimistic-lock version
- stock_transactions: append-only stock ledger
- weekly_stock_plans: planned weekly consumption per product
- low_stock_alerts: alerts with a partial unique index on open rows
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'b7c1d2e3f4a5'
down_revision = None
branch_labels = None
depends_on = None


QTY = sa.Numeric(precision=14, scale=3)


def upgrade():
    # ============================================================================
    # users / session_tokens
    # ============================================================================
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('first_name', sa.String(length=100), nullable=True),
        sa.Column('last_name', sa.String(length=100), nullable=True),
        sa.Column('roles', sa.JSON(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('last_login_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('username', name='uq_users_username'),
        sa.UniqueConstraint('email', name='uq_users_email'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_users_username', 'users', ['username'])

    op.create_table(
        'session_tokens',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('token_hash', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_used_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_revoked', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('revoked_reason', sa.String(length=255), nullable=True),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.Column('ip_address', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_session_tokens_user_id', 'session_tokens', ['user_id'])
    op.create_index('ix_session_tokens_token_hash', 'session_tokens', ['token_hash'], unique=True)
    op.create_index('ix_session_tokens_user_revoked', 'session_tokens', ['user_id', 'is_revoked'])

    # ============================================================================
    # products: current_stock is the running balance, version_id the CAS guard
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('unit', sa.String(length=16), nullable=False),
        sa.Column('opening_stock', QTY, nullable=False, server_default='0'),
        sa.Column('current_stock', QTY, nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_products_name'),
        sa.CheckConstraint('current_stock >= 0', name='ck_products_current_stock_non_negative'),
        sa.CheckConstraint('opening_stock >= 0', name='ck_products_opening_stock_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_active_name', 'products', ['is_active', 'name'])

    # ============================================================================
    # stock_transactions: append-only ledger
    # ============================================================================
    op.create_table(
        'stock_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('quantity', QTY, nullable=False),
        sa.Column('original_quantity', QTY, nullable=True),
        sa.Column('original_unit', sa.String(length=16), nullable=True),
        sa.Column('previous_stock', QTY, nullable=False),
        sa.Column('new_stock', QTY, nullable=False),
        sa.Column('transaction_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('po_number', sa.String(length=100), nullable=True),
        sa.Column('so_number', sa.String(length=100), nullable=True),
        sa.Column('remarks', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity > 0', name='ck_stocktx_quantity_positive'),
        sa.CheckConstraint('new_stock >= 0', name='ck_stocktx_new_stock_non_negative'),
        sa.CheckConstraint("type IN ('stock_in', 'stock_out')", name='ck_stocktx_type'),
        sa.CheckConstraint(
            "(type = 'stock_in' AND ABS(new_stock - (previous_stock + quantity)) < 0.0005) OR "
            "(type = 'stock_out' AND ABS(new_stock - (previous_stock - quantity)) < 0.0005)",
            name='ck_stocktx_balance_chain',
        ),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_transactions_product_id', 'stock_transactions', ['product_id'])
    op.create_index('ix_stock_transactions_user_id', 'stock_transactions', ['user_id'])
    op.create_index('ix_stock_transactions_type', 'stock_transactions', ['type'])
    op.create_index('ix_stock_transactions_transaction_date', 'stock_transactions', ['transaction_date'])
    op.create_index(
        'ix_stocktx_product_type_date',
        'stock_transactions',
        ['product_id', 'type', 'transaction_date'],
    )

    # ============================================================================
    # weekly_stock_plans
    # ============================================================================
    op.create_table(
        'weekly_stock_plans',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('week_start_date', sa.Date(), nullable=False),
        sa.Column('week_end_date', sa.Date(), nullable=False),
        sa.Column('planned_quantity', QTY, nullable=False),
        sa.Column('original_planned_quantity', QTY, nullable=True),
        sa.Column('original_unit', sa.String(length=16), nullable=True),
        sa.Column('present_stock', QTY, nullable=False),
        sa.Column('previous_week_stock', QTY, nullable=False),
        sa.Column('unit', sa.String(length=16), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('product_id', 'week_start_date', 'week_end_date',
                            name='uq_weekly_plans_product_week'),
        sa.CheckConstraint('planned_quantity >= 0', name='ck_weekly_plans_planned_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_weekly_stock_plans_product_id', 'weekly_stock_plans', ['product_id'])
    op.create_index('ix_weekly_plans_week', 'weekly_stock_plans', ['week_start_date', 'week_end_date'])

    # ============================================================================
    # low_stock_alerts: at most one open alert per (product, plan)
    # ============================================================================
    op.create_table(
        'low_stock_alerts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('weekly_plan_id', sa.Integer(), nullable=False),
        sa.Column('current_quantity', QTY, nullable=False),
        sa.Column('planned_quantity', QTY, nullable=False),
        sa.Column('alert_level', sa.String(length=16), nullable=False, server_default='low'),
        sa.Column('is_resolved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('alert_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_by_user_id', sa.Integer(), nullable=True),
        sa.Column('resolution', sa.String(length=16), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.ForeignKeyConstraint(['weekly_plan_id'], ['weekly_stock_plans.id']),
        sa.ForeignKeyConstraint(['resolved_by_user_id'], ['users.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("alert_level IN ('low', 'critical')", name='ck_low_stock_alerts_level'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_low_stock_alerts_product_id', 'low_stock_alerts', ['product_id'])
    op.create_index('ix_low_stock_alerts_weekly_plan_id', 'low_stock_alerts', ['weekly_plan_id'])
    op.create_index('ix_low_stock_alerts_resolved_date', 'low_stock_alerts', ['is_resolved', 'alert_date'])
    op.create_index(
        'uq_low_stock_alerts_open',
        'low_stock_alerts',
        ['product_id', 'weekly_plan_id'],
        unique=True,
        postgresql_where=sa.text('is_resolved = false'),
        sqlite_where=sa.text('is_resolved = 0'),
    )


def downgrade():
    """Drop all tables (destructive operation)."""
    op.drop_table('low_stock_alerts')
    op.drop_table('weekly_stock_plans')
    op.drop_table('stock_transactions')
    op.drop_table('products')
    op.drop_table('session_tokens')
    op.drop_table('users')
