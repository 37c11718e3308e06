"""Initial rewards economy schema

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0a1b2c3d4e5f'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create accounts, wallet ledger, claim guards and VIP tables."""
    op.create_table(
        'accounts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('name', sa.String(200), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('total_points', sa.Integer(), nullable=False),
        sa.Column('total_cashback', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_earnings', sa.Numeric(12, 2), nullable=False),
        sa.Column('age_range', sa.String(20), nullable=True),
        sa.Column('gender', sa.String(20), nullable=True),
        sa.Column('location_enabled', sa.Boolean(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('total_points >= 0', name='ck_accounts_points_non_negative'),
        sa.CheckConstraint('total_cashback >= 0', name='ck_accounts_cashback_non_negative'),
        sa.CheckConstraint('total_earnings >= 0', name='ck_accounts_earnings_non_negative'),
        sa.PrimaryKeyConstraint('id', name='pk_accounts'),
    )

    op.create_table(
        'wallets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('balance', sa.Numeric(12, 2), nullable=False),
        sa.Column('pending_balance', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_earned', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_withdrawn', sa.Numeric(12, 2), nullable=False),
        sa.Column('minimum_withdrawal', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('last_transaction_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('balance >= 0', name='ck_wallets_balance_non_negative'),
        sa.CheckConstraint('pending_balance >= 0', name='ck_wallets_pending_non_negative'),
        sa.CheckConstraint('balance >= pending_balance', name='ck_wallets_balance_covers_pending'),
        sa.CheckConstraint('total_earned >= 0', name='ck_wallets_earned_non_negative'),
        sa.CheckConstraint('total_withdrawn >= 0', name='ck_wallets_withdrawn_non_negative'),
        sa.CheckConstraint('minimum_withdrawal >= 1', name='ck_wallets_minimum_withdrawal_floor'),
        sa.ForeignKeyConstraint(['user_id'], ['accounts.id'], name='fk_wallets_user_id_accounts'),
        sa.PrimaryKeyConstraint('id', name='pk_wallets'),
        sa.UniqueConstraint('user_id', name='uq_wallets_user_id'),
    )

    op.create_table(
        'wallet_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(10), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('reference_id', sa.String(64), nullable=False),
        sa.Column('source', sa.String(50), nullable=True),
        sa.Column('source_id', sa.String(100), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('settled_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('amount > 0', name='ck_wallet_transactions_amount_positive'),
        sa.CheckConstraint("type IN ('credit', 'debit')", name='ck_wallet_transactions_type_valid'),
        sa.CheckConstraint("status IN ('pending', 'completed', 'failed')", name='ck_wallet_transactions_status_valid'),
        sa.ForeignKeyConstraint(['user_id'], ['accounts.id'], name='fk_wallet_transactions_user_id_accounts'),
        sa.PrimaryKeyConstraint('id', name='pk_wallet_transactions'),
        sa.UniqueConstraint('reference_id', name='uq_wallet_transactions_reference_id'),
    )
    op.create_index('ix_wallet_transactions_user_id', 'wallet_transactions', ['user_id'])
    op.create_index('ix_wallet_transactions_user_created', 'wallet_transactions', ['user_id', 'created_at'])

    op.create_table(
        'reward_claims',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('idempotency_key', sa.String(150), nullable=False),
        sa.Column('source_type', sa.String(30), nullable=False),
        sa.Column('source_id', sa.String(100), nullable=True),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('cashback', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('transaction_reference', sa.String(64), nullable=True),
        sa.Column('description', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('settled_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['accounts.id'], name='fk_reward_claims_user_id_accounts'),
        sa.PrimaryKeyConstraint('id', name='pk_reward_claims'),
        sa.UniqueConstraint('user_id', 'idempotency_key', name='uq_reward_claims_user_key'),
    )

    op.create_table(
        'daily_usage',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('source_type', sa.String(30), nullable=False),
        sa.Column('source_id', sa.String(100), nullable=False),
        sa.Column('usage_date', sa.Date(), nullable=False),
        sa.Column('points_earned', sa.Integer(), nullable=False),
        sa.Column('cashback_earned', sa.Numeric(12, 2), nullable=False),
        sa.Column('claims', sa.Integer(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['accounts.id'], name='fk_daily_usage_user_id_accounts'),
        sa.PrimaryKeyConstraint('id', name='pk_daily_usage'),
        sa.UniqueConstraint('user_id', 'source_type', 'source_id', 'usage_date',
                            name='uq_daily_usage_user_source_date'),
    )

    op.create_table(
        'source_usage',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('source_type', sa.String(30), nullable=False),
        sa.Column('source_id', sa.String(100), nullable=False),
        sa.Column('purchase_amount', sa.Numeric(12, 2), nullable=True),
        sa.Column('used_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['accounts.id'], name='fk_source_usage_user_id_accounts'),
        sa.PrimaryKeyConstraint('id', name='pk_source_usage'),
        sa.UniqueConstraint('user_id', 'source_type', 'source_id', name='uq_source_usage_user_source'),
    )

    op.create_table(
        'daily_rewards',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('reward_date', sa.Date(), nullable=False),
        sa.Column('points', sa.Integer(), nullable=False),
        sa.Column('cashback', sa.Numeric(10, 2), nullable=False),
        sa.Column('streak', sa.Integer(), nullable=False),
        sa.Column('claimed_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['accounts.id'], name='fk_daily_rewards_user_id_accounts'),
        sa.PrimaryKeyConstraint('id', name='pk_daily_rewards'),
        sa.UniqueConstraint('user_id', 'reward_date', name='uq_daily_rewards_user_date'),
    )

    op.create_table(
        'reward_streaks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('current_streak', sa.Integer(), nullable=False),
        sa.Column('longest_streak', sa.Integer(), nullable=False),
        sa.Column('last_claim_date', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['user_id'], ['accounts.id'], name='fk_reward_streaks_user_id_accounts'),
        sa.PrimaryKeyConstraint('id', name='pk_reward_streaks'),
        sa.UniqueConstraint('user_id', name='uq_reward_streaks_user_id'),
    )

    op.create_table(
        'vip_memberships',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('plan', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('start_date', sa.DateTime(), nullable=False),
        sa.Column('end_date', sa.DateTime(), nullable=False),
        sa.Column('auto_renew', sa.Boolean(), nullable=True),
        sa.Column('multiplier', sa.Numeric(4, 2), nullable=False),
        sa.Column('price', sa.Numeric(10, 2), nullable=True),
        sa.Column('total_cashback_earned', sa.Numeric(12, 2), nullable=False),
        sa.Column('total_points_earned', sa.Integer(), nullable=False),
        sa.Column('challenges_completed', sa.Integer(), nullable=False),
        sa.Column('games_played', sa.Integer(), nullable=False),
        sa.Column('receipts_scanned', sa.Integer(), nullable=False),
        sa.Column('deals_used', sa.Integer(), nullable=False),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_by', sa.String(100), nullable=True),
        sa.Column('cancellation_reason', sa.String(500), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('multiplier >= 1', name='ck_vip_memberships_multiplier_floor'),
        sa.ForeignKeyConstraint(['user_id'], ['accounts.id'], name='fk_vip_memberships_user_id_accounts'),
        sa.PrimaryKeyConstraint('id', name='pk_vip_memberships'),
        sa.UniqueConstraint('user_id', name='uq_vip_memberships_user_id'),
    )
    op.create_index('ix_vip_memberships_status_end', 'vip_memberships', ['status', 'end_date'])


def downgrade():
    """Drop every rewards table."""
    op.drop_index('ix_vip_memberships_status_end', table_name='vip_memberships')
    op.drop_table('vip_memberships')
    op.drop_table('reward_streaks')
    op.drop_table('daily_rewards')
    op.drop_table('source_usage')
    op.drop_table('daily_usage')
    op.drop_table('reward_claims')
    op.drop_index('ix_wallet_transactions_user_created', table_name='wallet_transactions')
    op.drop_index('ix_wallet_transactions_user_id', table_name='wallet_transactions')
    op.drop_table('wallet_transactions')
    op.drop_table('wallets')
    op.drop_table('accounts')
