"""Create billing and affiliate ledger tables

Revision ID: 001_billing_ledger
Revises:
Create Date: 2026-10-17

Tables:
- plans, businesses, products
- subscriptions (at most one PENDING_PAYMENT row per business), payments
- affiliates, affiliate_payouts, affiliate_sales
- mirror_outbox
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001_billing_ledger'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create ledger tables"""

    # ====================
    # PLANS TABLE
    # ====================
    op.create_table(
        'plans',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('code', sa.String(30), unique=True, nullable=False),
        sa.Column('display_name', sa.String(100), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), server_default='ARS', nullable=False),
        sa.Column('max_products', sa.Integer, nullable=True),
        sa.Column('is_active', sa.Boolean, server_default=sa.true(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_plans_code', 'plans', ['code'])

    # ====================
    # AFFILIATES TABLE
    # ====================
    op.create_table(
        'affiliates',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('user_id', sa.Integer, unique=True, nullable=False),
        sa.Column('ref_code', sa.String(20), unique=True, nullable=False),
        sa.Column('display_name', sa.String(200), nullable=True),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('commission_rate', sa.Numeric(5, 4), server_default='0.25', nullable=False),
        sa.Column('is_active', sa.Boolean, server_default=sa.true(), nullable=False),
        sa.Column('points_confirmed', sa.Integer, server_default='0', nullable=False),
        sa.Column('points_debt', sa.Integer, server_default='0', nullable=False),
        sa.Column('total_commission_earned', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('total_commission_paid', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('negative_balance', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_affiliates_ref_code', 'affiliates', ['ref_code'])

    # ====================
    # BUSINESSES / PRODUCTS
    # ====================
    op.create_table(
        'businesses',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('owner_email', sa.String(255), nullable=True),
        sa.Column('has_completed_onboarding', sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column('onboarding_step', sa.String(30), server_default='plan', nullable=False),
        sa.Column('plan_id', sa.Integer, nullable=True),
        sa.Column('affiliate_id', sa.Integer, nullable=True),
        sa.Column('referred_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['plan_id'], ['plans.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['affiliate_id'], ['affiliates.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_businesses_affiliate_id', 'businesses', ['affiliate_id'])

    op.create_table(
        'products',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('business_id', sa.Integer, nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('price', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('is_active', sa.Boolean, server_default=sa.true(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_products_business_id', 'products', ['business_id'])

    # ====================
    # SUBSCRIPTIONS / PAYMENTS
    # ====================
    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('business_id', sa.Integer, nullable=False),
        sa.Column('plan_id', sa.Integer, nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('status', sa.String(30), server_default='PENDING_PAYMENT', nullable=False),
        sa.Column('last_provider_status', sa.String(50), nullable=True),
        sa.Column('payment_provider', sa.String(30), server_default='mercadopago', nullable=False),
        sa.Column('provider_preference_id', sa.String(100), nullable=True),
        sa.Column('provider_payment_id', sa.String(100), nullable=True),
        sa.Column('external_reference', sa.String(200), nullable=True),
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['plan_id'], ['plans.id']),
    )
    op.create_index('ix_subscriptions_business_id', 'subscriptions', ['business_id'])
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])
    op.create_index('ix_subscriptions_external_reference', 'subscriptions', ['external_reference'])
    op.create_index(
        'uq_subscriptions_one_pending_per_business',
        'subscriptions',
        ['business_id'],
        unique=True,
        postgresql_where=sa.text("status = 'PENDING_PAYMENT'"),
        sqlite_where=sa.text("status = 'PENDING_PAYMENT'"),
    )

    op.create_table(
        'payments',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('subscription_id', sa.Integer, nullable=False),
        sa.Column('provider', sa.String(30), server_default='mercadopago', nullable=False),
        sa.Column('provider_payment_id', sa.String(100), unique=True, nullable=True),
        sa.Column('provider_preference_id', sa.String(100), nullable=True),
        sa.Column('merchant_order_id', sa.String(100), nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), server_default='ARS', nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('checkout_url', sa.String(500), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_payments_subscription_id', 'payments', ['subscription_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])

    # ====================
    # AFFILIATE PAYOUTS / SALES
    # ====================
    op.create_table(
        'affiliate_payouts',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('affiliate_id', sa.Integer, nullable=False),
        sa.Column('period_start', sa.Date, nullable=False),
        sa.Column('period_end', sa.Date, nullable=False),
        sa.Column('approved_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('debt_applied', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('amount_paid', sa.Numeric(12, 2), nullable=False),
        sa.Column('method', sa.String(50), server_default='transfer', nullable=False),
        sa.Column('note', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['affiliate_id'], ['affiliates.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_affiliate_payouts_affiliate_id', 'affiliate_payouts', ['affiliate_id'])
    op.create_index('ix_affiliate_payouts_created', 'affiliate_payouts', ['created_at'])

    op.create_table(
        'affiliate_sales',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('affiliate_id', sa.Integer, nullable=False),
        sa.Column('subscription_id', sa.Integer, unique=True, nullable=False),
        sa.Column('business_id', sa.Integer, nullable=False),
        sa.Column('plan_id', sa.Integer, nullable=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('commission_rate', sa.Numeric(5, 4), nullable=False),
        sa.Column('commission_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('points_earned', sa.Integer, server_default='0', nullable=False),
        sa.Column('status', sa.String(20), server_default='PENDING', nullable=False),
        sa.Column('payout_id', sa.Integer, nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reviewed_by', sa.String(100), nullable=True),
        sa.Column('review_note', sa.Text, nullable=True),
        sa.Column('reversed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reverse_note', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(['affiliate_id'], ['affiliates.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['business_id'], ['businesses.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['plan_id'], ['plans.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['payout_id'], ['affiliate_payouts.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_affiliate_sales_affiliate_id', 'affiliate_sales', ['affiliate_id'])
    op.create_index('ix_affiliate_sales_payout_id', 'affiliate_sales', ['payout_id'])
    op.create_index('ix_affiliate_sales_status', 'affiliate_sales', ['status'])
    op.create_index('ix_affiliate_sales_created', 'affiliate_sales', ['created_at'])

    # ====================
    # MIRROR OUTBOX
    # ====================
    op.create_table(
        'mirror_outbox',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('table_name', sa.String(64), nullable=False),
        sa.Column('row_id', sa.Integer, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('drained_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('attempts', sa.Integer, server_default='0', nullable=False),
        sa.Column('last_error', sa.String(500), nullable=True),
    )
    op.create_index('ix_mirror_outbox_pending', 'mirror_outbox', ['drained_at', 'created_at'])


def downgrade():
    """Drop ledger tables"""
    op.drop_table('mirror_outbox')
    op.drop_table('affiliate_sales')
    op.drop_table('affiliate_payouts')
    op.drop_table('payments')
    op.drop_index('uq_subscriptions_one_pending_per_business', table_name='subscriptions')
    op.drop_table('subscriptions')
    op.drop_table('products')
    op.drop_table('businesses')
    op.drop_table('affiliates')
    op.drop_table('plans')
