"""Seed default pricing plans

Revision ID: 002_seed_plans
Revises: 001_billing_ledger
Create Date: 2026-10-17
"""
from alembic import op
from sqlalchemy.sql import text

# revision identifiers
revision = '002_seed_plans'
down_revision = '001_billing_ledger'
branch_labels = None
depends_on = None

PLANS = [
    # code, display_name, price, max_products
    ('BASIC', 'Basico', 12999, 10),
    ('PREMIUM', 'Premium', 16999, 50),
    ('ELITE', 'Elite', 21999, None),
]


def upgrade():
    """Insert the plan catalog, leaving existing codes untouched"""
    conn = op.get_bind()
    for code, display_name, price, max_products in PLANS:
        exists = conn.execute(
            text("SELECT 1 FROM plans WHERE code = :code"), {"code": code}
        ).first()
        if exists:
            continue
        conn.execute(
            text("""
                INSERT INTO plans (code, display_name, price, currency, max_products, is_active)
                VALUES (:code, :display_name, :price, 'ARS', :max_products, true)
            """),
            {
                "code": code,
                "display_name": display_name,
                "price": price,
                "max_products": max_products,
            },
        )


def downgrade():
    """Remove seeded plans that no subscription references"""
    conn = op.get_bind()
    conn.execute(text("""
        DELETE FROM plans
        WHERE code IN ('BASIC', 'PREMIUM', 'ELITE')
          AND id NOT IN (SELECT plan_id FROM subscriptions)
    """))
