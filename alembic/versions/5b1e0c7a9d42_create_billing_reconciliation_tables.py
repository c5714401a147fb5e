"""create_billing_reconciliation_tables

Revision ID: 5b1e0c7a9d42
Revises:
Create Date: 2026-10-17 10:12:03.418207

Tenants, subscriptions, referral balances with their mutation markers,
and the webhook event ledger.
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5b1e0c7a9d42"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    # 1. Tenants
    op.create_table(
        "tenants",
        sa.Column("id", sa.Uuid(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("user_email", sa.String(length=255), nullable=False),
        sa.Column("stripe_customer_id", sa.String(length=255), nullable=True),
        sa.Column("is_archive", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_tenants_user_email_archive", "tenants", ["user_email", "is_archive"])
    op.create_index(
        "ix_tenants_stripe_customer_archive", "tenants", ["stripe_customer_id", "is_archive"]
    )

    # 2. Subscriptions (soft-terminated, never deleted)
    op.create_table(
        "tenant_subscriptions",
        sa.Column("id", sa.Uuid(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("tenant_id", sa.UUID(), nullable=False),
        sa.Column("stripe_subscription_id", sa.String(length=255), nullable=False),
        sa.Column("stripe_customer_id", sa.String(length=255), nullable=False),
        sa.Column("status", sa.String(length=20), server_default="incomplete", nullable=False),
        sa.Column("price_id", sa.String(length=255), nullable=True),
        sa.Column("plan_name", sa.String(length=100), nullable=True),
        sa.Column("billing_period", sa.String(length=10), server_default="monthly", nullable=False),
        sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "last_idempotency_key",
            sa.String(length=255),
            nullable=True,
            comment="Key of the last sync applied to this row",
        ),
        sa.Column("last_payment_failure_transaction_id", sa.String(length=255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("stripe_subscription_id"),
    )
    op.create_index(
        "ix_tenant_subscriptions_tenant_id", "tenant_subscriptions", ["tenant_id"]
    )
    op.create_index(
        "ix_tenant_subscriptions_stripe_customer_id",
        "tenant_subscriptions",
        ["stripe_customer_id"],
    )

    # 3. Referral balances
    op.create_table(
        "tenant_referrals",
        sa.Column("id", sa.Uuid(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("tenant_id", sa.UUID(), nullable=False),
        sa.Column("referral_code", sa.String(length=50), nullable=False),
        sa.Column(
            "referral_point",
            sa.Integer(),
            server_default=sa.text("0"),
            nullable=False,
            comment="Discount months remaining (never negative)",
        ),
        sa.Column("total_referral_count", sa.Integer(), server_default=sa.text("0"), nullable=True),
        sa.Column(
            "last_applied_month",
            sa.String(length=7),
            nullable=True,
            comment="YYYY-MM of the last discount applied",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("referral_point >= 0", name="ck_tenant_referrals_point_non_negative"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id"),
        sa.UniqueConstraint("referral_code"),
    )

    # 4. Referral mutation markers
    op.create_table(
        "referral_transactions",
        sa.Column("id", sa.Uuid(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("referral_id", sa.UUID(), nullable=False),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column("kind", sa.String(length=20), nullable=False),
        sa.Column("applied_month", sa.String(length=7), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["referral_id"], ["tenant_referrals.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "referral_id", "idempotency_key", name="uq_referral_transactions_referral_key"
        ),
    )
    op.create_index(
        "ix_referral_transactions_referral_id", "referral_transactions", ["referral_id"]
    )

    # 5. Webhook event ledger
    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Uuid(), server_default=sa.text("gen_random_uuid()"), nullable=False),
        sa.Column("event_id", sa.String(length=255), nullable=False),
        sa.Column("event_type", sa.String(length=100), nullable=False),
        sa.Column(
            "processing_result", sa.String(length=20), server_default="processing", nullable=False
        ),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id"),
    )
    op.create_index("ix_webhook_events_event_type", "webhook_events", ["event_type"])


def downgrade() -> None:
    op.drop_index("ix_webhook_events_event_type", table_name="webhook_events")
    op.drop_table("webhook_events")
    op.drop_index("ix_referral_transactions_referral_id", table_name="referral_transactions")
    op.drop_table("referral_transactions")
    op.drop_table("tenant_referrals")
    op.drop_index(
        "ix_tenant_subscriptions_stripe_customer_id", table_name="tenant_subscriptions"
    )
    op.drop_index("ix_tenant_subscriptions_tenant_id", table_name="tenant_subscriptions")
    op.drop_table("tenant_subscriptions")
    op.drop_index("ix_tenants_stripe_customer_archive", table_name="tenants")
    op.drop_index("ix_tenants_user_email_archive", table_name="tenants")
    op.drop_table("tenants")
