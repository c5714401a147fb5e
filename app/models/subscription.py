"""Subscription model - a tenant's current billing relationship with Stripe."""

import uuid as uuid_pkg
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import Column, DateTime, ForeignKey, String, text
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlmodel import Field, SQLModel


class SubscriptionStatus(str, Enum):
    """Subscription lifecycle states."""

    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    ERROR = "error"  # Stripe reported a status we don't recognise


class BillingPeriod(str, Enum):
    """Billing interval of the subscribed price."""

    MONTHLY = "monthly"
    YEARLY = "yearly"


# Statuses for which a referral discount may be applied
DISCOUNTABLE_STATUSES = frozenset(
    {
        SubscriptionStatus.ACTIVE.value,
        SubscriptionStatus.TRIALING.value,
        SubscriptionStatus.PAST_DUE.value,
    }
)


class TenantSubscription(SQLModel, table=True):
    """
    Tenant subscription - mirror of the Stripe subscription.

    Every webhook sync overwrites the full state derived from Stripe, so
    applying the same event twice (or events out of order, each carrying
    full current state) converges on the same row.

    Never hard-deleted: customer.subscription.deleted sets status=canceled.
    """

    __tablename__ = "tenant_subscriptions"

    id: uuid_pkg.UUID = Field(
        default_factory=uuid_pkg.uuid4,
        primary_key=True,
        nullable=False,
        sa_column_kwargs={"server_default": text("gen_random_uuid()")},
    )
    tenant_id: uuid_pkg.UUID = Field(
        sa_column=Column(
            PG_UUID(as_uuid=True),
            ForeignKey("tenants.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )

    # Stripe references
    stripe_subscription_id: str = Field(
        sa_column=Column(String(255), nullable=False, unique=True),
    )
    stripe_customer_id: str = Field(max_length=255, nullable=False, index=True)

    # Plan info
    status: str = Field(
        default=SubscriptionStatus.INCOMPLETE.value,
        sa_column=Column(
            String(20),
            nullable=False,
            server_default=SubscriptionStatus.INCOMPLETE.value,
        ),
    )
    price_id: str | None = Field(default=None, max_length=255, nullable=True)
    plan_name: str | None = Field(default=None, max_length=100, nullable=True)
    billing_period: str = Field(
        default=BillingPeriod.MONTHLY.value,
        sa_column=Column(
            String(10),
            nullable=False,
            server_default=BillingPeriod.MONTHLY.value,
        ),
    )
    current_period_end: datetime | None = Field(  # type: ignore[call-overload]
        default=None, nullable=True, sa_type=DateTime(timezone=True)
    )

    # Audit
    last_idempotency_key: str | None = Field(
        default=None,
        max_length=255,
        nullable=True,
        sa_column_kwargs={"comment": "Key of the last sync applied to this row"},
    )
    last_payment_failure_transaction_id: str | None = Field(
        default=None,
        max_length=255,
        nullable=True,
    )

    # Timestamps
    created_at: datetime = Field(  # type: ignore[call-overload]
        default_factory=lambda: datetime.now(UTC),
        nullable=False,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"server_default": text("now()")},
    )
    updated_at: datetime | None = Field(  # type: ignore[call-overload]
        default=None,
        sa_type=DateTime(timezone=True),
        sa_column_kwargs={"onupdate": text("now()")},
    )

    @property
    def is_canceled(self) -> bool:
        return self.status == SubscriptionStatus.CANCELED.value


class SubscriptionSnapshot(SQLModel):
    """Full subscription state derived from Stripe, written by a sync."""

    stripe_subscription_id: str
    stripe_customer_id: str
    status: str
    price_id: str | None = None
    plan_name: str | None = None
    billing_period: str = BillingPeriod.MONTHLY.value
    current_period_end: datetime | None = None

    def as_updates(self) -> dict[str, Any]:
        return self.model_dump()
