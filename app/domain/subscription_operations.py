"""Domain operations for TenantSubscription model."""

import logging
import uuid as uuid_pkg
from datetime import UTC, datetime

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.idempotency import IdempotencyKey
from app.models.subscription import SubscriptionSnapshot, SubscriptionStatus, TenantSubscription
from app.models.tenant import Tenant

logger = logging.getLogger(__name__)


class SubscriptionOperations:
    """Queries and state syncs for tenant subscriptions."""

    async def get_by_stripe_subscription_id(
        self,
        db: AsyncSession,
        stripe_subscription_id: str,
    ) -> TenantSubscription | None:
        """Get a subscription by Stripe subscription ID."""
        statement = select(TenantSubscription).where(
            TenantSubscription.stripe_subscription_id == stripe_subscription_id
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_by_customer_id(
        self,
        db: AsyncSession,
        customer_id: str,
    ) -> TenantSubscription | None:
        """Get the most recent subscription for a Stripe customer of an active tenant."""
        statement = (
            select(TenantSubscription)
            .join(Tenant, Tenant.id == TenantSubscription.tenant_id)
            .where(
                TenantSubscription.stripe_customer_id == customer_id,
                Tenant.is_archive.is_(False),
            )
            .order_by(TenantSubscription.created_at.desc())
            .limit(1)
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_current_by_email(
        self,
        db: AsyncSession,
        email: str,
    ) -> TenantSubscription | None:
        """Get the non-canceled subscription of the active tenant with this email."""
        statement = (
            select(TenantSubscription)
            .join(Tenant, Tenant.id == TenantSubscription.tenant_id)
            .where(
                func.lower(Tenant.user_email) == email.strip().lower(),
                Tenant.is_archive.is_(False),
                TenantSubscription.status != SubscriptionStatus.CANCELED.value,
            )
            .order_by(TenantSubscription.created_at.desc())
            .limit(1)
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def sync(
        self,
        db: AsyncSession,
        tenant_id: uuid_pkg.UUID,
        snapshot: SubscriptionSnapshot,
        key: IdempotencyKey,
    ) -> TenantSubscription:
        """
        Overwrite a subscription with the full state derived from Stripe.

        Upserts on stripe_subscription_id. Re-applying the same snapshot leaves
        the row unchanged, so redelivered events are harmless. When the synced
        subscription is live, any other live row of the tenant is superseded
        (marked canceled) to keep one current subscription per tenant.
        """
        subscription = await self.get_by_stripe_subscription_id(
            db, snapshot.stripe_subscription_id
        )
        if subscription is None:
            subscription = TenantSubscription(tenant_id=tenant_id, **snapshot.as_updates())
        else:
            subscription.tenant_id = tenant_id
            for field, value in snapshot.as_updates().items():
                setattr(subscription, field, value)
        subscription.last_idempotency_key = str(key)
        subscription.updated_at = datetime.now(UTC)
        db.add(subscription)

        if snapshot.status != SubscriptionStatus.CANCELED.value:
            superseded = await db.execute(
                update(TenantSubscription)
                .where(
                    TenantSubscription.tenant_id == tenant_id,
                    TenantSubscription.stripe_subscription_id != snapshot.stripe_subscription_id,
                    TenantSubscription.status != SubscriptionStatus.CANCELED.value,
                )
                .values(status=SubscriptionStatus.CANCELED.value, updated_at=datetime.now(UTC))
            )
            if superseded.rowcount:
                logger.info(
                    f"Superseded {superseded.rowcount} older subscription(s) "
                    f"for tenant {tenant_id}"
                )

        await db.flush()
        await db.refresh(subscription)
        return subscription

    async def mark_payment_failed(
        self,
        db: AsyncSession,
        tenant_id: uuid_pkg.UUID,
        stripe_subscription_id: str,
        customer_id: str,
        key: IdempotencyKey,
    ) -> TenantSubscription | None:
        """
        Move an active subscription to past_due after a failed payment.

        No-op when the subscription is unknown, belongs to another tenant or
        customer, or is no longer active (a later success or cancellation
        already moved it on).
        """
        subscription = await self.get_by_stripe_subscription_id(db, stripe_subscription_id)
        if (
            subscription is None
            or subscription.tenant_id != tenant_id
            or subscription.stripe_customer_id != customer_id
        ):
            logger.info(
                f"Payment failure for unknown subscription {stripe_subscription_id}, ignoring"
            )
            return None
        if subscription.status != SubscriptionStatus.ACTIVE.value:
            logger.info(
                f"Subscription {stripe_subscription_id} is {subscription.status}, "
                "payment failure not applied"
            )
            return subscription

        subscription.status = SubscriptionStatus.PAST_DUE.value
        subscription.last_payment_failure_transaction_id = str(key)
        subscription.updated_at = datetime.now(UTC)
        db.add(subscription)
        await db.flush()
        await db.refresh(subscription)
        return subscription


subscription_ops = SubscriptionOperations()
