"""Domain operations for TenantReferral - redemption credits and monthly discounts."""

import logging
import uuid as uuid_pkg
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.idempotency import IdempotencyKey
from app.domain.tenant_operations import customer_tenant_filter
from app.models.referral import ReferralTransaction, ReferralTransactionKind, TenantReferral
from app.models.tenant import Tenant

logger = logging.getLogger(__name__)


@dataclass
class DecrementResult:
    """Outcome of consuming one referral month."""

    success: bool
    already_processed: bool = False
    message: str | None = None


def month_start(now: datetime | None = None) -> datetime:
    """First instant of the current calendar month (UTC)."""
    now = now or datetime.now(UTC)
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class ReferralOperations:
    """Referral balance lookups and keyed mutations.

    Every mutation writes a ReferralTransaction marker in the same flush as
    the balance change; a marker already present for the key means the
    mutation was applied before. Mutations run on a row loaded with
    SELECT ... FOR UPDATE, so concurrent increments and decrements of the
    same referral serialize instead of overwriting each other.
    """

    async def get(
        self,
        db: AsyncSession,
        id: uuid_pkg.UUID,
        for_update: bool = False,
    ) -> TenantReferral | None:
        statement = select(TenantReferral).where(TenantReferral.id == id)
        if for_update:
            statement = statement.with_for_update()
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_by_tenant(
        self,
        db: AsyncSession,
        tenant_id: uuid_pkg.UUID,
    ) -> TenantReferral | None:
        """Get the referral record of a tenant."""
        statement = select(TenantReferral).where(TenantReferral.tenant_id == tenant_id)
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_by_code(
        self,
        db: AsyncSession,
        code: str,
    ) -> TenantReferral | None:
        """Get the referral record owning a code (exact match), for active tenants only."""
        statement = (
            select(TenantReferral)
            .join(Tenant, Tenant.id == TenantReferral.tenant_id)
            .where(
                TenantReferral.referral_code == code.strip(),
                Tenant.is_archive.is_(False),
            )
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_by_customer_id(
        self,
        db: AsyncSession,
        customer_id: str,
    ) -> TenantReferral | None:
        """Get the referral record of the active tenant owning a Stripe customer."""
        statement = (
            select(TenantReferral)
            .join(Tenant, Tenant.id == TenantReferral.tenant_id)
            .where(customer_tenant_filter(customer_id), Tenant.is_archive.is_(False))
            .limit(1)
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def get_by_email(
        self,
        db: AsyncSession,
        email: str,
        for_update: bool = False,
    ) -> TenantReferral | None:
        """Get the referral record of the active tenant with this email."""
        statement = (
            select(TenantReferral)
            .join(Tenant, Tenant.id == TenantReferral.tenant_id)
            .where(
                func.lower(Tenant.user_email) == email.strip().lower(),
                Tenant.is_archive.is_(False),
            )
            .limit(1)
        )
        if for_update:
            statement = statement.with_for_update(of=TenantReferral)
        result = await db.execute(statement)
        return result.scalar_one_or_none()

    async def has_transaction(
        self,
        db: AsyncSession,
        referral_id: uuid_pkg.UUID,
        key: IdempotencyKey,
    ) -> bool:
        """Check whether a mutation with this key was already applied."""
        statement = select(ReferralTransaction.id).where(
            ReferralTransaction.referral_id == referral_id,
            ReferralTransaction.idempotency_key == str(key),
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none() is not None

    async def increment(
        self,
        db: AsyncSession,
        referral: TenantReferral,
        key: IdempotencyKey,
    ) -> bool:
        """
        Credit one referral: +1 balance, +1 lifetime count.

        `referral` must have been loaded with `get(..., for_update=True)` in
        the same transaction.

        Returns False without changes when the key was already applied.
        """
        if await self.has_transaction(db, referral.id, key):
            logger.info(f"Referral {referral.id} increment already applied for {key}")
            return False

        referral.referral_point = (referral.referral_point or 0) + 1
        referral.total_referral_count = (referral.total_referral_count or 0) + 1
        referral.updated_at = datetime.now(UTC)
        db.add(referral)
        db.add(
            ReferralTransaction(
                referral_id=referral.id,
                idempotency_key=str(key),
                kind=ReferralTransactionKind.INCREMENT.value,
            )
        )
        await db.flush()
        return True

    async def decrease_balance(
        self,
        db: AsyncSession,
        email: str,
        key: IdempotencyKey,
        applied_month: str,
    ) -> DecrementResult:
        """
        Consume one discount month for the tenant with this email.

        The balance never goes below zero. Repeating the call with the same
        key reports already_processed instead of decrementing again.
        """
        referral = await self.get_by_email(db, email, for_update=True)
        if referral is None:
            return DecrementResult(success=False, message="Referral record not found")

        if await self.has_transaction(db, referral.id, key):
            return DecrementResult(
                success=True,
                already_processed=True,
                message=f"Referral discount for {applied_month} already applied",
            )

        if (referral.referral_point or 0) <= 0:
            return DecrementResult(success=False, message="Referral count is 0 or negative")

        referral.referral_point -= 1
        referral.last_applied_month = applied_month
        referral.updated_at = datetime.now(UTC)
        db.add(referral)
        db.add(
            ReferralTransaction(
                referral_id=referral.id,
                idempotency_key=str(key),
                kind=ReferralTransactionKind.DECREMENT.value,
                applied_month=applied_month,
            )
        )
        await db.flush()
        return DecrementResult(
            success=True,
            message=f"Referral balance decreased to {referral.referral_point}",
        )

    async def get_eligible_emails(
        self,
        db: AsyncSession,
        max_referral_count: int,
        include_updated: bool = False,
        include_over_max: bool = False,
        limit: int = 500,
        now: datetime | None = None,
    ) -> list[str]:
        """
        Emails of active tenants owed a referral discount.

        By default excludes tenants at or over the lifetime maximum and
        tenants whose referral record was already touched this month.
        """
        statement = (
            select(Tenant.user_email)
            .join(TenantReferral, TenantReferral.tenant_id == Tenant.id)
            .where(
                TenantReferral.referral_point > 0,
                Tenant.is_archive.is_(False),
            )
        )
        if not include_over_max:
            statement = statement.where(
                or_(
                    TenantReferral.total_referral_count.is_(None),
                    TenantReferral.total_referral_count < max_referral_count,
                )
            )
        if not include_updated:
            statement = statement.where(
                or_(
                    TenantReferral.updated_at.is_(None),
                    TenantReferral.updated_at < month_start(now),
                )
            )
        statement = statement.order_by(Tenant.user_email).limit(limit)
        result = await db.execute(statement)
        return list(result.scalars().all())


referral_ops = ReferralOperations()
