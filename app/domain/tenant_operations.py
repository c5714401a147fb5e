"""Domain operations for Tenant model."""

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.subscription import TenantSubscription
from app.models.tenant import Tenant


def customer_tenant_filter(customer_id: str):
    """
    WHERE clause matching the tenant that owns a Stripe customer.

    The customer id lives on the tenant once checkout completes, but the
    first subscription webhook can arrive before that write, so the
    subscription table is consulted too.
    """
    return or_(
        Tenant.stripe_customer_id == customer_id,
        Tenant.id.in_(
            select(TenantSubscription.tenant_id).where(
                TenantSubscription.stripe_customer_id == customer_id
            )
        ),
    )


class TenantOperations:
    """Lookups for tenants. Archived tenants are never returned."""

    async def get_by_customer_id(
        self,
        db: AsyncSession,
        customer_id: str,
    ) -> Tenant | None:
        """Get the active tenant owning a Stripe customer."""
        statement = (
            select(Tenant)
            .where(customer_tenant_filter(customer_id), Tenant.is_archive.is_(False))
            .order_by(Tenant.created_at.desc())
            .limit(1)
        )
        result = await db.execute(statement)
        return result.scalar_one_or_none()


tenant_ops = TenantOperations()
