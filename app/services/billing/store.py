"""Store boundary for billing reconciliation.

`BillingStore` is what the dispatcher and the referral discount processor
talk to. `SqlBillingStore` implements it over the domain operations, one
session and one commit per call, so each mutation is atomic on its own.
"""

import logging
import uuid as uuid_pkg
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import StoreError
from app.core.idempotency import IdempotencyKey
from app.domain.referral_operations import DecrementResult, referral_ops
from app.domain.subscription_operations import subscription_ops
from app.domain.tenant_operations import tenant_ops
from app.domain.webhook_event_operations import webhook_event_ops
from app.models.referral import TenantReferral
from app.models.subscription import SubscriptionSnapshot, TenantSubscription
from app.models.tenant import Tenant

logger = logging.getLogger(__name__)


@dataclass
class ProcessedCheck:
    """Ledger lookup result."""

    is_processed: bool
    result: str | None = None


class BillingStore(Protocol):
    """Query/mutation interface consumed by billing reconciliation."""

    async def find_tenant_by_customer_id(self, customer_id: str) -> Tenant | None: ...

    async def find_subscription_by_customer_id(
        self, customer_id: str
    ) -> TenantSubscription | None: ...

    async def find_subscription_by_email(self, email: str) -> TenantSubscription | None: ...

    async def sync_subscription(
        self, tenant_id: uuid_pkg.UUID, fields: SubscriptionSnapshot, key: IdempotencyKey
    ) -> None: ...

    async def mark_payment_failed(
        self,
        tenant_id: uuid_pkg.UUID,
        subscription_id: str,
        customer_id: str,
        key: IdempotencyKey,
    ) -> None: ...

    async def find_referral_by_customer_id(self, customer_id: str) -> TenantReferral | None: ...

    async def find_referral_by_tenant_id(
        self, tenant_id: uuid_pkg.UUID
    ) -> TenantReferral | None: ...

    async def find_referral_by_code(self, code: str) -> TenantReferral | None: ...

    async def increment_referral_count(
        self, referral_id: uuid_pkg.UUID, key: IdempotencyKey
    ) -> bool: ...

    async def decrease_referral_balance(
        self, email: str, key: IdempotencyKey, applied_month: str
    ) -> DecrementResult: ...

    async def get_eligible_tenant_emails(
        self,
        include_updated: bool = False,
        include_over_max: bool = False,
        now: datetime | None = None,
    ) -> list[str]: ...

    async def check_processed_event(self, event_id: str) -> ProcessedCheck: ...

    async def record_event(self, event_id: str, event_type: str, result: str) -> None: ...

    async def update_event_result(
        self, event_id: str, result: str, error_message: str | None = None
    ) -> None: ...


class SqlBillingStore:
    """BillingStore over PostgreSQL via the domain operations."""

    def __init__(
        self,
        session_maker: Callable[[], Any],
        max_referral_count: int | None = None,
        eligible_email_limit: int | None = None,
    ):
        self._session_maker = session_maker
        self.max_referral_count = (
            max_referral_count if max_referral_count is not None else settings.max_referral_count
        )
        self.eligible_email_limit = (
            eligible_email_limit
            if eligible_email_limit is not None
            else settings.referral_eligible_email_limit
        )

    def _session(self) -> AsyncSession:
        return self._session_maker()

    # ─────────────────────────────────────────────────────────────────────────────
    # Tenants & Subscriptions
    # ─────────────────────────────────────────────────────────────────────────────

    async def find_tenant_by_customer_id(self, customer_id: str) -> Tenant | None:
        async with self._session() as db:
            return await tenant_ops.get_by_customer_id(db, customer_id)

    async def find_subscription_by_customer_id(
        self, customer_id: str
    ) -> TenantSubscription | None:
        async with self._session() as db:
            return await subscription_ops.get_by_customer_id(db, customer_id)

    async def find_subscription_by_email(self, email: str) -> TenantSubscription | None:
        async with self._session() as db:
            return await subscription_ops.get_current_by_email(db, email)

    async def sync_subscription(
        self,
        tenant_id: uuid_pkg.UUID,
        fields: SubscriptionSnapshot,
        key: IdempotencyKey,
    ) -> None:
        async with self._session() as db:
            try:
                await subscription_ops.sync(db, tenant_id, fields, key)
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                raise StoreError(
                    f"Failed to sync subscription {fields.stripe_subscription_id}: {e}"
                ) from e

    async def mark_payment_failed(
        self,
        tenant_id: uuid_pkg.UUID,
        subscription_id: str,
        customer_id: str,
        key: IdempotencyKey,
    ) -> None:
        async with self._session() as db:
            try:
                await subscription_ops.mark_payment_failed(
                    db, tenant_id, subscription_id, customer_id, key
                )
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                raise StoreError(
                    f"Failed to mark payment failure on {subscription_id}: {e}"
                ) from e

    # ─────────────────────────────────────────────────────────────────────────────
    # Referrals
    # ─────────────────────────────────────────────────────────────────────────────

    async def find_referral_by_customer_id(self, customer_id: str) -> TenantReferral | None:
        async with self._session() as db:
            return await referral_ops.get_by_customer_id(db, customer_id)

    async def find_referral_by_tenant_id(self, tenant_id: uuid_pkg.UUID) -> TenantReferral | None:
        async with self._session() as db:
            return await referral_ops.get_by_tenant(db, tenant_id)

    async def find_referral_by_code(self, code: str) -> TenantReferral | None:
        async with self._session() as db:
            return await referral_ops.get_by_code(db, code)

    async def increment_referral_count(
        self,
        referral_id: uuid_pkg.UUID,
        key: IdempotencyKey,
    ) -> bool:
        async with self._session() as db:
            try:
                referral = await referral_ops.get(db, referral_id, for_update=True)
                if referral is None:
                    raise StoreError(f"Referral {referral_id} not found")
                applied = await referral_ops.increment(db, referral, key)
                await db.commit()
                return applied
            except IntegrityError:
                # A concurrent delivery inserted the same marker first
                await db.rollback()
                logger.info(f"Referral {referral_id} increment raced on {key}, already applied")
                return False
            except SQLAlchemyError as e:
                await db.rollback()
                raise StoreError(f"Failed to increment referral {referral_id}: {e}") from e

    async def decrease_referral_balance(
        self,
        email: str,
        key: IdempotencyKey,
        applied_month: str,
    ) -> DecrementResult:
        async with self._session() as db:
            try:
                result = await referral_ops.decrease_balance(db, email, key, applied_month)
                await db.commit()
                return result
            except IntegrityError:
                await db.rollback()
                return DecrementResult(
                    success=True,
                    already_processed=True,
                    message=f"Referral discount for {applied_month} already applied",
                )
            except SQLAlchemyError as e:
                await db.rollback()
                raise StoreError(f"Failed to update referral count: {e}") from e

    async def get_eligible_tenant_emails(
        self,
        include_updated: bool = False,
        include_over_max: bool = False,
        now: datetime | None = None,
    ) -> list[str]:
        async with self._session() as db:
            return await referral_ops.get_eligible_emails(
                db,
                max_referral_count=self.max_referral_count,
                include_updated=include_updated,
                include_over_max=include_over_max,
                limit=self.eligible_email_limit,
                now=now,
            )

    # ─────────────────────────────────────────────────────────────────────────────
    # Webhook event ledger
    # ─────────────────────────────────────────────────────────────────────────────

    async def check_processed_event(self, event_id: str) -> ProcessedCheck:
        async with self._session() as db:
            event = await webhook_event_ops.get_by_event_id(db, event_id)
        if event is None:
            return ProcessedCheck(is_processed=False)
        return ProcessedCheck(is_processed=event.is_terminal, result=event.processing_result)

    async def record_event(self, event_id: str, event_type: str, result: str) -> None:
        async with self._session() as db:
            await webhook_event_ops.upsert(db, event_id, event_type, result)
            await db.commit()

    async def update_event_result(
        self,
        event_id: str,
        result: str,
        error_message: str | None = None,
    ) -> None:
        async with self._session() as db:
            updated = await webhook_event_ops.set_result(db, event_id, result, error_message)
            await db.commit()
        if not updated:
            raise StoreError(f"Webhook event {event_id} not recorded")
