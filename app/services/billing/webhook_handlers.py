"""Per-event-type handlers for Stripe billing webhooks.

Each handler re-derives the full current subscription state (from the event
payload, or from Stripe for invoice events) and overwrites the stored row.
Nothing is applied as a delta, so redelivery and out-of-order delivery
converge on the same state.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, TypeVar

from app.config.plans import get_plan
from app.core.idempotency import IdempotencyKey
from app.core.retry import SleepFunc, retry_async
from app.models.subscription import BillingPeriod, SubscriptionSnapshot, SubscriptionStatus
from app.models.tenant import Tenant
from app.models.webhook_event import WebhookEventResult
from app.services.billing.store import BillingStore
from app.services.stripe_service import BillingProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Stripe statuses we store as-is
_KNOWN_STATUSES = {
    SubscriptionStatus.ACTIVE.value,
    SubscriptionStatus.TRIALING.value,
    SubscriptionStatus.PAST_DUE.value,
    SubscriptionStatus.CANCELED.value,
    SubscriptionStatus.INCOMPLETE.value,
}

_STATUS_ALIASES = {
    "unpaid": SubscriptionStatus.PAST_DUE.value,
    "incomplete_expired": SubscriptionStatus.CANCELED.value,
}

REFERRAL_CODE_METADATA_KEYS = ("referralCode", "referral_code")


@dataclass
class HandlerResult:
    """What a handler did with an event."""

    result: WebhookEventResult
    message: str

    @classmethod
    def success(cls, message: str) -> "HandlerResult":
        return cls(WebhookEventResult.SUCCESS, message)

    @classmethod
    def skipped(cls, message: str) -> "HandlerResult":
        return cls(WebhookEventResult.SKIPPED, message)


# ─────────────────────────────────────────────────────────────────────────────
# Payload mapping
# ─────────────────────────────────────────────────────────────────────────────


def normalize_status(status: str | None) -> str:
    """Map a Stripe subscription status onto the stored status set."""
    if status in _KNOWN_STATUSES:
        return status  # type: ignore[return-value]
    if status in _STATUS_ALIASES:
        return _STATUS_ALIASES[status]
    logger.warning(f"Unknown Stripe subscription status: {status}")
    return SubscriptionStatus.ERROR.value


def billing_period_from_interval(interval: str | None) -> str:
    if interval == "year":
        return BillingPeriod.YEARLY.value
    return BillingPeriod.MONTHLY.value


def _object_id(value: Any) -> str | None:
    """Stripe references are either an id string or an expanded object."""
    if isinstance(value, dict):
        return value.get("id")
    return value


def _timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=UTC)


def subscription_fields_from_stripe(subscription: dict[str, Any]) -> SubscriptionSnapshot:
    """Derive the stored subscription state from a Stripe subscription object."""
    items = (subscription.get("items") or {}).get("data") or []
    first_item = items[0] if items else {}
    price = first_item.get("price") or {}
    price_id = price.get("id")
    recurring = price.get("recurring") or {}

    plan = get_plan(price_id)
    plan_name = plan.name if plan else price.get("nickname")
    billing_period = (
        plan.billing_period if plan else billing_period_from_interval(recurring.get("interval"))
    )

    # Newer API versions moved the period onto subscription items
    period_end = subscription.get("current_period_end") or first_item.get("current_period_end")

    return SubscriptionSnapshot(
        stripe_subscription_id=subscription["id"],
        stripe_customer_id=_object_id(subscription.get("customer")) or "",
        status=normalize_status(subscription.get("status")),
        price_id=price_id,
        plan_name=plan_name,
        billing_period=billing_period,
        current_period_end=_timestamp(period_end),
    )


def invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    """Subscription referenced by an invoice (older and newer API shapes)."""
    subscription = _object_id(invoice.get("subscription"))
    if subscription:
        return subscription
    details = (invoice.get("parent") or {}).get("subscription_details") or {}
    return _object_id(details.get("subscription"))


def referral_code_from_customer(customer: dict[str, Any]) -> str | None:
    metadata = customer.get("metadata") or {}
    for key in REFERRAL_CODE_METADATA_KEYS:
        code = metadata.get(key)
        if code and str(code).strip():
            return str(code).strip()
    return None


# ─────────────────────────────────────────────────────────────────────────────
# Handlers
# ─────────────────────────────────────────────────────────────────────────────


class WebhookHandlers:
    """Handlers for the Stripe event types billing reconciliation consumes."""

    def __init__(
        self,
        store: BillingStore,
        provider: BillingProvider,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.5,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.store = store
        self.provider = provider
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self._sleep = sleep

    def route(self, event_type: str) -> Callable[[dict[str, Any]], Awaitable[HandlerResult]] | None:
        """Handler for an event type, or None when the type is not handled."""
        return {
            "customer.subscription.created": self.subscription_created,
            "customer.subscription.updated": self.subscription_updated,
            "customer.subscription.deleted": self.subscription_deleted,
            "invoice.payment_succeeded": self.payment_succeeded,
            "invoice.payment_failed": self.payment_failed,
        }.get(event_type)

    async def _retry(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        return await retry_async(
            operation,
            attempts=self.retry_attempts,
            base_delay=self.retry_base_delay,
            sleep=self._sleep,
            description=description,
        )

    async def _sync(
        self,
        tenant: Tenant,
        fields: SubscriptionSnapshot,
        key: IdempotencyKey,
    ) -> None:
        await self._retry(
            lambda: self.store.sync_subscription(tenant.id, fields, key),
            f"sync subscription {fields.stripe_subscription_id}",
        )

    async def _sync_from_payload(self, event: dict[str, Any]) -> HandlerResult:
        subscription = event["data"]["object"]
        fields = subscription_fields_from_stripe(subscription)

        tenant = await self.store.find_tenant_by_customer_id(fields.stripe_customer_id)
        if tenant is None:
            return HandlerResult.skipped(
                f"No tenant for customer {fields.stripe_customer_id}"
            )

        await self._sync(tenant, fields, IdempotencyKey.from_event(event["id"]))
        return HandlerResult.success(
            f"Subscription {fields.stripe_subscription_id} synced ({fields.status})"
        )

    async def subscription_created(self, event: dict[str, Any]) -> HandlerResult:
        """
        Sync a new subscription and credit any referral code on the customer.

        Referral bookkeeping never fails the event: the sync is the primary
        effect. Increments are keyed by the event id, so a redelivered
        event cannot credit the same referral twice.
        """
        await self._redeem_referral(event)
        return await self._sync_from_payload(event)

    async def subscription_updated(self, event: dict[str, Any]) -> HandlerResult:
        return await self._sync_from_payload(event)

    async def subscription_deleted(self, event: dict[str, Any]) -> HandlerResult:
        # Payload carries status=canceled; the row is kept for audit
        return await self._sync_from_payload(event)

    async def payment_succeeded(self, event: dict[str, Any]) -> HandlerResult:
        """Refresh the subscription from Stripe after a paid invoice."""
        invoice = event["data"]["object"]
        subscription_id = invoice_subscription_id(invoice)
        if not subscription_id:
            return HandlerResult.skipped(f"Invoice {invoice.get('id')} has no subscription")

        subscription = await self.provider.retrieve_subscription(subscription_id)
        fields = subscription_fields_from_stripe(subscription)

        tenant = await self.store.find_tenant_by_customer_id(fields.stripe_customer_id)
        if tenant is None:
            return HandlerResult.skipped(
                f"No tenant for customer {fields.stripe_customer_id}"
            )

        await self._sync(tenant, fields, IdempotencyKey.from_event(event["id"]))
        return HandlerResult.success(
            f"Subscription {subscription_id} synced after payment ({fields.status})"
        )

    async def payment_failed(self, event: dict[str, Any]) -> HandlerResult:
        """Move the subscription to past_due under a fresh transaction id."""
        invoice = event["data"]["object"]
        subscription_id = invoice_subscription_id(invoice)
        if not subscription_id:
            return HandlerResult.skipped(f"Invoice {invoice.get('id')} has no subscription")

        subscription = await self.provider.retrieve_subscription(subscription_id)
        customer_id = _object_id(subscription.get("customer")) or _object_id(
            invoice.get("customer")
        )
        if not customer_id:
            return HandlerResult.skipped(f"Subscription {subscription_id} has no customer")

        tenant = await self.store.find_tenant_by_customer_id(customer_id)
        if tenant is None:
            return HandlerResult.skipped(f"No tenant for customer {customer_id}")

        key = IdempotencyKey.new_transaction("payment_failed")
        await self._retry(
            lambda: self.store.mark_payment_failed(tenant.id, subscription_id, customer_id, key),
            f"mark payment failed {subscription_id}",
        )
        return HandlerResult.success(
            f"Payment failure recorded for subscription {subscription_id} ({key})"
        )

    async def _redeem_referral(self, event: dict[str, Any]) -> None:
        subscription = event["data"]["object"]
        customer_id = _object_id(subscription.get("customer"))
        if not customer_id:
            return

        try:
            customer = await self.provider.retrieve_customer(customer_id)
            code = referral_code_from_customer(customer)
            if not code:
                return

            referrer = await self.store.find_referral_by_code(code)
            if referrer is None:
                logger.warning(f"[webhook] Referral code {code} not found, no credit applied")
                return

            key = IdempotencyKey.from_event(event["id"])
            tenant = await self.store.find_tenant_by_customer_id(customer_id)
            if tenant is not None and tenant.id == referrer.tenant_id:
                logger.warning(f"[webhook] Tenant {tenant.id} used its own referral code")
                return

            credited = await self._retry(
                lambda: self.store.increment_referral_count(referrer.id, key),
                f"increment referral {referrer.id}",
            )
            logger.info(
                f"[webhook] Referral code {code}: referrer {referrer.tenant_id} "
                f"{'credited' if credited else 'already credited'}"
            )

            if tenant is None:
                return
            own = await self.store.find_referral_by_tenant_id(tenant.id)
            if own is not None:
                await self._retry(
                    lambda: self.store.increment_referral_count(own.id, key),
                    f"increment referral {own.id}",
                )
        except Exception as e:
            logger.error(
                f"[webhook] Referral redemption failed for customer {customer_id} "
                f"(event {event['id']}): {e}"
            )
