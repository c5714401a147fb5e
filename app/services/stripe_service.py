"""Stripe client for billing reconciliation.

Wraps the Stripe SDK's async API behind a small interface so the webhook
dispatcher and the referral discount processor can be handed a fake in
tests. Every call is bounded by a timeout and Stripe failures surface as
ProviderError with a retryable flag.
"""

import logging
from collections.abc import Awaitable
from typing import Any, Protocol, TypeVar

import stripe
from stripe import StripeError

from app.config import settings
from app.core.exceptions import ProviderError
from app.core.retry import with_timeout

logger = logging.getLogger(__name__)

T = TypeVar("T")


class BillingProvider(Protocol):
    """The Stripe operations used by reconciliation."""

    async def retrieve_customer(self, customer_id: str) -> dict[str, Any]: ...

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]: ...

    async def apply_coupon_to_subscription(
        self, subscription_id: str, coupon_id: str
    ) -> dict[str, Any]: ...

    async def cancel_subscription(self, subscription_id: str) -> dict[str, Any]: ...

    async def create_coupon(
        self,
        coupon_id: str,
        amount_off: int,
        currency: str,
        name: str,
        duration: str = "once",
        metadata: dict[str, str] | None = None,
    ) -> dict[str, Any]: ...

    async def delete_coupon(self, coupon_id: str) -> None: ...

    async def retrieve_upcoming_invoice(self, customer_id: str) -> dict[str, Any]: ...

    def construct_webhook_event(self, payload: bytes, signature: str) -> dict[str, Any]: ...


def to_plain(obj: Any) -> dict[str, Any]:
    """Convert a StripeObject (or plain mapping) to a plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def is_retryable_stripe_error(error: StripeError) -> bool:
    """Network failures, rate limits and 5xx responses are worth retrying."""
    if isinstance(error, (stripe.APIConnectionError, stripe.RateLimitError)):
        return True
    return (error.http_status or 0) >= 500


class StripeService:
    """
    Handles all Stripe API interactions for billing reconciliation.

    Constructed explicitly (see app.services.billing.factory) rather than
    configured through the module-level `stripe.api_key`, so several
    instances with different keys or fakes can coexist.
    """

    def __init__(
        self,
        api_key: str,
        webhook_secret: str,
        timeout_seconds: float = 20.0,
        max_network_retries: int = 2,
        client: stripe.StripeClient | None = None,
    ):
        self.client = client or stripe.StripeClient(
            api_key,
            max_network_retries=max_network_retries,
        )
        self.webhook_secret = webhook_secret
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls) -> "StripeService":
        return cls(
            api_key=settings.stripe_secret_key,
            webhook_secret=settings.stripe_webhook_secret,
            timeout_seconds=settings.provider_timeout_seconds,
            max_network_retries=settings.stripe_max_network_retries,
        )

    async def _call(self, awaitable: Awaitable[T], description: str) -> T:
        """Run one Stripe call with the timeout and error mapping applied."""
        try:
            return await with_timeout(awaitable, self.timeout_seconds, description)
        except StripeError as e:
            logger.error(f"Stripe {description} failed: {e}")
            raise ProviderError(
                f"Stripe {description} failed: {e.user_message or e}",
                retryable=is_retryable_stripe_error(e),
            ) from e

    # ─────────────────────────────────────────────────────────────────────────────
    # Customers & Subscriptions
    # ─────────────────────────────────────────────────────────────────────────────

    async def retrieve_customer(self, customer_id: str) -> dict[str, Any]:
        """Retrieve a customer (email, metadata with optional referral code)."""
        customer = await self._call(
            self.client.customers.retrieve_async(customer_id),
            f"customer retrieve ({customer_id})",
        )
        return to_plain(customer)

    async def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        """Retrieve the current full state of a subscription."""
        subscription = await self._call(
            self.client.subscriptions.retrieve_async(subscription_id),
            f"subscription retrieve ({subscription_id})",
        )
        return to_plain(subscription)

    async def apply_coupon_to_subscription(
        self,
        subscription_id: str,
        coupon_id: str,
    ) -> dict[str, Any]:
        """
        Apply a coupon to an existing subscription.

        Uses the discounts parameter which is the modern Stripe API.
        """
        subscription = await self._call(
            self.client.subscriptions.update_async(
                subscription_id,
                params={"discounts": [{"coupon": coupon_id}]},
            ),
            f"subscription update ({subscription_id})",
        )
        logger.info(f"Applied coupon {coupon_id} to subscription {subscription_id}")
        return to_plain(subscription)

    async def cancel_subscription(self, subscription_id: str) -> dict[str, Any]:
        """Cancel a subscription immediately."""
        subscription = await self._call(
            self.client.subscriptions.cancel_async(subscription_id),
            f"subscription cancel ({subscription_id})",
        )
        logger.info(f"Canceled subscription {subscription_id}")
        return to_plain(subscription)

    # ─────────────────────────────────────────────────────────────────────────────
    # Coupons & Invoices
    # ─────────────────────────────────────────────────────────────────────────────

    async def create_coupon(
        self,
        coupon_id: str,
        amount_off: int,
        currency: str,
        name: str,
        duration: str = "once",
        metadata: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Create a fixed-amount coupon with an explicit ID."""
        coupon = await self._call(
            self.client.coupons.create_async(
                params={
                    "id": coupon_id,
                    "amount_off": amount_off,
                    "currency": currency,
                    "duration": duration,  # type: ignore[typeddict-item]
                    "name": name,
                    "metadata": metadata or {},
                }
            ),
            f"coupon create ({coupon_id})",
        )
        logger.info(f"Created coupon {coupon_id} ({amount_off} {currency}, {duration})")
        return to_plain(coupon)

    async def delete_coupon(self, coupon_id: str) -> None:
        """Delete a coupon. Subscriptions it was applied to keep their discount."""
        await self._call(
            self.client.coupons.delete_async(coupon_id),
            f"coupon delete ({coupon_id})",
        )
        logger.info(f"Deleted coupon {coupon_id}")

    async def retrieve_upcoming_invoice(self, customer_id: str) -> dict[str, Any]:
        """Preview the customer's next invoice (verification/logging only)."""
        invoice = await self._call(
            self.client.invoices.create_preview_async(params={"customer": customer_id}),
            f"upcoming invoice ({customer_id})",
        )
        return to_plain(invoice)

    # ─────────────────────────────────────────────────────────────────────────────
    # Webhooks
    # ─────────────────────────────────────────────────────────────────────────────

    def construct_webhook_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        """
        Verify and construct a webhook event from Stripe.

        Raises ValueError if signature verification fails.
        """
        try:
            event = stripe.Webhook.construct_event(  # type: ignore[no-untyped-call]
                payload,
                signature,
                self.webhook_secret,
            )
            return to_plain(event)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Webhook signature verification failed: {e}")
            raise ValueError("Invalid webhook signature") from None
        except ValueError as e:
            logger.warning(f"Invalid webhook payload: {e}")
            raise ValueError("Invalid webhook payload") from None
