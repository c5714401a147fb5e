"""Construction of the billing reconciliation services from settings.

The API and scheduler obtain their dispatcher/processor here; tests build
the same objects directly around fakes.
"""

from functools import lru_cache

from app.config import settings
from app.core.database import async_session_maker
from app.core.throttle import BatchThrottle, ThrottleConfig
from app.services.billing.event_ledger import EventLedger
from app.services.billing.referral_discount import ReferralDiscountProcessor
from app.services.billing.store import SqlBillingStore
from app.services.billing.webhook_dispatcher import WebhookDispatcher
from app.services.billing.webhook_handlers import WebhookHandlers
from app.services.stripe_service import StripeService


@lru_cache
def get_billing_store() -> SqlBillingStore:
    return SqlBillingStore(async_session_maker)


@lru_cache
def get_stripe_service() -> StripeService:
    return StripeService.from_settings()


def build_webhook_dispatcher(
    store: SqlBillingStore | None = None,
    provider: StripeService | None = None,
) -> WebhookDispatcher:
    store = store or get_billing_store()
    provider = provider or get_stripe_service()
    handlers = WebhookHandlers(
        store,
        provider,
        retry_attempts=settings.store_retry_attempts,
        retry_base_delay=settings.store_retry_base_delay,
    )
    return WebhookDispatcher(EventLedger(store), handlers)


def build_referral_processor(
    store: SqlBillingStore | None = None,
    provider: StripeService | None = None,
) -> ReferralDiscountProcessor:
    return ReferralDiscountProcessor(
        store or get_billing_store(),
        provider or get_stripe_service(),
        throttle=BatchThrottle(
            ThrottleConfig(
                batch_size=settings.referral_batch_size,
                delay_seconds=settings.referral_batch_delay_seconds,
            )
        ),
        scheduled_throttle=BatchThrottle(
            ThrottleConfig(
                batch_size=settings.referral_cron_batch_size,
                delay_seconds=settings.referral_batch_delay_seconds,
            )
        ),
        discount_amount=settings.referral_discount_amount,
        currency=settings.referral_discount_currency,
        max_referral_count=settings.max_referral_count,
        verify_upcoming_invoice=settings.referral_verify_upcoming_invoice,
        retry_attempts=settings.store_retry_attempts,
        retry_base_delay=settings.store_retry_base_delay,
    )


@lru_cache
def get_webhook_dispatcher() -> WebhookDispatcher:
    return build_webhook_dispatcher()


@lru_cache
def get_referral_processor() -> ReferralDiscountProcessor:
    return build_referral_processor()
