"""Billing service dependencies and internal-endpoint guard."""

from typing import Annotated

from fastapi import Depends, Header, HTTPException, status

from app.config import settings
from app.core.exceptions import ForbiddenError
from app.services.billing.factory import (
    get_referral_processor,
    get_stripe_service,
    get_webhook_dispatcher,
)
from app.services.billing.referral_discount import ReferralDiscountProcessor
from app.services.billing.webhook_dispatcher import WebhookDispatcher
from app.services.stripe_service import StripeService


def require_stripe() -> None:
    """Reject billing traffic when Stripe is not configured."""
    if not settings.stripe_enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Billing is not enabled",
        )


def get_dispatcher() -> WebhookDispatcher:
    require_stripe()
    return get_webhook_dispatcher()


def get_processor() -> ReferralDiscountProcessor:
    require_stripe()
    return get_referral_processor()


def get_webhook_verifier() -> StripeService:
    """The Stripe client, used for webhook signature verification."""
    require_stripe()
    return get_stripe_service()


def verify_cron_secret(x_cron_secret: str = Header(...)) -> None:
    """Validate the X-Cron-Secret header against the configured secret."""
    if not settings.cron_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Cron secret not configured",
        )
    if x_cron_secret != settings.cron_secret:
        raise ForbiddenError("Invalid cron secret")


Dispatcher = Annotated[WebhookDispatcher, Depends(get_dispatcher)]
Processor = Annotated[ReferralDiscountProcessor, Depends(get_processor)]
WebhookVerifier = Annotated[StripeService, Depends(get_webhook_verifier)]
