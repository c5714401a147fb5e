"""Billing API endpoints - Stripe webhook receiver."""

import logging

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from app.api.deps import Dispatcher, WebhookVerifier
from app.core.exceptions import ValidationError, WebhookProcessingError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["billing"])


class WebhookResponse(BaseModel):
    """Acknowledgement returned to Stripe."""

    status: str  # 'ok' | 'already_processed' | 'skipped'
    message: str


@router.post("/webhooks/stripe", response_model=WebhookResponse)
async def handle_stripe_webhook(
    request: Request,
    verifier: WebhookVerifier,
    dispatcher: Dispatcher,
) -> WebhookResponse:
    """
    Handle Stripe webhook events.

    Verifies the webhook signature before processing. No authentication
    required (verified by Stripe signature). Any non-2xx response makes
    Stripe redeliver the event; the event ledger makes redelivery safe.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    # Verify signature
    try:
        event = verifier.construct_webhook_event(payload, sig_header)
    except ValueError as e:
        raise ValidationError(str(e)) from None

    event_type = str(event.get("type", ""))
    event_id = str(event.get("id", ""))
    if not event_id or not event_type:
        raise ValidationError("Invalid webhook payload")

    logger.info(f"Received Stripe webhook: {event_type} ({event_id})")

    try:
        outcome = await dispatcher.dispatch(event)
    except WebhookProcessingError as e:
        raise HTTPException(500, str(e)) from None
    except Exception as e:
        logger.exception(f"Webhook {event_id} could not be dispatched: {e}")
        raise HTTPException(500, "Webhook processing failed") from None

    return WebhookResponse(status=outcome.status, message=outcome.message)
