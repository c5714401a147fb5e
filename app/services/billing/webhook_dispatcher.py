"""Webhook dispatcher - applies each Stripe event exactly once.

    received -> check ledger -> already processed: no-op
                             -> record processing -> handler
                                -> success | skipped | error -> record result

The result is recorded in a `finally`, so no event is left `processing` by
the invocation that started it. Handler errors are re-raised after being
recorded so the endpoint answers non-2xx and Stripe redelivers.
"""

import logging
from dataclasses import dataclass
from typing import Any

from app.core.exceptions import WebhookProcessingError
from app.models.webhook_event import WebhookEventResult
from app.services.billing.event_ledger import EventLedger
from app.services.billing.webhook_handlers import HandlerResult, WebhookHandlers

logger = logging.getLogger(__name__)


@dataclass
class DispatchOutcome:
    """Response body for the webhook endpoint."""

    status: str  # 'ok' | 'already_processed' | 'skipped'
    message: str
    event_id: str
    event_type: str


class WebhookDispatcher:
    """Routes verified Stripe events through the ledger to their handlers."""

    def __init__(self, ledger: EventLedger, handlers: WebhookHandlers):
        self.ledger = ledger
        self.handlers = handlers

    async def dispatch(self, event: dict[str, Any]) -> DispatchOutcome:
        event_id = event["id"]
        event_type = event["type"]

        status = await self.ledger.check_processed(event_id)
        if status.is_processed:
            logger.info(f"[webhook] {event_type} {event_id} already processed ({status.result})")
            return DispatchOutcome(
                status="already_processed",
                message=f"Event {event_id} already processed (result: {status.result})",
                event_id=event_id,
                event_type=event_type,
            )

        await self.ledger.record_start(event_id, event_type)

        result = WebhookEventResult.ERROR
        error_message: str | None = None
        try:
            handler = self.handlers.route(event_type)
            if handler is None:
                outcome = HandlerResult.skipped(f"Unhandled event type: {event_type}")
            else:
                outcome = await handler(event)
            result = outcome.result
        except Exception as e:
            error_message = str(e) or type(e).__name__
            logger.exception(f"[webhook] {event_type} {event_id} failed: {error_message}")
            raise WebhookProcessingError(event_id, event_type, error_message) from e
        finally:
            await self.ledger.record_result(event_id, result, error_message)

        logger.info(f"[webhook] {event_type} {event_id}: {result.value} - {outcome.message}")
        return DispatchOutcome(
            status="skipped" if result == WebhookEventResult.SKIPPED else "ok",
            message=outcome.message,
            event_id=event_id,
            event_type=event_type,
        )
