"""Webhook event ledger - the exactly-once gate for Stripe deliveries."""

import logging
from dataclasses import dataclass

from app.models.webhook_event import TERMINAL_RESULTS, WebhookEventResult
from app.services.billing.store import BillingStore

logger = logging.getLogger(__name__)


@dataclass
class LedgerStatus:
    """Whether an event needs no further processing, and its recorded result."""

    is_processed: bool
    result: str | None = None


class EventLedger:
    """
    Tracks the processing lifecycle of each Stripe event id.

    Only `success` and `skipped` are final. An event left in `processing`
    (process died mid-dispatch) or `error` is dispatched again on the next
    delivery. Write failures are logged and swallowed: Stripe redelivers
    anything that did not get a 2xx, and the subscription sync is
    idempotent on its own.
    """

    def __init__(self, store: BillingStore):
        self.store = store

    async def check_processed(self, event_id: str) -> LedgerStatus:
        """Read-only idempotency gate."""
        check = await self.store.check_processed_event(event_id)
        if check.result is None:
            return LedgerStatus(is_processed=False)
        return LedgerStatus(
            is_processed=check.result in TERMINAL_RESULTS,
            result=check.result,
        )

    async def record_start(self, event_id: str, event_type: str) -> None:
        """Mark the event `processing`, reusing any row from a previous attempt."""
        try:
            await self.store.record_event(
                event_id, event_type, WebhookEventResult.PROCESSING.value
            )
        except Exception as e:
            logger.error(f"[webhook] Failed to record start of {event_id}: {e}")

    async def record_result(
        self,
        event_id: str,
        result: WebhookEventResult,
        error_message: str | None = None,
    ) -> None:
        """Move the event to its result for this attempt."""
        try:
            await self.store.update_event_result(event_id, result.value, error_message)
        except Exception as e:
            logger.error(f"[webhook] Failed to record {result.value} for {event_id}: {e}")
