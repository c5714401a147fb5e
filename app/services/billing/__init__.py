from app.services.billing.event_ledger import EventLedger, LedgerStatus
from app.services.billing.referral_discount import (
    Applied,
    Failed,
    ReferralDiscountProcessor,
    ReferralDiscountReport,
    SkippedNotEligible,
)
from app.services.billing.store import BillingStore, ProcessedCheck, SqlBillingStore
from app.services.billing.webhook_dispatcher import DispatchOutcome, WebhookDispatcher
from app.services.billing.webhook_handlers import HandlerResult, WebhookHandlers

__all__ = [
    "BillingStore",
    "SqlBillingStore",
    "ProcessedCheck",
    "EventLedger",
    "LedgerStatus",
    "WebhookHandlers",
    "HandlerResult",
    "WebhookDispatcher",
    "DispatchOutcome",
    "ReferralDiscountProcessor",
    "ReferralDiscountReport",
    "Applied",
    "SkippedNotEligible",
    "Failed",
]
