from app.models.referral import ReferralTransaction, ReferralTransactionKind, TenantReferral
from app.models.subscription import (
    DISCOUNTABLE_STATUSES,
    BillingPeriod,
    SubscriptionSnapshot,
    SubscriptionStatus,
    TenantSubscription,
)
from app.models.tenant import Tenant
from app.models.webhook_event import TERMINAL_RESULTS, WebhookEvent, WebhookEventResult

__all__ = [
    "Tenant",
    "TenantSubscription",
    "SubscriptionSnapshot",
    "SubscriptionStatus",
    "BillingPeriod",
    "DISCOUNTABLE_STATUSES",
    "TenantReferral",
    "ReferralTransaction",
    "ReferralTransactionKind",
    "WebhookEvent",
    "WebhookEventResult",
    "TERMINAL_RESULTS",
]
