from app.domain.referral_operations import DecrementResult, referral_ops
from app.domain.subscription_operations import subscription_ops
from app.domain.tenant_operations import tenant_ops
from app.domain.webhook_event_operations import webhook_event_ops

__all__ = [
    "tenant_ops",
    "subscription_ops",
    "referral_ops",
    "webhook_event_ops",
    "DecrementResult",
]
