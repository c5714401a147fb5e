# Services package

from app.services.scheduler import scheduler
from app.services.stripe_service import StripeService

__all__ = [
    "StripeService",
    "scheduler",
]
