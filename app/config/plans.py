"""Plan configuration - maps Stripe price IDs to salon plans."""

from dataclasses import dataclass

from app.config.settings import settings


@dataclass(frozen=True)
class PlanConfig:
    """A sellable plan/price combination."""

    name: str
    billing_period: str  # 'monthly' | 'yearly'
    price: int  # JPY


# Keyed by the settings attribute holding the Stripe price ID, so price IDs
# can differ between test and live mode without touching code.
PLANS: dict[str, PlanConfig] = {
    "stripe_price_lite_monthly": PlanConfig(name="Lite", billing_period="monthly", price=6000),
    "stripe_price_lite_yearly": PlanConfig(name="Lite", billing_period="yearly", price=50000),
    "stripe_price_pro_monthly": PlanConfig(name="Pro", billing_period="monthly", price=10000),
    "stripe_price_pro_yearly": PlanConfig(name="Pro", billing_period="yearly", price=100000),
    "stripe_price_enterprise_monthly": PlanConfig(
        name="Enterprise", billing_period="monthly", price=16000
    ),
    "stripe_price_enterprise_yearly": PlanConfig(
        name="Enterprise", billing_period="yearly", price=160000
    ),
}


def get_plan(price_id: str | None) -> PlanConfig | None:
    """Resolve a Stripe price ID to its plan, or None when unknown."""
    if not price_id:
        return None
    for setting_name, plan in PLANS.items():
        if getattr(settings, setting_name, "") == price_id:
            return plan
    return None
