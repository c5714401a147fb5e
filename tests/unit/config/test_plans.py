"""Unit tests for plan configuration and price resolution."""

from unittest.mock import patch

from app.config.plans import PLANS, get_plan


class TestGetPlan:
    """Tests for get_plan() price resolution."""

    @patch("app.config.plans.settings")
    def test_resolves_configured_price(self, mock_settings):
        mock_settings.stripe_price_pro_monthly = "price_pro_m"
        plan = get_plan("price_pro_m")
        assert plan is not None
        assert plan.name == "Pro"
        assert plan.billing_period == "monthly"

    @patch("app.config.plans.settings")
    def test_resolves_yearly_price(self, mock_settings):
        mock_settings.stripe_price_enterprise_yearly = "price_ent_y"
        plan = get_plan("price_ent_y")
        assert plan.name == "Enterprise"
        assert plan.billing_period == "yearly"

    def test_returns_none_for_unknown_price(self):
        assert get_plan("price_does_not_exist") is None

    def test_returns_none_for_missing_price(self):
        assert get_plan(None) is None
        assert get_plan("") is None


class TestPlanTable:
    def test_every_plan_has_monthly_and_yearly(self):
        names = {plan.name for plan in PLANS.values()}
        for name in names:
            periods = {p.billing_period for p in PLANS.values() if p.name == name}
            assert periods == {"monthly", "yearly"}

    def test_yearly_is_cheaper_than_twelve_months(self):
        for key, plan in PLANS.items():
            if plan.billing_period != "yearly":
                continue
            monthly = PLANS[key.replace("_yearly", "_monthly")]
            assert plan.price < monthly.price * 12
