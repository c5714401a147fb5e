"""Configuration package."""

from app.config.plans import PLANS, PlanConfig, get_plan
from app.config.settings import Settings, settings

__all__ = [
    "PlanConfig",
    "PLANS",
    "get_plan",
    "Settings",
    "settings",
]
