from __future__ import annotations

from typing import Optional

from payments.config import Settings
from payments.models import Plan

PLAN_FEATURES: dict[Plan, tuple[str, ...]] = {
    Plan.free: ("5GB storage", "Basic support", "1 project"),
    Plan.pro: (
        "50GB storage",
        "Priority support",
        "Unlimited projects",
        "API access",
        "Custom domains",
    ),
    Plan.enterprise: (
        "Unlimited storage",
        "24/7 support",
        "Unlimited projects",
        "API access",
        "Custom domains",
        "SSO",
        "SLA",
    ),
}

FAMILY_CAPACITY: dict[Plan, int] = {
    Plan.pro: 5,
    Plan.enterprise: 10,
}


def features_for(plan: Plan) -> list[str]:
    return list(PLAN_FEATURES.get(plan, PLAN_FEATURES[Plan.free]))


def family_capacity_for(plan: Plan) -> Optional[int]:
    """Member limit for a family plan on this tier, None if the tier has no family plans."""
    return FAMILY_CAPACITY.get(plan)


def parse_plan(value: object) -> Optional[Plan]:
    if isinstance(value, Plan):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Plan(value.strip().lower())
    except ValueError:
        return None


def price_id_for(plan: Plan, settings: Settings) -> Optional[str]:
    prices = {
        Plan.pro: settings.stripe_price_pro,
        Plan.enterprise: settings.stripe_price_enterprise,
    }
    return prices.get(plan)
