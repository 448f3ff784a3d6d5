"""
Plan catalog: the one table of plans, their credit allotments and the
Stripe price ids that sell them. Price ids come from settings.stripe_price_plans,
so a deployment only ever knows its own (test or live) set.
"""
from __future__ import annotations

import json
from dataclasses import dataclass

from app.core.config import settings

SUBSCRIPTION = "subscription"
ONE_TIME = "one_time"


@dataclass(frozen=True)
class Plan:
    name: str
    kind: str  # SUBSCRIPTION | ONE_TIME
    credits: int


PLANS: dict[str, Plan] = {
    "basic": Plan("basic", SUBSCRIPTION, 50),
    "advanced": Plan("advanced", SUBSCRIPTION, 150),
    "ultimate": Plan("ultimate", SUBSCRIPTION, 999999),  # "unlimited"
    "starter": Plan("starter", ONE_TIME, 80),
    "pro": Plan("pro", ONE_TIME, 200),
    "business": Plan("business", ONE_TIME, 1000),
}

DEFAULT_SUBSCRIPTION_PLAN = "basic"


def normalize_plan_name(plan: str | None) -> str:
    """'Advanced Yearly' -> 'advanced'."""
    name = (plan or "").strip().lower()
    for suffix in (" yearly", " monthly"):
        name = name.replace(suffix, "")
    return name.strip()


def get_plan(plan: str | None) -> Plan | None:
    return PLANS.get(normalize_plan_name(plan))


def plan_credits(plan: str | None) -> int:
    """Credit allotment of a plan; 0 for unknown plans."""
    found = get_plan(plan)
    return found.credits if found else 0


def get_price_plans() -> dict[str, str]:
    """Return {price_id: plan_name} for the configured Stripe account."""
    raw = json.loads(settings.stripe_price_plans or "{}")
    return {str(k): normalize_plan_name(v) for k, v in raw.items()}


def resolve_price(price_id: str | None) -> Plan | None:
    """Plan sold by a price id; None when the price id is not in the allow-list."""
    if not price_id:
        return None
    name = get_price_plans().get(price_id)
    if name is None:
        return None
    return PLANS.get(name)


def is_subscription_price(price_id: str | None) -> bool:
    plan = resolve_price(price_id)
    return plan is not None and plan.kind == SUBSCRIPTION
