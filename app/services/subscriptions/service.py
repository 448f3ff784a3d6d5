"""
Subscription state sync from Stripe events.
Subscription credits replace the balance (reset), unlike one-time packs which add to it.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.orm import Session

from app.billing.plans import (
    DEFAULT_SUBSCRIPTION_PLAN,
    normalize_plan_name,
    plan_credits,
    resolve_price,
)
from app.models.profile import Profile
from app.models.subscription import Subscription
from app.services.profiles.service import ProfileService
from app.services.stripe.client import StripeGateway

logger = logging.getLogger(__name__)

STATUS_MAP = {
    "active": "active",
    "canceled": "canceled",
    "incomplete": "unpaid",
    "incomplete_expired": "canceled",
    "past_due": "past_due",
    "trialing": "trialing",
    "unpaid": "unpaid",
}

CHECKOUT_PERIOD = timedelta(days=30)


def map_status(stripe_status: str | None) -> str:
    return STATUS_MAP.get(stripe_status or "", "unpaid")


def _ts(value: int | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _first_item(sub: dict[str, Any]) -> dict[str, Any]:
    items = (sub.get("items") or {}).get("data") or []
    return items[0] if items else {}


def _price(sub: dict[str, Any]) -> dict[str, Any]:
    return _first_item(sub).get("price") or {}


def subscription_plan(sub: dict[str, Any]) -> str:
    """Plan name: price id via the catalog, then the price nickname, then basic."""
    price = _price(sub)
    plan = resolve_price(price.get("id"))
    if plan is not None:
        return plan.name
    nickname = normalize_plan_name(price.get("nickname"))
    if nickname:
        return nickname
    return DEFAULT_SUBSCRIPTION_PLAN


def is_annual(sub: dict[str, Any]) -> bool:
    price = _price(sub)
    interval = (price.get("recurring") or {}).get("interval")
    return interval == "year" or "yearly" in (price.get("nickname") or "").lower()


def subscription_period(sub: dict[str, Any]) -> tuple[datetime | None, datetime | None]:
    """Period bounds live on the subscription in older API versions and on the item in newer ones."""
    item = _first_item(sub)
    start = sub.get("current_period_start") or item.get("current_period_start")
    end = sub.get("current_period_end") or item.get("current_period_end")
    return _ts(start), _ts(end)


def _invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    sub_id = invoice.get("subscription")
    if not sub_id:
        details = ((invoice.get("parent") or {}).get("subscription_details")) or {}
        sub_id = details.get("subscription")
    if isinstance(sub_id, dict):
        sub_id = sub_id.get("id")
    return sub_id or None


class SubscriptionSyncService:
    def __init__(self, db: Session, profiles: ProfileService | None = None):
        self.db = db
        self.profiles = profiles or ProfileService(db)

    def get_by_stripe_id(self, stripe_subscription_id: str) -> Subscription | None:
        return (
            self.db.query(Subscription)
            .filter(Subscription.stripe_subscription_id == stripe_subscription_id)
            .one_or_none()
        )

    def get_active_for_user(self, user_id: str) -> Subscription | None:
        return (
            self.db.query(Subscription)
            .filter(Subscription.user_id == user_id, Subscription.status == "active")
            .order_by(Subscription.created_at.desc())
            .first()
        )

    def _owner(self, row: Subscription | None, customer_id: str | None) -> Profile | None:
        if row is not None:
            return self.profiles.get(row.user_id)
        if customer_id:
            return self.profiles.get_by_customer(customer_id)
        return None

    def _apply_to_profile(
        self,
        profile: Profile,
        status: str,
        plan: str,
        period_start: datetime | None,
        period_end: datetime | None,
        customer_id: str | None,
    ) -> None:
        profile.subscription_status = status
        profile.subscription_plan = plan
        profile.subscription_period_start = period_start
        profile.subscription_period_end = period_end
        if customer_id:
            profile.stripe_customer_id = customer_id
        self.profiles.reset_credits(profile, plan_credits(plan))

    def handle_checkout_completed(self, session: dict[str, Any]) -> bool:
        """checkout.session.completed with mode=subscription."""
        metadata = session.get("metadata") or {}
        user_id = metadata.get("userId")
        raw_plan = metadata.get("plan") or DEFAULT_SUBSCRIPTION_PLAN
        sub_id = session.get("subscription")
        if isinstance(sub_id, dict):
            sub_id = sub_id.get("id")
        if not user_id or not sub_id:
            logger.warning(
                "subscription_checkout_missing_data",
                extra={"session_id": session.get("id")},
            )
            return False

        plan = normalize_plan_name(raw_plan)
        now = datetime.now(timezone.utc)
        period_end = now + CHECKOUT_PERIOD
        customer_id = session.get("customer")
        details = session.get("customer_details") or {}

        profile = self.profiles.get_or_create(user_id, details.get("email") or session.get("customer_email"))
        row = self.get_by_stripe_id(sub_id)
        if row is None:
            row = Subscription(stripe_subscription_id=sub_id, user_id=user_id)
        row.plan = plan
        row.status = "active"
        row.subscription_period_start = now
        row.subscription_period_end = period_end
        row.is_annual = "yearly" in raw_plan.lower()
        row.cancel_at_period_end = False
        self.db.add(row)

        self._apply_to_profile(profile, "active", plan, now, period_end, customer_id)
        self.db.commit()
        logger.info(
            "subscription_checkout_completed",
            extra={
                "user_id": user_id,
                "subscription_id": sub_id,
                "plan": plan,
                "credits": profile.remaining_credits,
            },
        )
        self.profiles.notify(user_id)
        return True

    def handle_subscription_updated(self, sub: dict[str, Any]) -> bool:
        """customer.subscription.created / customer.subscription.updated."""
        sub_id = sub["id"]
        customer_id = sub.get("customer")
        row = self.get_by_stripe_id(sub_id)
        profile = self._owner(row, customer_id)
        if profile is None:
            logger.warning(
                "subscription_owner_not_found",
                extra={"subscription_id": sub_id},
            )
            return False

        status = map_status(sub.get("status"))
        plan = subscription_plan(sub)
        period_start, period_end = subscription_period(sub)

        if row is None:
            row = Subscription(stripe_subscription_id=sub_id, user_id=profile.id)
        row.plan = plan
        row.status = status
        row.subscription_period_start = period_start
        row.subscription_period_end = period_end
        row.is_annual = is_annual(sub)
        row.cancel_at_period_end = bool(sub.get("cancel_at_period_end"))
        self.db.add(row)

        self._apply_to_profile(profile, status, plan, period_start, period_end, customer_id)
        self.db.commit()
        logger.info(
            "subscription_synced",
            extra={
                "user_id": profile.id,
                "subscription_id": sub_id,
                "status": status,
                "plan": plan,
            },
        )
        self.profiles.notify(profile.id)
        return True

    def handle_subscription_deleted(self, sub: dict[str, Any]) -> bool:
        sub_id = sub["id"]
        row = self.get_by_stripe_id(sub_id)
        profile = self._owner(row, sub.get("customer"))
        if row is None and profile is None:
            logger.warning("subscription_owner_not_found", extra={"subscription_id": sub_id})
            return False

        now = datetime.now(timezone.utc)
        if row is not None:
            row.status = "canceled"
            row.canceled_at = _ts(sub.get("canceled_at")) or now
            row.cancel_at_period_end = True
            self.db.add(row)

        if profile is not None:
            profile.subscription_status = "canceled"
            profile.subscription_plan = None
            profile.subscription_period_start = None
            profile.subscription_period_end = None
            self.profiles.reset_credits(profile, 0)
        self.db.commit()
        logger.info(
            "subscription_canceled",
            extra={"user_id": profile.id if profile else None, "subscription_id": sub_id},
        )
        if profile is not None:
            self.profiles.notify(profile.id)
        return True

    def handle_invoice_paid(self, invoice: dict[str, Any], gateway: StripeGateway) -> bool:
        """Renewal: refill credits for the current period."""
        sub_id = _invoice_subscription_id(invoice)
        if not sub_id:
            logger.info("invoice_without_subscription", extra={"event_id": invoice.get("id")})
            return False

        sub = gateway.retrieve_subscription(sub_id)
        row = self.get_by_stripe_id(sub_id)
        profile = self._owner(row, sub.get("customer") or invoice.get("customer"))
        if profile is None:
            logger.warning("subscription_owner_not_found", extra={"subscription_id": sub_id})
            return False

        plan = subscription_plan(sub)
        period_start, period_end = subscription_period(sub)
        if row is not None:
            row.plan = plan
            row.is_annual = is_annual(sub)
            self.db.add(row)

        profile.subscription_plan = plan
        profile.subscription_period_start = period_start
        profile.subscription_period_end = period_end
        self.profiles.reset_credits(profile, plan_credits(plan))
        self.db.commit()
        logger.info(
            "subscription_renewed",
            extra={
                "user_id": profile.id,
                "subscription_id": sub_id,
                "plan": plan,
                "credits": profile.remaining_credits,
            },
        )
        self.profiles.notify(profile.id)
        return True
