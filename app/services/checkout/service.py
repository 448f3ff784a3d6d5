"""
Checkout initiation: builds a Stripe Checkout session for a catalog price.
Nothing is written to the database here; credits arrive through the reconciler.
"""
import logging
from typing import Any

import stripe

from app.billing.plans import SUBSCRIPTION, resolve_price
from app.core.errors import ConflictError, UpstreamError, ValidationError
from app.models.profile import Profile
from app.services.stripe.client import StripeGateway

logger = logging.getLogger(__name__)


class CheckoutService:
    def __init__(self, gateway: StripeGateway, site_url: str):
        self.gateway = gateway
        self.site_url = site_url.rstrip("/")

    def build_session_params(self, price_id: str, profile: Profile, email: str | None, origin: str) -> dict[str, Any]:
        plan = resolve_price(price_id)
        if plan is None:
            raise ValidationError("Invalid price ID")
        is_subscription = plan.kind == SUBSCRIPTION

        params: dict[str, Any] = {
            "mode": "subscription" if is_subscription else "payment",
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": f"{origin}/pricing?success=true&session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{origin}/pricing?canceled=true",
            "metadata": {"userId": profile.id, "plan": plan.name},
            "allow_promotion_codes": True,
        }
        if profile.stripe_customer_id:
            params["customer"] = profile.stripe_customer_id
        else:
            params["customer_email"] = email
        return params

    def create_checkout(self, price_id: str | None, profile: Profile, email: str | None, origin: str | None) -> str:
        """Returns the hosted checkout URL."""
        if not price_id:
            raise ValidationError("Price ID is required")
        plan = resolve_price(price_id)
        if plan is None:
            logger.warning("checkout_unknown_price", extra={"user_id": profile.id})
            raise ValidationError("Invalid price ID")
        if plan.kind == SUBSCRIPTION and profile.has_active_subscription():
            raise ConflictError(
                "You already have an active subscription. Please manage your subscription from your account page."
            )
        email = email or profile.email
        if not email:
            raise ValidationError("User email is required")

        params = self.build_session_params(price_id, profile, email, (origin or self.site_url).rstrip("/"))
        try:
            session = self.gateway.create_checkout_session(params)
        except stripe.StripeError as e:
            logger.error("checkout_create_failed", extra={"user_id": profile.id, "error": str(e)})
            raise UpstreamError("Failed to create checkout session")

        logger.info(
            "checkout_created",
            extra={"user_id": profile.id, "session_id": session.get("id"), "plan": plan.name},
        )
        return session["url"]

    def create_portal(self, profile: Profile) -> str:
        if not profile.stripe_customer_id:
            raise ValidationError("No Stripe customer found")
        try:
            portal = self.gateway.create_portal_session(profile.stripe_customer_id, f"{self.site_url}/pricing")
        except stripe.StripeError as e:
            logger.error("portal_create_failed", extra={"user_id": profile.id, "error": str(e)})
            raise UpstreamError("Failed to create portal session")
        return portal["url"]
