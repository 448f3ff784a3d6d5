"""
Stripe gateway: the only module that talks to the Stripe SDK.
The API key is passed per call, so several gateways (tests, scripts) can
coexist without touching the stripe module globals. Returns plain dicts.
"""
import json
import logging
import time
from typing import Any

import stripe

from app.utils.metrics import stripe_requests_total, stripe_request_duration_seconds

logger = logging.getLogger(__name__)


def _as_dict(obj: Any) -> dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict) and not isinstance(obj, stripe.StripeObject):
        return obj
    return obj.to_dict()


class StripeGateway:
    def __init__(self, api_key: str, webhook_secret: str, webhook_tolerance: int = 300) -> None:
        self._api_key = api_key
        self._webhook_secret = webhook_secret
        self._webhook_tolerance = webhook_tolerance

    def _call(self, method: str, func, *args: Any, **kwargs: Any) -> dict[str, Any]:
        start = time.time()
        try:
            result = func(*args, api_key=self._api_key, **kwargs)
        except stripe.StripeError:
            stripe_requests_total.labels(method=method, status="error").inc()
            raise
        finally:
            stripe_request_duration_seconds.labels(method=method).observe(time.time() - start)
        stripe_requests_total.labels(method=method, status="success").inc()
        return _as_dict(result)

    # ------------------------------------------------------------------
    # Checkout / portal
    # ------------------------------------------------------------------

    def create_checkout_session(self, params: dict[str, Any]) -> dict[str, Any]:
        return self._call("checkout.create", stripe.checkout.Session.create, **params)

    def retrieve_checkout_session(self, session_id: str) -> dict[str, Any] | None:
        """None when Stripe does not know the session id."""
        try:
            return self._call("checkout.retrieve", stripe.checkout.Session.retrieve, session_id)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                return None
            raise

    def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self._call("subscription.retrieve", stripe.Subscription.retrieve, subscription_id)

    def create_portal_session(self, customer_id: str, return_url: str) -> dict[str, Any]:
        return self._call(
            "portal.create",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        )

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def construct_event(self, payload: bytes, sig_header: str) -> dict[str, Any]:
        """
        Verify Stripe-Signature over the raw body and return the event as a dict.
        Raises stripe.SignatureVerificationError or ValueError (bad JSON).
        """
        body = payload.decode("utf-8")
        stripe.WebhookSignature.verify_header(
            body, sig_header, self._webhook_secret, self._webhook_tolerance
        )
        event = json.loads(body)
        if not isinstance(event, dict) or "type" not in event:
            raise ValueError("Malformed event payload")
        return event
