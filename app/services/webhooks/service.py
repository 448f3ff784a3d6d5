"""
Stripe webhook dispatch. Signature checks happen in the route; this module
only routes a verified event to the payment or subscription handler.
"""
import logging
from typing import Any

from sqlalchemy.orm import Session

from app.services.payments.service import PaymentService
from app.services.profiles.service import ProfileService
from app.services.stripe.client import StripeGateway
from app.services.subscriptions.service import SubscriptionSyncService
from app.utils.metrics import webhook_events_total

logger = logging.getLogger(__name__)

HANDLED = "handled"
IGNORED = "ignored"

CHECKOUT_COMPLETED = "checkout.session.completed"
SUBSCRIPTION_CREATED = "customer.subscription.created"
SUBSCRIPTION_UPDATED = "customer.subscription.updated"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"
INVOICE_PAID = "invoice.paid"


class WebhookDispatcher:
    def __init__(self, db: Session, gateway: StripeGateway, profiles: ProfileService | None = None):
        self.db = db
        self.gateway = gateway
        profiles = profiles or ProfileService(db)
        self.payments = PaymentService(db, profiles)
        self.subscriptions = SubscriptionSyncService(db, profiles)

    def dispatch(self, event: dict[str, Any]) -> str:
        """Run the handler for event["type"]. Exceptions propagate to the caller."""
        event_type = event.get("type", "")
        obj = (event.get("data") or {}).get("object") or {}
        log_extra = {"event_id": event.get("id"), "event_type": event_type}

        if event_type == CHECKOUT_COMPLETED:
            if obj.get("mode") == "subscription":
                done = self.subscriptions.handle_checkout_completed(obj)
            else:
                done = self.payments.handle_checkout_completed(obj) is not None
        elif event_type in (SUBSCRIPTION_CREATED, SUBSCRIPTION_UPDATED):
            done = self.subscriptions.handle_subscription_updated(obj)
        elif event_type == SUBSCRIPTION_DELETED:
            done = self.subscriptions.handle_subscription_deleted(obj)
        elif event_type == INVOICE_PAID:
            done = self.subscriptions.handle_invoice_paid(obj, self.gateway)
        else:
            logger.info("webhook_event_unhandled", extra=log_extra)
            webhook_events_total.labels(event_type=event_type or "unknown", outcome=IGNORED).inc()
            return IGNORED

        outcome = HANDLED if done else IGNORED
        webhook_events_total.labels(event_type=event_type, outcome=outcome).inc()
        logger.info("webhook_event_processed", extra={**log_extra, "status": outcome})
        return outcome
