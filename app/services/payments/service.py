"""
PaymentService: one-time credit purchases through Stripe Checkout.

Two paths reach the same reconciliation:
- the client returns from checkout and calls /api/verify-payment;
- Stripe delivers checkout.session.completed to the webhook.

Credits for a session are granted exactly once. The checkout session id is the
idempotency key (unique column on Payment); the Payment insert and the credit
increment commit together or not at all.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

import stripe
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.billing.plans import normalize_plan_name, plan_credits
from app.core.errors import (
    ForbiddenError,
    NotFoundError,
    PersistenceError,
    UpstreamError,
    ValidationError,
)
from app.models.payment import Payment
from app.services.profiles.service import ProfileService
from app.services.stripe.client import StripeGateway
from app.utils.metrics import credits_granted_total, payment_reconciliations_total

logger = logging.getLogger(__name__)

PROCESSED = "processed"
ALREADY_PROCESSED = "already_processed"

SOURCE_CLIENT = "client"
SOURCE_WEBHOOK = "webhook"

# no_payment_required: a promotion code covered the whole amount
SETTLED_PAYMENT_STATUSES = frozenset({"paid", "no_payment_required"})


@dataclass
class ReconcileResult:
    status: str
    payment_id: str | None = None
    credits_added: int = 0
    total_credits: int | None = None

    @property
    def already_processed(self) -> bool:
        return self.status == ALREADY_PROCESSED


def _payment_intent_id(session: dict[str, Any]) -> str | None:
    intent = session.get("payment_intent")
    if isinstance(intent, dict):
        intent = intent.get("id")
    return intent or None


def _session_email(session: dict[str, Any]) -> str | None:
    details = session.get("customer_details") or {}
    return details.get("email") or session.get("customer_email")


class PaymentService:
    def __init__(self, db: Session, profiles: ProfileService | None = None):
        self.db = db
        self.profiles = profiles or ProfileService(db)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_existing(self, session_id: str, payment_intent_id: str | None = None) -> Payment | None:
        """Exact-key match on the checkout session id, or on a real payment intent id."""
        payment = (
            self.db.query(Payment)
            .filter(Payment.stripe_checkout_session_id == session_id)
            .one_or_none()
        )
        if payment is None and payment_intent_id:
            payment = (
                self.db.query(Payment)
                .filter(Payment.stripe_payment_intent_id == payment_intent_id)
                .first()
            )
        return payment

    def get_user_payments(self, user_id: str, limit: int = 50) -> list[Payment]:
        return (
            self.db.query(Payment)
            .filter(Payment.user_id == user_id)
            .order_by(Payment.created_at.desc())
            .limit(limit)
            .all()
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, session: dict[str, Any], user_id: str, plan: str, source: str) -> ReconcileResult:
        """
        Record the Payment and add the plan's credits for a paid checkout session.
        Idempotent per session id regardless of which path calls it first.
        """
        session_id = session["id"]
        intent_id = _payment_intent_id(session)

        existing = self.find_existing(session_id, intent_id)
        if existing:
            payment_reconciliations_total.labels(source=source, outcome=ALREADY_PROCESSED).inc()
            logger.info(
                "payment_already_processed",
                extra={"session_id": session_id, "payment_id": existing.id, "source": source},
            )
            return ReconcileResult(status=ALREADY_PROCESSED, payment_id=existing.id)

        self.profiles.get_or_create(user_id, _session_email(session))

        plan_name = normalize_plan_name(plan)
        credits = plan_credits(plan_name)
        payment = Payment(
            user_id=user_id,
            amount=Decimal(session.get("amount_subtotal") or 0) / 100,
            currency=session.get("currency") or "usd",
            status="completed",
            description=f"One-time payment for {plan_name} plan",
            payment_method="card",
            plan=plan_name,
            stripe_checkout_session_id=session_id,
            stripe_payment_intent_id=intent_id or f"session_{session_id}",
            credits_purchased=credits,
        )
        try:
            self.db.add(payment)
            self.db.flush()
            total = self.profiles.grant(user_id, credits)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            winner = self.find_existing(session_id)
            if winner is None:
                payment_reconciliations_total.labels(source=source, outcome="failed").inc()
                logger.exception("payment_insert_failed", extra={"session_id": session_id, "source": source})
                raise PersistenceError("Failed to record payment")
            # The other path committed first
            payment_reconciliations_total.labels(source=source, outcome=ALREADY_PROCESSED).inc()
            logger.info(
                "payment_duplicate",
                extra={"session_id": session_id, "payment_id": winner.id, "source": source},
            )
            return ReconcileResult(status=ALREADY_PROCESSED, payment_id=winner.id)
        except (SQLAlchemyError, LookupError):
            self.db.rollback()
            payment_reconciliations_total.labels(source=source, outcome="failed").inc()
            logger.exception("payment_reconcile_failed", extra={"session_id": session_id, "source": source})
            raise PersistenceError("Failed to update credits")

        payment_reconciliations_total.labels(source=source, outcome=PROCESSED).inc()
        credits_granted_total.inc(credits)
        logger.info(
            "payment_reconciled",
            extra={
                "user_id": user_id,
                "session_id": session_id,
                "payment_id": payment.id,
                "plan": plan_name,
                "credits": credits,
                "new_balance": total,
                "source": source,
            },
        )
        self.profiles.notify(user_id)
        return ReconcileResult(
            status=PROCESSED,
            payment_id=payment.id,
            credits_added=credits,
            total_credits=total,
        )

    def verify_client_session(self, session_id: str | None, user_id: str, gateway: StripeGateway) -> dict[str, Any]:
        """Client-side confirmation after the Stripe redirect. Returns the response body."""
        if not session_id:
            raise ValidationError("Session ID is required")

        # Fast path: no Stripe round-trip once the webhook has recorded it
        existing = self.find_existing(session_id)
        if existing:
            payment_reconciliations_total.labels(source=SOURCE_CLIENT, outcome=ALREADY_PROCESSED).inc()
            return {
                "success": True,
                "alreadyProcessed": True,
                "message": "Payment already processed",
            }

        try:
            session = gateway.retrieve_checkout_session(session_id)
        except stripe.StripeError as e:
            logger.error("stripe_session_retrieve_failed", extra={"session_id": session_id, "error": str(e)})
            raise UpstreamError("Failed to verify payment")
        if session is None:
            raise NotFoundError("Session not found")

        metadata = session.get("metadata") or {}
        if metadata.get("userId") != user_id:
            logger.warning(
                "payment_session_user_mismatch",
                extra={"session_id": session_id, "user_id": user_id},
            )
            raise ForbiddenError("Unauthorized")

        settled = session.get("payment_status") in SETTLED_PAYMENT_STATUSES
        if session.get("status") != "complete" or not settled:
            raise ValidationError("Payment not completed")

        if session.get("mode") == "subscription":
            # Subscription credits are granted by the webhook only
            return {"success": True, "message": "Subscription payment verified"}

        plan = metadata.get("plan")
        if not plan:
            raise ValidationError("Plan not found in session metadata")

        result = self.reconcile(session, user_id, plan, SOURCE_CLIENT)
        if result.already_processed:
            return {
                "success": True,
                "alreadyProcessed": True,
                "message": "Payment already processed",
            }
        return {
            "success": True,
            "paymentId": result.payment_id,
            "credits": {"added": result.credits_added, "total": result.total_credits},
        }

    def handle_checkout_completed(self, session: dict[str, Any]) -> ReconcileResult | None:
        """Webhook path for mode=payment. The signed payload is trusted as-is."""
        metadata = session.get("metadata") or {}
        user_id = metadata.get("userId")
        plan = metadata.get("plan")
        if not user_id or not plan:
            logger.warning(
                "checkout_session_missing_metadata",
                extra={"session_id": session.get("id")},
            )
            return None
        if session.get("payment_status") not in SETTLED_PAYMENT_STATUSES:
            logger.info(
                "checkout_session_not_paid",
                extra={"session_id": session.get("id"), "status": session.get("payment_status")},
            )
            return None
        return self.reconcile(session, user_id, plan, SOURCE_WEBHOOK)
