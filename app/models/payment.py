"""
Payment model: one row per completed one-time Stripe checkout.
stripe_checkout_session_id is unique: it is the idempotency key shared by the
webhook and the client-side verification path.
"""
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import Column, DateTime, Integer, Numeric, String

from app.db.base import Base


class Payment(Base):
    __tablename__ = "payments"

    id = Column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String, nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)           # major units, before discounts
    currency = Column(String, nullable=False, default="usd")
    status = Column(String, nullable=False, default="completed")
    description = Column(String, nullable=True)
    payment_method = Column(String, nullable=True)
    plan = Column(String, nullable=False)
    stripe_checkout_session_id = Column(String, unique=True, nullable=False)
    stripe_payment_intent_id = Column(String, nullable=True, index=True)  # pi_... or "session_<cs id>"
    credits_purchased = Column(Integer, nullable=False)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
