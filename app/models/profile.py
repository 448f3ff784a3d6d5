"""
Profile: one per auth-provider user. remaining_credits is the credit ledger:
debited by generations, incremented by one-time purchases, reset by subscription events.
"""
from datetime import datetime, timezone

from sqlalchemy import CheckConstraint, Column, DateTime, Integer, String

from app.db.base import Base


SUBSCRIPTION_STATUSES = ("active", "canceled", "past_due", "trialing", "unpaid")


class Profile(Base):
    __tablename__ = "profiles"
    __table_args__ = (
        CheckConstraint("remaining_credits >= 0", name="ck_profiles_credits_non_negative"),
    )

    id = Column(String, primary_key=True)  # auth provider user id
    email = Column(String, nullable=True)
    remaining_credits = Column(Integer, nullable=False, default=0)
    subscription_status = Column(String, nullable=True)  # one of SUBSCRIPTION_STATUSES
    subscription_plan = Column(String, nullable=True)
    stripe_customer_id = Column(String, nullable=True, index=True)
    subscription_period_start = Column(DateTime(timezone=True), nullable=True)
    subscription_period_end = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def has_active_subscription(self) -> bool:
        return self.subscription_status == "active"
