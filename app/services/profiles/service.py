import logging

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.profile import Profile
from app.services.profiles.events import ProfileEventPublisher

logger = logging.getLogger(__name__)


class ProfileService:
    """
    Credit ledger on Profile.remaining_credits.
    Debit/refund/grant are relative single-statement updates, so concurrent
    requests for one user never overwrite each other. Callers own the commit.
    """

    def __init__(self, db: Session, events: ProfileEventPublisher | None = None):
        self.db = db
        self.events = events

    def get(self, user_id: str) -> Profile | None:
        return self.db.query(Profile).filter(Profile.id == user_id).one_or_none()

    def get_by_customer(self, stripe_customer_id: str) -> Profile | None:
        return (
            self.db.query(Profile)
            .filter(Profile.stripe_customer_id == stripe_customer_id)
            .first()
        )

    def get_or_create(self, user_id: str, email: str | None = None) -> Profile:
        profile = self.get(user_id)
        if profile:
            if email and profile.email != email:
                profile.email = email
                self.db.add(profile)
                self.db.commit()
                self.db.refresh(profile)
            return profile
        try:
            profile = Profile(id=user_id, email=email, remaining_credits=0)
            self.db.add(profile)
            self.db.commit()
            self.db.refresh(profile)
            logger.info("profile_created", extra={"user_id": user_id})
            return profile
        except IntegrityError:
            # Parallel first request created it
            self.db.rollback()
            return self.db.query(Profile).filter(Profile.id == user_id).one()

    def balance(self, user_id: str) -> int:
        value = (
            self.db.query(Profile.remaining_credits)
            .filter(Profile.id == user_id)
            .scalar()
        )
        return int(value or 0)

    def try_debit(self, user_id: str, amount: int) -> bool:
        """Atomically deduct credits. Returns False (nothing written) if balance < amount."""
        result = self.db.execute(
            update(Profile)
            .where(Profile.id == user_id, Profile.remaining_credits >= amount)
            .values(remaining_credits=Profile.remaining_credits - amount)
        )
        self.db.flush()
        return result.rowcount > 0

    def refund(self, user_id: str, amount: int) -> None:
        self._increment(user_id, amount)

    def grant(self, user_id: str, amount: int) -> int:
        """Add purchased credits on top of the current balance; returns the new balance."""
        self._increment(user_id, amount)
        return self.balance(user_id)

    def reset_credits(self, profile: Profile, amount: int) -> None:
        """Subscriptions replace the balance instead of accumulating."""
        profile.remaining_credits = amount
        self.db.add(profile)
        self.db.flush()

    def notify(self, user_id: str) -> None:
        """Publish the committed state of the profile to the change stream."""
        if self.events is None:
            return
        profile = self.get(user_id)
        if profile is not None:
            self.db.refresh(profile)
            self.events.publish(profile)

    def _increment(self, user_id: str, amount: int) -> None:
        result = self.db.execute(
            update(Profile)
            .where(Profile.id == user_id)
            .values(remaining_credits=Profile.remaining_credits + amount)
        )
        self.db.flush()
        if result.rowcount == 0:
            raise LookupError(f"Profile not found: {user_id}")
