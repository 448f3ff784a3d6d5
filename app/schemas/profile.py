from pydantic import BaseModel


class SubscriptionOut(BaseModel):
    plan: str
    status: str
    isAnnual: bool
    cancelAtPeriodEnd: bool
    currentPeriodEnd: str | None


class ProfileOut(BaseModel):
    id: str
    email: str | None
    remainingCredits: int
    subscriptionStatus: str | None
    subscriptionPlan: str | None
    subscriptionPeriodEnd: str | None
    subscription: SubscriptionOut | None
    createdAt: str | None
