from pydantic import BaseModel, ConfigDict, Field


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    price_id: str | None = Field(default=None, alias="priceId")


class CheckoutOut(BaseModel):
    sessionUrl: str


class VerifyPaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str | None = Field(default=None, alias="sessionId")


class PortalOut(BaseModel):
    url: str


class PaymentOut(BaseModel):
    id: str
    amount: float
    currency: str
    status: str
    description: str | None
    plan: str
    creditsPurchased: int
    createdAt: str | None
