"""
Billing routes: checkout initiation, client-side payment verification,
customer portal, payment history.
"""
from fastapi import APIRouter, Depends, Query, Request

from app.api.deps import get_current_profile, get_current_user, get_profile_service, get_stripe_gateway
from app.core.config import settings
from app.models.payment import Payment
from app.models.profile import Profile
from app.schemas.billing import CheckoutOut, CheckoutRequest, PaymentOut, PortalOut, VerifyPaymentRequest
from app.services.auth.supabase import AuthUser
from app.services.checkout.service import CheckoutService
from app.services.payments.service import PaymentService
from app.services.profiles.service import ProfileService
from app.services.stripe.client import StripeGateway

router = APIRouter(prefix="/api", tags=["billing"])


def _payment_out(payment: Payment) -> PaymentOut:
    return PaymentOut(
        id=payment.id,
        amount=float(payment.amount),
        currency=payment.currency,
        status=payment.status,
        description=payment.description,
        plan=payment.plan,
        creditsPurchased=payment.credits_purchased,
        createdAt=payment.created_at.isoformat() if payment.created_at else None,
    )


@router.post("/payment", response_model=CheckoutOut)
def create_payment(
    body: CheckoutRequest,
    request: Request,
    user: AuthUser = Depends(get_current_user),
    profile: Profile = Depends(get_current_profile),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    """Start a Stripe Checkout session for a catalog price."""
    service = CheckoutService(gateway, settings.site_url)
    url = service.create_checkout(body.price_id, profile, user.email, request.headers.get("origin"))
    return {"sessionUrl": url}


@router.post("/verify-payment")
def verify_payment(
    body: VerifyPaymentRequest,
    user: AuthUser = Depends(get_current_user),
    profiles: ProfileService = Depends(get_profile_service),
    gateway: StripeGateway = Depends(get_stripe_gateway),
) -> dict:
    """Grant one-time credits after the checkout redirect (idempotent with the webhook)."""
    service = PaymentService(profiles.db, profiles)
    return service.verify_client_session(body.session_id, user.id, gateway)


@router.post("/customer-portal", response_model=PortalOut)
def customer_portal(
    profile: Profile = Depends(get_current_profile),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    service = CheckoutService(gateway, settings.site_url)
    return {"url": service.create_portal(profile)}


@router.get("/payments", response_model=list[PaymentOut])
def list_payments(
    limit: int = Query(50, ge=1, le=200),
    user: AuthUser = Depends(get_current_user),
    profiles: ProfileService = Depends(get_profile_service),
):
    service = PaymentService(profiles.db, profiles)
    return [_payment_out(p) for p in service.get_user_payments(user.id, limit=limit)]
