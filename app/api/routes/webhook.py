"""
Stripe webhook endpoint. Signature is verified over the raw body before any
handler runs; handler failures return 500 so Stripe retries the delivery.
"""
import logging

import stripe
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from app.api.deps import get_profile_service, get_stripe_gateway
from app.services.profiles.service import ProfileService
from app.services.stripe.client import StripeGateway
from app.services.webhooks.service import WebhookDispatcher
from app.utils.metrics import webhook_events_total

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["webhook"])

ALLOWED_METHODS = "POST, OPTIONS, GET, HEAD"


@router.post("/webhook")
async def stripe_webhook(
    request: Request,
    gateway: StripeGateway = Depends(get_stripe_gateway),
    profiles: ProfileService = Depends(get_profile_service),
):
    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    if not signature:
        webhook_events_total.labels(event_type="unknown", outcome="rejected").inc()
        return JSONResponse({"error": "No signature found"}, status_code=400)

    try:
        event = gateway.construct_event(payload, signature)
    except (stripe.SignatureVerificationError, ValueError) as e:
        logger.warning("webhook_signature_invalid", extra={"error": str(e)})
        webhook_events_total.labels(event_type="unknown", outcome="rejected").inc()
        return JSONResponse({"error": f"Webhook Error: {e}"}, status_code=400)

    dispatcher = WebhookDispatcher(profiles.db, gateway, profiles)
    try:
        await run_in_threadpool(dispatcher.dispatch, event)
    except Exception:
        profiles.db.rollback()
        logger.exception(
            "webhook_handler_failed",
            extra={"event_id": event.get("id"), "event_type": event.get("type")},
        )
        webhook_events_total.labels(event_type=event.get("type", "unknown"), outcome="failed").inc()
        return JSONResponse({"error": "Webhook handler failed"}, status_code=500)

    return {"received": True}


@router.api_route("/webhook", methods=["GET", "HEAD", "OPTIONS"])
def webhook_info() -> dict:
    """Reachability check for the webhook URL."""
    return {"message": "Stripe webhook endpoint. Send events with POST."}


@router.api_route("/webhook", methods=["PUT", "DELETE", "PATCH"])
def webhook_method_not_allowed() -> JSONResponse:
    return JSONResponse(
        {"error": "Method not allowed"},
        status_code=405,
        headers={"Allow": ALLOWED_METHODS},
    )
