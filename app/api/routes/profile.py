import json
import logging
import time

import redis
from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from fastapi.security import HTTPAuthorizationCredentials

from app.api.deps import (
    bearer_scheme,
    get_auth_client,
    get_current_profile,
    get_profile_events,
    get_profile_service,
)
from app.core.config import settings
from app.core.errors import AuthError
from app.models.profile import Profile
from app.schemas.profile import ProfileOut, SubscriptionOut
from app.services.auth.supabase import AuthUser, SupabaseAuthClient
from app.services.profiles.events import ProfileEventPublisher, profile_event
from app.services.profiles.service import ProfileService
from app.services.subscriptions.service import SubscriptionSyncService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/profile", tags=["profile"])


def _iso(value) -> str | None:
    return value.isoformat() if value else None


@router.get("", response_model=ProfileOut)
def get_profile(
    profile: Profile = Depends(get_current_profile),
    profiles: ProfileService = Depends(get_profile_service),
):
    """Credits and subscription state for the signed-in user."""
    row = SubscriptionSyncService(profiles.db, profiles).get_active_for_user(profile.id)
    subscription = None
    if row is not None:
        subscription = SubscriptionOut(
            plan=row.plan,
            status=row.status,
            isAnnual=row.is_annual,
            cancelAtPeriodEnd=row.cancel_at_period_end,
            currentPeriodEnd=_iso(row.subscription_period_end),
        )
    return ProfileOut(
        id=profile.id,
        email=profile.email,
        remainingCredits=profile.remaining_credits,
        subscriptionStatus=profile.subscription_status,
        subscriptionPlan=profile.subscription_plan,
        subscriptionPeriodEnd=_iso(profile.subscription_period_end),
        subscription=subscription,
        createdAt=_iso(profile.created_at),
    )


def get_current_user_or_query_token(
    token: str | None = Query(None),
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth: SupabaseAuthClient = Depends(get_auth_client),
) -> AuthUser:
    """EventSource cannot send an Authorization header; accept ?token= as well."""
    access_token = credentials.credentials if credentials else token
    if not access_token:
        raise AuthError("Unauthorized")
    return auth.get_user(access_token)


@router.get("/stream")
def profile_stream(
    user: AuthUser = Depends(get_current_user_or_query_token),
    profiles: ProfileService = Depends(get_profile_service),
    events: ProfileEventPublisher = Depends(get_profile_events),
):
    """
    SSE stream of profile_changed events for the caller. The first event is
    the current state; a heartbeat is sent every few seconds of silence.
    """
    profile = profiles.get_or_create(user.id, user.email)
    initial = profile_event(profile)
    heartbeat = settings.profile_stream_heartbeat_seconds
    pubsub = events.subscribe(user.id)

    def event_stream():
        try:
            yield f"data: {json.dumps(initial)}\n\n"
            last_sent = time.time()
            while True:
                try:
                    message = pubsub.get_message(timeout=1.0)
                except redis.RedisError as e:
                    # EventSource reconnects on its own once the stream ends
                    logger.warning("profile_stream_closed", extra={"user_id": user.id, "error": str(e)})
                    return
                if message and message.get("type") == "message":
                    yield f"data: {message['data']}\n\n"
                    last_sent = time.time()
                elif time.time() - last_sent >= heartbeat:
                    yield f"data: {json.dumps({'type': 'heartbeat', 'timestamp': time.time()})}\n\n"
                    last_sent = time.time()
        finally:
            pubsub.close()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )
