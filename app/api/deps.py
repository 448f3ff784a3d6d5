"""
FastAPI dependency providers.
External clients are built once per process on first use and can be replaced
in tests through app.dependency_overrides.
"""
from functools import lru_cache

import boto3
import redis
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import AuthError
from app.db.session import get_db
from app.models.profile import Profile
from app.services.auth.supabase import AuthUser, SupabaseAuthClient
from app.services.circuit_breaker import build_circuit_breaker
from app.services.image_generation import PredictionProvider, ReplicateProvider
from app.services.profiles.events import ProfileEventPublisher
from app.services.profiles.service import ProfileService
from app.services.stripe.client import StripeGateway
from app.storage.base import Storage
from app.storage.s3 import S3Storage


bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache
def get_redis() -> redis.Redis:
    return redis.Redis.from_url(settings.redis_url, decode_responses=True)


@lru_cache
def get_auth_client() -> SupabaseAuthClient:
    return SupabaseAuthClient(
        settings.supabase_url,
        settings.supabase_anon_key,
        timeout=settings.http_client_timeout,
    )


@lru_cache
def get_stripe_gateway() -> StripeGateway:
    return StripeGateway(
        settings.stripe_secret_key,
        settings.stripe_webhook_secret,
        settings.stripe_webhook_tolerance,
    )


@lru_cache
def get_storage() -> Storage:
    client = boto3.client(
        "s3",
        region_name=settings.aws_region,
        aws_access_key_id=settings.aws_access_key_id,
        aws_secret_access_key=settings.aws_secret_access_key,
    )
    return S3Storage(client, settings.s3_bucket_name, settings.aws_region)


@lru_cache
def get_prediction_provider() -> PredictionProvider:
    # pybreaker's Redis storage needs raw bytes responses
    breaker_redis = redis.Redis.from_url(settings.redis_url)
    return ReplicateProvider(
        {
            "api_token": settings.replicate_api_token,
            "api_url": settings.replicate_api_url,
            "timeout": settings.replicate_timeout,
            "poll_interval": settings.replicate_poll_interval,
            "max_poll_attempts": settings.replicate_max_poll_attempts,
        },
        breaker=build_circuit_breaker("replicate", breaker_redis),
    )


def get_profile_events(client: redis.Redis = Depends(get_redis)) -> ProfileEventPublisher:
    return ProfileEventPublisher(client)


def get_profile_service(
    db: Session = Depends(get_db),
    events: ProfileEventPublisher = Depends(get_profile_events),
) -> ProfileService:
    return ProfileService(db, events)


def get_client_ip(request: Request) -> str:
    """Client IP (supports X-Forwarded-For from proxy)."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded and settings.app_env == "production":
        trusted = settings.trusted_proxy_ips_set
        if trusted and request.client and request.client.host in trusted:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth: SupabaseAuthClient = Depends(get_auth_client),
) -> AuthUser:
    """Bearer token -> auth provider user. 401 when missing or rejected."""
    if credentials is None or not credentials.credentials:
        raise AuthError("Unauthorized")
    return auth.get_user(credentials.credentials)


def get_current_profile(
    user: AuthUser = Depends(get_current_user),
    profiles: ProfileService = Depends(get_profile_service),
) -> Profile:
    return profiles.get_or_create(user.id, user.email)
