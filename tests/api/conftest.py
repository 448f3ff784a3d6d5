from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app.api import deps
from app.core.errors import AuthError
from app.db.session import get_db
from app.main import app
from app.services.auth.supabase import AuthUser
from app.services.stripe.client import StripeGateway

WEBHOOK_SECRET = "whsec_test"


class FakeAuth:
    """Accepts tokens of the form 'token-<user_id>'."""

    def get_user(self, access_token):
        if not access_token.startswith("token-"):
            raise AuthError("invalid JWT")
        user_id = access_token[len("token-"):]
        return AuthUser(id=user_id, email=f"{user_id}@example.com", access_token=access_token)


@pytest.fixture
def gateway():
    return StripeGateway("sk_test_123", WEBHOOK_SECRET)


@pytest.fixture
def redis_client():
    return MagicMock()


@pytest.fixture
def client(session_factory, gateway, redis_client):
    def override_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[deps.get_redis] = lambda: redis_client
    app.dependency_overrides[deps.get_auth_client] = lambda: FakeAuth()
    app.dependency_overrides[deps.get_stripe_gateway] = lambda: gateway
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"Authorization": "Bearer token-user-1"}
