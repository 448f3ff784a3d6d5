"""Route-level tests: auth enforcement, error bodies, request/response shapes."""
import json
from unittest.mock import MagicMock

import pytest
import redis

from app.api import deps
from app.core.config import settings
from app.main import app
from app.models.generation import Generation
from app.models.profile import Profile
from app.services.generations.service import GenerationService
from app.services.image_generation import Prediction, PredictionTimeoutError


@pytest.fixture
def provider():
    provider = MagicMock()
    provider.create_prediction.return_value = Prediction(id="pred_1", status="starting")
    provider.wait_for_completion.return_value = Prediction(
        id="pred_1", status="succeeded", output="https://replicate.delivery/out.png"
    )
    provider.download.return_value = b"png"
    return provider


@pytest.fixture
def storage():
    storage = MagicMock()
    storage.put_object.side_effect = (
        lambda collection, user_id, filename, content, content_type:
        f"https://logos-bucket.s3.us-east-1.amazonaws.com/{collection}/{user_id}/{filename}"
    )
    return storage


@pytest.fixture
def gen_client(client, provider, storage):
    app.dependency_overrides[deps.get_prediction_provider] = lambda: provider
    app.dependency_overrides[deps.get_storage] = lambda: storage
    return client


class TestAuth:
    def test_missing_bearer_is_401(self, gen_client):
        resp = gen_client.post("/api/put-logo-to-anything", json={})
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}

    def test_rejected_token_is_401(self, client):
        resp = client.get("/api/profile", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401
        assert resp.json()["error"] == "invalid JWT"

    def test_verify_session_never_fails(self, client):
        resp = client.get("/api/verify-session")
        assert resp.status_code == 200
        body = resp.json()
        assert body["isAuthenticated"] is False
        assert body["hasAuthHeader"] is False
        assert body["authError"] == "No session token"

    def test_verify_session_with_header(self, client, auth_headers):
        body = client.get("/api/verify-session", headers=auth_headers).json()
        assert body["isAuthenticated"] is True
        assert body["userId"] == "user-1"
        assert body["authMethod"] == "header"

    def test_callback_error_redirects(self, client):
        resp = client.get("/auth/callback?error=access_denied", follow_redirects=False)
        assert resp.status_code == 303
        assert resp.headers["location"].startswith("https://app.test/auth/auth-code-error?error=")

    def test_callback_without_code(self, client):
        resp = client.get("/auth/callback", follow_redirects=False)
        assert resp.status_code == 303
        assert "auth-code-error" in resp.headers["location"]

    def test_callback_sets_session_cookies(self, client):
        from app.services.auth.supabase import AuthSession, AuthUser

        auth = MagicMock()
        auth.exchange_code_for_session.return_value = AuthSession(
            access_token="at", refresh_token="rt", expires_in=3600,
            user=AuthUser(id="user-1", email="a@example.com", access_token="at"),
        )
        app.dependency_overrides[deps.get_auth_client] = lambda: auth

        resp = client.get("/auth/callback?code=abc&next=/dashboard", follow_redirects=False)

        assert resp.status_code == 303
        assert resp.headers["location"] == "https://app.test/dashboard"
        assert "sb-access-token=at" in resp.headers.get("set-cookie", "")

    def test_callback_ignores_offsite_next(self, client):
        from app.services.auth.supabase import AuthSession, AuthUser

        auth = MagicMock()
        auth.exchange_code_for_session.return_value = AuthSession(
            access_token="at", refresh_token=None, expires_in=None,
            user=AuthUser(id="user-1", email=None, access_token="at"),
        )
        app.dependency_overrides[deps.get_auth_client] = lambda: auth

        resp = client.get("/auth/callback?code=abc&next=//evil.test", follow_redirects=False)
        assert resp.headers["location"] == "https://app.test/"

    def test_signout_revokes_and_clears_cookies(self, client):
        auth = MagicMock()
        app.dependency_overrides[deps.get_auth_client] = lambda: auth

        resp = client.post("/auth/signout", headers={"Authorization": "Bearer at"}, follow_redirects=False)

        assert resp.status_code == 303
        assert resp.headers["location"] == "https://app.test/"
        auth.sign_out.assert_called_once_with("at")
        cleared = resp.headers.get_list("set-cookie")
        assert any(c.startswith("sb-access-token=") and "Max-Age=0" in c for c in cleared)
        assert any(c.startswith("sb-refresh-token=") for c in cleared)

    def test_signout_provider_failure_still_redirects(self, client):
        from app.core.errors import AuthError

        auth = MagicMock()
        auth.sign_out.side_effect = AuthError("Failed to sign out")
        app.dependency_overrides[deps.get_auth_client] = lambda: auth

        resp = client.post("/auth/signout", headers={"Cookie": "sb-access-token=cookie-at"}, follow_redirects=False)

        assert resp.status_code == 303
        auth.sign_out.assert_called_once_with("cookie-at")

    def test_signout_without_session(self, client):
        auth = MagicMock()
        app.dependency_overrides[deps.get_auth_client] = lambda: auth

        resp = client.post("/auth/signout", follow_redirects=False)

        assert resp.status_code == 303
        auth.sign_out.assert_not_called()


class TestBilling:
    def test_checkout_returns_session_url(self, client, gateway, auth_headers, monkeypatch):
        create = MagicMock(return_value={"id": "cs_1", "url": "https://checkout.stripe.test/cs_1"})
        monkeypatch.setattr(gateway, "create_checkout_session", create)

        resp = client.post("/api/payment", json={"priceId": "price_starter"}, headers=auth_headers)

        assert resp.status_code == 200
        assert resp.json() == {"sessionUrl": "https://checkout.stripe.test/cs_1"}
        assert create.call_args[0][0]["metadata"] == {"userId": "user-1", "plan": "starter"}

    def test_checkout_missing_price(self, client, auth_headers):
        resp = client.post("/api/payment", json={}, headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json() == {"error": "Price ID is required"}

    def test_checkout_unknown_price(self, client, auth_headers):
        resp = client.post("/api/payment", json={"priceId": "price_nope"}, headers=auth_headers)
        assert resp.status_code == 400

    def test_verify_payment_grants_credits(self, client, gateway, auth_headers, monkeypatch, db):
        monkeypatch.setattr(
            gateway,
            "retrieve_checkout_session",
            MagicMock(
                return_value={
                    "id": "cs_1",
                    "mode": "payment",
                    "status": "complete",
                    "payment_status": "paid",
                    "payment_intent": "pi_1",
                    "amount_subtotal": 4999,
                    "metadata": {"userId": "user-1", "plan": "business"},
                }
            ),
        )

        resp = client.post("/api/verify-payment", json={"sessionId": "cs_1"}, headers=auth_headers)

        assert resp.status_code == 200
        assert resp.json()["credits"] == {"added": 1000, "total": 1000}
        again = client.post("/api/verify-payment", json={"sessionId": "cs_1"}, headers=auth_headers)
        assert again.json()["alreadyProcessed"] is True

    def test_verify_payment_missing_session(self, client, auth_headers):
        resp = client.post("/api/verify-payment", json={}, headers=auth_headers)
        assert resp.status_code == 400

    def test_portal_without_customer(self, client, auth_headers):
        resp = client.post("/api/customer-portal", headers=auth_headers)
        assert resp.status_code == 400
        assert resp.json() == {"error": "No Stripe customer found"}

    def test_payments_history_empty(self, client, auth_headers):
        resp = client.get("/api/payments", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json() == []


class TestGeneration:
    def test_generate_success(self, gen_client, auth_headers, make_profile, db):
        make_profile("user-1", credits=5)

        resp = gen_client.post(
            "/api/put-logo-to-anything",
            json={"logoUrl": "https://x/logo.png", "logoDescription": "fox", "destinationPrompt": "mug"},
            headers={**auth_headers, "User-Agent": "pytest-agent"},
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["creditsRemaining"] == 3
        assert body["imageUrl"].startswith("https://logos-bucket.s3.us-east-1.amazonaws.com/results/user-1/generated-")
        row = db.query(Generation).one()
        assert row.user_agent == "pytest-agent"

    def test_generate_insufficient_credits(self, gen_client, auth_headers, make_profile, provider):
        make_profile("user-1", credits=1)

        resp = gen_client.post(
            "/api/put-logo-to-anything",
            json={"logoUrl": "https://x/logo.png", "logoDescription": "fox", "destinationPrompt": "mug"},
            headers=auth_headers,
        )

        assert resp.status_code == 403
        assert resp.json() == {
            "error": "Insufficient credits",
            "message": "You need to buy more credits to continue",
            "requiredCredits": 2,
            "currentCredits": 1,
        }
        provider.create_prediction.assert_not_called()

    def test_generate_timeout_is_504_and_refunded(self, gen_client, auth_headers, make_profile, provider, db):
        make_profile("user-1", credits=5)
        provider.wait_for_completion.side_effect = PredictionTimeoutError("timed out")

        resp = gen_client.post(
            "/api/put-logo-to-anything",
            json={"logoUrl": "https://x/logo.png", "logoDescription": "fox", "destinationPrompt": "mug"},
            headers=auth_headers,
        )

        assert resp.status_code == 504
        assert resp.json() == {"error": "Image generation failed"}
        db.expire_all()
        assert db.query(Profile).filter(Profile.id == "user-1").one().remaining_credits == 5

    def test_generate_missing_fields(self, gen_client, auth_headers):
        resp = gen_client.post("/api/put-logo-to-anything", json={"logoUrl": "x"}, headers=auth_headers)
        assert resp.status_code == 400

    def test_upload_image(self, gen_client, auth_headers):
        resp = gen_client.post(
            "/api/upload-images",
            files={"file": ("brand.png", b"\x89PNG", "image/png")},
            data={"imageType": "logo"},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert "/logos/user-1/logo_" in body["imageUrl"]

    def test_upload_rejects_extension(self, gen_client, auth_headers):
        resp = gen_client.post(
            "/api/upload-images",
            files={"file": ("brand.gif", b"GIF89a", "image/gif")},
            headers=auth_headers,
        )
        assert resp.status_code == 400

    def test_upload_reads_no_more_than_limit(self, gen_client, auth_headers, storage, monkeypatch):
        monkeypatch.setattr(settings, "max_file_size_mb", 1)
        received = []
        upload_logo = GenerationService.upload_logo

        def spy(self, user_id, filename, content, **kwargs):
            received.append(len(content))
            return upload_logo(self, user_id, filename, content, **kwargs)

        monkeypatch.setattr(GenerationService, "upload_logo", spy)
        content = b"\x89PNG" + b"0" * (2 * 1024 * 1024)

        resp = gen_client.post(
            "/api/upload-images",
            files={"file": ("brand.png", content, "image/png")},
            headers=auth_headers,
        )

        assert resp.status_code == 400
        assert resp.json() == {"error": "File too large. Maximum size is 1MB"}
        assert received == [1024 * 1024 + 1]
        storage.put_object.assert_not_called()

    def test_list_generations(self, gen_client, auth_headers, make_profile):
        make_profile("user-1", credits=10)
        body = {"logoUrl": "https://x/logo.png", "logoDescription": "fox", "destinationPrompt": "mug"}
        gen_client.post("/api/put-logo-to-anything", json=body, headers=auth_headers)
        gen_client.post("/api/put-logo-to-anything", json=body, headers=auth_headers)

        resp = gen_client.get("/api/generations?limit=1", headers=auth_headers)

        assert resp.status_code == 200
        assert len(resp.json()) == 1
        item = resp.json()[0]
        assert item["logoDescription"] == "fox"
        assert item["creditCost"] == 2
        assert item["resultUrl"].startswith("https://logos-bucket.s3.us-east-1.amazonaws.com/results/user-1/")


class TestProfile:
    def test_profile_created_lazily(self, client, auth_headers, db):
        resp = client.get("/api/profile", headers=auth_headers)

        assert resp.status_code == 200
        body = resp.json()
        assert body["id"] == "user-1"
        assert body["remainingCredits"] == 0
        assert body["subscription"] is None
        assert db.query(Profile).count() == 1


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_ready(self, client):
        assert client.get("/ready").json() == {"status": "ready"}

    def test_request_id_echoed(self, client):
        resp = client.get("/health", headers={"X-Request-Id": "req-123"})
        assert resp.headers["x-request-id"] == "req-123"


class FakePubSub:
    """Replays queued get_message results; an exception instance is raised."""

    def __init__(self, *results):
        self.results = list(results)
        self.channels = []
        self.closed = False

    def subscribe(self, channel):
        self.channels.append(channel)

    def get_message(self, timeout=None):
        result = self.results.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    def close(self):
        self.closed = True


def _data_lines(resp):
    return [json.loads(line[len("data: "):]) for line in resp.text.splitlines() if line.startswith("data: ")]


class TestProfileStream:
    def test_query_token_streams_initial_relayed_and_heartbeat(
        self, client, redis_client, make_profile, monkeypatch
    ):
        make_profile("user-1", credits=4)
        relayed = json.dumps({"type": "profile_changed", "userId": "user-1", "remainingCredits": 84})
        pubsub = FakePubSub(
            {"type": "message", "channel": "profile:user-1", "data": relayed},
            None,
            redis.ConnectionError("connection lost"),
        )
        redis_client.pubsub.return_value = pubsub
        monkeypatch.setattr(settings, "profile_stream_heartbeat_seconds", 0)

        resp = client.get("/api/profile/stream?token=token-user-1")

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        events = _data_lines(resp)
        assert events[0] == {
            "type": "profile_changed",
            "userId": "user-1",
            "remainingCredits": 4,
            "subscriptionStatus": None,
            "subscriptionPlan": None,
        }
        assert events[1]["remainingCredits"] == 84
        assert events[2]["type"] == "heartbeat"
        assert len(events) == 3
        assert pubsub.channels == ["profile:user-1"]
        assert pubsub.closed is True

    def test_stream_requires_token(self, client):
        resp = client.get("/api/profile/stream")
        assert resp.status_code == 401
        assert resp.json() == {"error": "Unauthorized"}

    def test_stream_rejects_bad_query_token(self, client):
        resp = client.get("/api/profile/stream?token=nope")
        assert resp.status_code == 401
