"""
Supabase Auth (GoTrue) REST client using httpx sync client.
Only the calls the API needs: user lookup by token, PKCE code exchange, logout.
"""
import logging
from dataclasses import dataclass
from typing import Any

import httpx

from app.core.errors import AuthError

logger = logging.getLogger(__name__)


@dataclass
class AuthUser:
    id: str
    email: str | None
    access_token: str


@dataclass
class AuthSession:
    access_token: str
    refresh_token: str | None
    expires_in: int | None
    user: AuthUser


class SupabaseAuthClient:
    def __init__(
        self,
        base_url: str,
        anon_key: str,
        client: httpx.Client | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._auth_url = f"{base_url.rstrip('/')}/auth/v1"
        self._anon_key = anon_key
        self._client = client
        self.timeout = timeout

    @property
    def client(self) -> httpx.Client:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout)
        return self._client

    def _headers(self, access_token: str | None = None) -> dict[str, str]:
        headers = {"apikey": self._anon_key}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return headers

    @staticmethod
    def _error_message(resp: httpx.Response) -> str:
        try:
            data = resp.json()
        except ValueError:
            return resp.text or f"HTTP {resp.status_code}"
        return (
            data.get("msg")
            or data.get("error_description")
            or data.get("message")
            or data.get("error")
            or f"HTTP {resp.status_code}"
        )

    def get_user(self, access_token: str) -> AuthUser:
        """Resolve a bearer token to its user. Raises AuthError if the provider rejects it."""
        try:
            resp = self.client.get(f"{self._auth_url}/user", headers=self._headers(access_token))
        except httpx.HTTPError as e:
            logger.warning("auth_provider_unreachable", extra={"error": str(e)})
            raise AuthError("Failed to fetch user") from e
        if resp.status_code != 200:
            raise AuthError(self._error_message(resp))
        data = resp.json()
        if not data.get("id"):
            raise AuthError("User not found")
        return AuthUser(id=data["id"], email=data.get("email"), access_token=access_token)

    def exchange_code_for_session(self, code: str, code_verifier: str | None = None) -> AuthSession:
        body: dict[str, Any] = {"auth_code": code}
        if code_verifier:
            body["code_verifier"] = code_verifier
        try:
            resp = self.client.post(
                f"{self._auth_url}/token",
                params={"grant_type": "pkce"},
                headers=self._headers(),
                json=body,
            )
        except httpx.HTTPError as e:
            raise AuthError(str(e)) from e
        if resp.status_code != 200:
            raise AuthError(self._error_message(resp))
        data = resp.json()
        user = data.get("user") or {}
        return AuthSession(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_in=data.get("expires_in"),
            user=AuthUser(id=user.get("id", ""), email=user.get("email"), access_token=data["access_token"]),
        )

    def sign_out(self, access_token: str) -> None:
        """Revoke the session server-side. Already-invalid tokens are not an error."""
        try:
            resp = self.client.post(f"{self._auth_url}/logout", headers=self._headers(access_token))
        except httpx.HTTPError as e:
            raise AuthError(str(e)) from e
        if resp.status_code not in (200, 204, 401, 404):
            raise AuthError(self._error_message(resp))
