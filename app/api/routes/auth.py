"""
Auth routes backed by Supabase: OAuth/magic-link callback (PKCE code exchange),
sign-out, and a session introspection endpoint for debugging the client.
"""
import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import RedirectResponse

from app.api.deps import get_auth_client
from app.core.config import settings
from app.core.errors import AuthError
from app.services.auth.supabase import SupabaseAuthClient

logger = logging.getLogger("auth")

router = APIRouter(tags=["auth"])


def _error_redirect(message: str) -> RedirectResponse:
    site = settings.site_url.rstrip("/")
    return RedirectResponse(f"{site}/auth/auth-code-error?error={quote(message)}", status_code=303)


def _safe_next(next_path: str | None) -> str:
    """Only same-site relative paths; anything else goes to the home page."""
    if not next_path or not next_path.startswith("/") or next_path.startswith("//"):
        return "/"
    return next_path


def _bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization") or ""
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def _clear_session_cookies(response) -> None:
    for name in (settings.auth_access_cookie, settings.auth_refresh_cookie, settings.auth_code_verifier_cookie):
        response.delete_cookie(name, path="/")


@router.get("/auth/callback")
def auth_callback(
    request: Request,
    code: str | None = Query(None),
    next: str | None = Query("/"),
    error: str | None = Query(None),
    error_description: str | None = Query(None),
    auth: SupabaseAuthClient = Depends(get_auth_client),
):
    if error:
        logger.warning("auth_callback_provider_error", extra={"error": error_description or error})
        return _error_redirect(error_description or error)
    if not code:
        return _error_redirect("No authorization code provided")

    verifier = request.cookies.get(settings.auth_code_verifier_cookie)
    try:
        session = auth.exchange_code_for_session(code, verifier)
    except AuthError as e:
        logger.warning("auth_code_exchange_failed", extra={"error": e.message})
        return _error_redirect(e.message)

    response = RedirectResponse(f"{settings.site_url.rstrip('/')}{_safe_next(next)}", status_code=303)
    cookie_args = {
        "httponly": True,
        "secure": settings.auth_cookie_secure,
        "samesite": "lax",
        "path": "/",
    }
    response.set_cookie(
        settings.auth_access_cookie,
        session.access_token,
        max_age=session.expires_in or 3600,
        **cookie_args,
    )
    if session.refresh_token:
        response.set_cookie(settings.auth_refresh_cookie, session.refresh_token, **cookie_args)
    response.delete_cookie(settings.auth_code_verifier_cookie, path="/")
    logger.info("auth_callback_success", extra={"user_id": session.user.id})
    return response


@router.post("/auth/signout")
def sign_out(request: Request, auth: SupabaseAuthClient = Depends(get_auth_client)):
    """Revoke the session at the provider (best effort) and clear cookies."""
    token = _bearer_token(request) or request.cookies.get(settings.auth_access_cookie)
    if token:
        try:
            auth.sign_out(token)
        except AuthError as e:
            logger.warning("auth_signout_failed", extra={"error": e.message})
    response = RedirectResponse(f"{settings.site_url.rstrip('/')}/", status_code=303)
    _clear_session_cookies(response)
    return response


@router.get("/api/verify-session")
def verify_session(request: Request, auth: SupabaseAuthClient = Depends(get_auth_client)) -> dict:
    """Introspection of the caller's session. Never fails; reports what it found."""
    header_token = _bearer_token(request)
    cookie_token = request.cookies.get(settings.auth_access_cookie)
    token = header_token or cookie_token
    auth_method = "header" if header_token else ("cookie" if cookie_token else None)

    user_id = None
    auth_error = None
    if token:
        try:
            user_id = auth.get_user(token).id
        except AuthError as e:
            auth_error = e.message
    else:
        auth_error = "No session token"

    return {
        "isAuthenticated": user_id is not None,
        "userId": user_id,
        "authMethod": auth_method,
        "authError": auth_error,
        "hasAuthHeader": header_token is not None,
        "cookieCount": len(request.cookies),
        "cookieNames": sorted(request.cookies.keys()),
    }
