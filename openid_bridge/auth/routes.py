"""
Authentication routes for OpenID Connect login and callback handling.

This module implements the OAuth 2.0 authorization code flow (with PKCE)
against any provider listed in the provider properties file, and hands the
callback to the authentication orchestrator.
"""

import base64
import hashlib
import html
import logging
import secrets
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Header, HTTPException, Query, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse

from ..config import Settings
from ..models import (
    AuthOutcome,
    Authenticated,
    DenyReason,
    PendingEnablement,
    ProviderSummary,
    Rejected,
    RejectionReason,
)
from ..providers import ProviderRegistry
from ..users import UserStore
from .orchestrator import AttemptContext, AuthenticationOrchestrator
from .resolver import NEW_USER_EVENT
from .session import create_session_jwt_for_user, extract_token_from_header, verify_session_jwt
from .tokens import AuthorizationCodeTokenClient

logger = logging.getLogger(__name__)

SESSION_KEYS = ("oauth_state", "oauth_nonce", "code_verifier", "provider_id")


# =============================================================================
# Router Setup
# =============================================================================

auth_router = APIRouter(
    prefix="/auth",
    tags=["authentication"],
)


# =============================================================================
# Application State Accessors
# =============================================================================

def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_registry(request: Request) -> ProviderRegistry:
    return request.app.state.registry


def get_store(request: Request) -> UserStore:
    return request.app.state.store


def get_orchestrator(request: Request) -> AuthenticationOrchestrator:
    return request.app.state.orchestrator


# =============================================================================
# PKCE Helper Functions
# =============================================================================

def generate_code_verifier() -> str:
    """
    Generate a cryptographically random code verifier for PKCE.

    Returns:
        Base64-URL-encoded random string (43 characters)
    """
    verifier_bytes = secrets.token_bytes(32)
    return base64.urlsafe_b64encode(verifier_bytes).decode('utf-8').rstrip('=')


def generate_code_challenge(verifier: str) -> str:
    """S256 code challenge for ``verifier``."""
    digest = hashlib.sha256(verifier.encode('utf-8')).digest()
    return base64.urlsafe_b64encode(digest).decode('utf-8').rstrip('=')


# =============================================================================
# Provider Listing
# =============================================================================

@auth_router.get("/providers", response_model=List[ProviderSummary])
async def list_providers(request: Request) -> List[ProviderSummary]:
    """Enabled providers, in the order of the ``enabled`` property."""
    registry = get_registry(request)
    summaries = []
    for provider_id in registry.provider_ids():
        config = registry.get_config(provider_id)
        summaries.append(ProviderSummary(
            id=provider_id,
            name=config.name or provider_id,
            login_url=f"/auth/login/{provider_id}",
        ))
    return summaries


# =============================================================================
# Login Endpoint
# =============================================================================

@auth_router.get("/login/{provider_id}", response_class=RedirectResponse)
async def login(provider_id: str, request: Request):
    """
    Start the authorization code flow for one provider.

    This endpoint:
    1. Rejects unknown or disabled providers with 404
    2. Generates state, nonce and a PKCE verifier/challenge pair
    3. Stores state, nonce, verifier and provider id in the session
    4. Redirects to the provider's authorization endpoint
    """
    registry = get_registry(request)

    if not registry.is_enabled(provider_id):
        known = registry.is_known(provider_id)
        logger.warning(
            "Login requested for unavailable provider",
            extra={"provider_id": provider_id, "known": known},
        )
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Provider is disabled: {provider_id}" if known else f"Unknown provider: {provider_id}",
        )

    provider = registry.get_config(provider_id)
    if not provider.user_authorization_uri or not provider.client_id:
        logger.error(
            "Provider is missing userAuthUri or clientId",
            extra={"provider_id": provider_id},
        )
        return _render_error_page(
            title="Provider Not Configured",
            message="This sign-in option is not fully configured. Please contact your administrator.",
            show_retry=False,
            status_code=500,
        )

    state = secrets.token_urlsafe(32)
    nonce = secrets.token_urlsafe(32)
    code_verifier = generate_code_verifier()

    request.session["oauth_state"] = state
    request.session["oauth_nonce"] = nonce
    request.session["code_verifier"] = code_verifier
    request.session["provider_id"] = provider_id

    params = {
        "client_id": provider.client_id,
        "response_type": "code",
        "redirect_uri": provider.redirect_uri,
        "scope": " ".join(provider.scopes),
        "state": state,
        "nonce": nonce,
        "code_challenge": generate_code_challenge(code_verifier),
        "code_challenge_method": "S256",
    }
    separator = "&" if "?" in provider.user_authorization_uri else "?"
    authorization_url = f"{provider.user_authorization_uri}{separator}{urlencode(params)}"

    logger.info("Redirecting to OpenID provider", extra={"provider_id": provider_id})
    return RedirectResponse(url=authorization_url, status_code=302)


# =============================================================================
# Callback Endpoint
# =============================================================================

@auth_router.get("/callback", response_class=HTMLResponse)
async def callback(
    request: Request,
    code: Optional[str] = Query(None, description="Authorization code from the provider"),
    state: Optional[str] = Query(None, description="State parameter for CSRF protection"),
    error: Optional[str] = Query(None, description="Error code if authentication failed"),
    error_description: Optional[str] = Query(None, description="Error description"),
):
    """
    Handle the provider's redirect back to the bridge.

    Validates state, runs one authentication attempt, completes the login for
    newly provisioned users and renders the outcome page.
    """
    provider_id = request.session.get("provider_id")

    if error:
        return _render_error_page(
            title="Authentication Failed",
            message=f"Unable to authenticate: {error_description or error}",
            provider_id=provider_id,
        )

    if not code or not state:
        return _render_error_page(
            title="Invalid Request",
            message="Missing required parameters (code or state)",
            provider_id=provider_id,
        )

    expected_state = request.session.get("oauth_state")
    if not expected_state or not provider_id or not secrets.compare_digest(state, expected_state):
        logger.warning("OAuth state mismatch on callback", extra={"provider_id": provider_id})
        return _render_error_page(
            title="Security Error",
            message="Invalid state parameter. This may be a CSRF attack or expired session.",
            provider_id=provider_id,
        )

    settings = get_app_settings(request)
    registry = get_registry(request)
    code_verifier = request.session.get("code_verifier")
    nonce = request.session.get("oauth_nonce")

    for key in SESSION_KEYS:
        request.session.pop(key, None)

    token_source = AuthorizationCodeTokenClient(
        registry.get_config(provider_id),
        code=code,
        code_verifier=code_verifier,
        http_client=getattr(request.app.state, "http_client", None),
        timeout=settings.HTTP_TIMEOUT_SECONDS,
    )
    outcome = await get_orchestrator(request).authenticate(
        AttemptContext(provider_id=provider_id, token_source=token_source, nonce=nonce)
    )

    await complete_login(outcome, get_store(request))
    return render_outcome(outcome, settings)


async def complete_login(outcome: AuthOutcome, store: UserStore) -> None:
    """
    Save a user provisioned during the attempt that is not yet in the store.

    Runs for both Authenticated and PendingEnablement; a failed save is
    logged and does not change the outcome.
    """
    if isinstance(outcome, Rejected) or not outcome.provisioned or outcome.persisted:
        return

    try:
        await store.save(outcome.user, None, True, NEW_USER_EVENT)
    except Exception:
        logger.warning(
            "Could not save provisioned user after login",
            extra={"username": outcome.user.username, "provider_id": outcome.provider_id},
            exc_info=True,
        )


def render_outcome(outcome: AuthOutcome, settings: Settings) -> HTMLResponse:
    if isinstance(outcome, Authenticated):
        token = create_session_jwt_for_user(outcome.user, outcome.provider_id, settings)
        return _render_success_page(
            token=token,
            username=outcome.user.username,
            user_email=outcome.user.email,
        )

    if isinstance(outcome, PendingEnablement):
        return _render_error_page(
            title="Account Pending",
            message=(
                f"The account {outcome.username} is not enabled yet. "
                "Please contact your administrator to have it enabled."
            ),
            show_retry=False,
            status_code=403,
        )

    if outcome.reason == RejectionReason.POLICY_DENIED:
        if outcome.deny_reason == DenyReason.DOMAIN_NOT_ALLOWED:
            message = "Your email domain is not permitted to sign in with this provider."
        else:
            message = "This sign-in option is not enabled."
        return _render_error_page(
            title="Access Denied",
            message=message,
            show_retry=False,
            status_code=403,
        )

    if outcome.reason == RejectionReason.UPSTREAM_TIMEOUT:
        return _render_error_page(
            title="Provider Timeout",
            message="The identity provider did not respond in time. Please try again.",
            provider_id=outcome.provider_id,
            status_code=504,
        )

    return _render_error_page(
        title="Authentication Failed",
        message="We could not sign you in with this provider. Please try again.",
        provider_id=outcome.provider_id,
        status_code=401,
    )


# =============================================================================
# Session Introspection
# =============================================================================

@auth_router.get("/me")
async def me(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> Dict[str, Any]:
    """Claims of the caller's session JWT."""
    token = extract_token_from_header(authorization)
    return verify_session_jwt(token, get_app_settings(request))


# =============================================================================
# HTML Response Templates
# =============================================================================

_PAGE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
    <style>
        body {{ font-family: -apple-system, 'Segoe UI', Roboto, Arial, sans-serif; background: #f3f4f6;
               display: flex; align-items: center; justify-content: center; min-height: 100vh; }}
        .container {{ background: white; border-radius: 12px; padding: 40px; max-width: 520px; text-align: center; }}
        h1 {{ color: #1f2937; font-size: 24px; }}
        .message {{ color: #6b7280; line-height: 1.6; }}
        code {{ display: block; word-break: break-all; background: #f3f4f6; padding: 12px; border-radius: 8px; }}
        .button {{ display: inline-block; background: #2563eb; color: white; padding: 12px 28px;
                   border-radius: 8px; text-decoration: none; }}
    </style>
</head>
<body>
    <div class="container">
        {body}
    </div>
</body>
</html>
"""


def _render_success_page(token: str, username: str, user_email: str) -> HTMLResponse:
    """
    Render success page carrying the session token.

    Args:
        token: Session JWT
        username: Local username
        user_email: User's email address
    """
    body = f"""
        <h1>Login Successful</h1>
        <p class="message">Signed in as {html.escape(username)} ({html.escape(user_email)})</p>
        <code id="session-token">{html.escape(token)}</code>
    """
    return HTMLResponse(content=_PAGE.format(title="Login Successful", body=body), status_code=200)


def _render_error_page(
    title: str,
    message: str,
    show_retry: bool = True,
    status_code: int = 400,
    provider_id: Optional[str] = None,
) -> HTMLResponse:
    """
    Render error page for authentication failures.

    Args:
        title: Error title
        message: Error message (no token or claim values)
        show_retry: Whether to show a retry link; needs a provider id
        status_code: HTTP status code
        provider_id: Provider the retry link starts a new login with
    """
    retry_button = ""
    if show_retry and provider_id:
        retry_button = f'<a href="/auth/login/{html.escape(provider_id)}" class="button">Try Again</a>'

    body = f"""
        <h1>{html.escape(title)}</h1>
        <p class="message">{html.escape(message)}</p>
        {retry_button}
        <p class="message"><small>Need help? Contact your system administrator.</small></p>
    """
    return HTMLResponse(content=_PAGE.format(title=html.escape(title), body=body), status_code=status_code)
