"""
api/routes/v1/auth.py -- Credential lifecycle REST endpoints.

Routes:
  POST /api/v1/auth/register                      -- direct registration; returns a session
  POST /api/v1/auth/register/init                 -- check uniqueness, email a registration code
  POST /api/v1/auth/register/verify               -- verify code, create verified account
  POST /api/v1/auth/register/invitation/{token}   -- register from an invitation
  GET  /api/v1/auth/invitations/{token}/validate  -- check an invitation before showing the form
  POST /api/v1/auth/login                         -- password login; sets JWT cookie
  POST /api/v1/auth/logout                        -- blacklist the presented token; clears cookie
  POST /api/v1/auth/logout-all                    -- revoke every session of the caller
  GET  /api/v1/auth/me                            -- current account + capabilities
  POST /api/v1/auth/password                      -- authenticated password change
  POST /api/v1/auth/forgot-password               -- email a reset code (generic response)
  POST /api/v1/auth/reset-password                -- reset with code; revokes all sessions
  GET  /api/v1/auth/google                        -- redirect to Google
  GET  /api/v1/auth/google/callback               -- finish Google sign-in; sets cookie

Security:
  POST /login, /forgot-password and /reset-password carry per-IP slowapi
  limits on top of the service's own per-email reset limit.
  Cache-Control: no-store on every response that carries a token.
  Endpoints that hash passwords are plain def so bcrypt runs in the threadpool.

Errors raised by the service are AuthError subclasses; the handler in
api/main.py maps them to status codes.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.concurrency import run_in_threadpool

from api.limiter import limiter
from api.models import (
    AuthResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    InvitationRegisterRequest,
    InvitationValidationResponse,
    LoginRequest,
    MeResponse,
    MessageResponse,
    RegisterRequest,
    RegisterVerifyRequest,
    ResetPasswordRequest,
)
from auth.dependencies import extract_token, get_credential_service, get_current_account, get_session
from auth.models import Account, AuthResult, InvitationProfile, RegistrationProfile, SessionClaims
from auth.oauth import google_profile_from_token
from auth.service import CredentialService
from auth.tokens import set_auth_cookie
from core.config import get_settings

logger = logging.getLogger("petrosmart.api.auth")

_settings = get_settings()

# Auth policy:
# - register*, login, forgot-password, reset-password, google*, invitation validate: public
# - logout, logout-all, me, password:                                               requires a session
router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _client(request: Request) -> tuple[str | None, str | None]:
    """(source address, user agent) for audit records."""
    return (request.client.host if request.client else None, request.headers.get("User-Agent"))


def _session_response(result: AuthResult, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse.from_result(result).model_dump(mode="json"),
    )
    set_auth_cookie(resp, result.access_token, result.expires_in)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _profile(body: RegisterRequest) -> RegistrationProfile:
    return RegistrationProfile(
        username=body.username,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
    )


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(
    request: Request,
    body: RegisterRequest,
    service: CredentialService = Depends(get_credential_service),
) -> JSONResponse:
    """Create an account with the default role and sign it in."""
    source, agent = _client(request)
    return _session_response(service.register(_profile(body), source, agent), status_code=201)


@router.post("/auth/register/init", response_model=MessageResponse)
def register_init(
    body: RegisterRequest,
    service: CredentialService = Depends(get_credential_service),
) -> MessageResponse:
    """Start OTP-gated registration. Nothing is created until /register/verify succeeds."""
    return MessageResponse(message=service.register_with_otp(_profile(body)))


@router.post("/auth/register/verify", response_model=AuthResponse, status_code=201)
def register_verify(
    request: Request,
    body: RegisterVerifyRequest,
    service: CredentialService = Depends(get_credential_service),
) -> JSONResponse:
    source, agent = _client(request)
    result = service.complete_otp_registration(body.email, body.code, _profile(body), source, agent)
    return _session_response(result, status_code=201)


@router.get("/auth/invitations/{token}/validate", response_model=InvitationValidationResponse)
def validate_invitation(
    token: str,
    service: CredentialService = Depends(get_credential_service),
) -> InvitationValidationResponse:
    """Check an invitation token so the signup page can prefill email and role."""
    invitation = service.invitations.validate(token)
    return InvitationValidationResponse(
        email=invitation.email,
        role=invitation.role,
        station_id=invitation.station_id,
        expires_at=invitation.expires_at.isoformat(),
    )


@router.post("/auth/register/invitation/{token}", response_model=AuthResponse, status_code=201)
def register_with_invitation(
    request: Request,
    token: str,
    body: InvitationRegisterRequest,
    service: CredentialService = Depends(get_credential_service),
) -> JSONResponse:
    source, agent = _client(request)
    profile = InvitationProfile(
        username=body.username,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        phone=body.phone,
    )
    return _session_response(service.register_with_invitation(token, profile, source, agent), status_code=201)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=AuthResponse)
def login(
    request: Request,
    body: LoginRequest,
    service: CredentialService = Depends(get_credential_service),
) -> JSONResponse:
    """Authenticate with username and password; set JWT cookie.

    Wrong username and wrong password produce the same 401 body.
    """
    source, agent = _client(request)
    return _session_response(service.login(body.username, body.password, source, agent))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(
    request: Request,
    claims: SessionClaims = Depends(get_session),
    service: CredentialService = Depends(get_credential_service),
) -> JSONResponse:
    """Blacklist the presented token for the rest of its lifetime and clear the cookie."""
    service.logout(extract_token(request))
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie("access_token")
    return resp


@router.post("/auth/logout-all", response_model=MessageResponse)
def logout_all(
    request: Request,
    account: Account = Depends(get_current_account),
    service: CredentialService = Depends(get_credential_service),
) -> JSONResponse:
    """Revoke every token issued to the caller so far, including this one."""
    source, _ = _client(request)
    service.logout_everywhere(account.id, source)
    resp = JSONResponse(content={"message": "All sessions revoked."})
    resp.delete_cookie("access_token")
    return resp


@router.get("/auth/me", response_model=MeResponse)
def me(account: Account = Depends(get_current_account)) -> MeResponse:
    """Return the current account and what it may do at type level."""
    return MeResponse.from_account(account)


# ---------------------------------------------------------------------------
# Passwords
# ---------------------------------------------------------------------------


@router.post("/auth/password", response_model=AuthResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    account: Account = Depends(get_current_account),
    service: CredentialService = Depends(get_credential_service),
) -> JSONResponse:
    """Change the caller's password. Other sessions are revoked; a fresh one is returned."""
    source, agent = _client(request)
    result = service.change_password(account.id, body.current_password, body.new_password, source, agent)
    return _session_response(result)


@limiter.limit(_settings.forgot_password_rate_limit)
@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(
    request: Request,
    body: ForgotPasswordRequest,
    service: CredentialService = Depends(get_credential_service),
) -> MessageResponse:
    """Email a reset code. The response is the same whether or not the email is registered."""
    source, agent = _client(request)
    return MessageResponse(message=service.forgot_password(body.email, source, agent))


@limiter.limit(_settings.reset_password_rate_limit)
@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(
    request: Request,
    body: ResetPasswordRequest,
    service: CredentialService = Depends(get_credential_service),
) -> MessageResponse:
    source, agent = _client(request)
    return MessageResponse(message=service.reset_password(body.email, body.code, body.new_password, source, agent))


# ---------------------------------------------------------------------------
# Google sign-in
# ---------------------------------------------------------------------------


def _google_client(request: Request):
    if not _settings.google_enabled:
        raise HTTPException(
            status_code=404,
            detail={"code": "provider_disabled", "message": "Google sign-in is not configured."},
        )
    return request.app.state.oauth.create_client("google")


@router.get("/auth/google")
async def google_login(request: Request):
    """Redirect the browser to Google's authorization page."""
    client = _google_client(request)
    redirect_uri = str(request.url_for("google_callback"))
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/google/callback", name="google_callback")
async def google_callback(request: Request) -> RedirectResponse:
    """Finish Google sign-in: exchange the code, require a verified email, issue a session.

    Any failure redirects back to the frontend login page with ?error=oauth_failed.
    """
    client = _google_client(request)
    service: CredentialService = request.app.state.credential_service
    failed = RedirectResponse(f"{_settings.frontend_url}/login?error=oauth_failed", status_code=302)

    try:
        token = await client.authorize_access_token(request)
    except OAuthError:
        logger.exception("Google token exchange failed")
        return failed

    try:
        profile = google_profile_from_token(token)
    except ValueError:
        logger.warning("Google sign-in rejected: unverified or missing email")
        return failed

    source, agent = _client(request)
    result = await run_in_threadpool(service.federated_login, profile, source, agent)
    resp = RedirectResponse(f"{_settings.frontend_url}/auth/callback", status_code=302)
    set_auth_cookie(resp, result.access_token, result.expires_in)
    resp.headers["Cache-Control"] = "no-store"
    return resp
