"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

Two token sources are checked in priority order:
  1. Authorization: Bearer <token> header -- API clients and the SPA.
  2. JWT cookie ("access_token") -- set by the Google sign-in callback.

Both converge on CredentialService.verify_session(), which checks signature,
expiry, the token blacklist, and the account's revocation floor.

get_session() returns the validated claims, get_current_account() loads the
account behind them, and require_capability() builds a dependency that also
runs the capability evaluator at type level. Instance-level checks
("self only", "own station") happen in the service once the record is loaded.

Failures raise AuthError subclasses; the AuthError handler in api/main.py
renders them as 401 / 403 with the standard error envelope.

Layer rule: no imports from api/. This module may import from fastapi because
it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, Request

from auth.access import Action, Resource, ensure_can
from auth.errors import SessionRejection, UnauthorizedError
from auth.models import Account, SessionClaims
from auth.service import CredentialService


def get_credential_service(request: Request) -> CredentialService:
    return request.app.state.credential_service


def extract_token(request: Request) -> str | None:
    """Bearer header first, then the access_token cookie."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return request.cookies.get("access_token")


def get_session(request: Request) -> SessionClaims:
    """Require a valid, unrevoked session token.

    Use as a FastAPI dependency:
        @router.post("/logout")
        def route(claims: SessionClaims = Depends(get_session)): ...
    """
    token = extract_token(request)
    if not token:
        raise UnauthorizedError(SessionRejection.MISSING)
    return get_credential_service(request).verify_session(token)


def get_current_account(request: Request, claims: SessionClaims = Depends(get_session)) -> Account:
    return get_credential_service(request).current_account(claims)


def require_capability(action: Action, resource: Resource) -> Callable[..., Account]:
    """Dependency factory: authenticated AND allowed (action, resource) at type level.

    Use as a FastAPI dependency:
        @router.post("/invitations")
        def route(actor: Account = Depends(require_capability(Action.CREATE, Resource.USER))): ...
    """

    def _dependency(account: Account = Depends(get_current_account)) -> Account:
        ensure_can(account, action, resource)
        return account

    return _dependency
