"""
auth/oauth.py -- Authlib OAuth/OIDC configuration for Google sign-in.

Google is registered only when both GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET
are configured. Routes check settings.google_enabled before touching the
client.

Security notes:
  Email verification is mandatory. google_profile_from_token() raises
  ValueError unless the id_token says email_verified=true -- federated_login()
  links accounts by email, so an unverified address could hijack an existing
  account.

  The OAuth state parameter (CSRF protection) is handled by authlib through
  Starlette SessionMiddleware. The session stores the state between the
  authorization redirect and the callback.

Layer rule: no imports from api/. Import from core/ is allowed -- core/ is the
kernel layer.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from auth.models import FederatedProfile
from core.config import get_settings

logger = logging.getLogger("petrosmart.auth.oauth")

GOOGLE_DISCOVERY_URL = "https://accounts.google.com/.well-known/openid-configuration"

oauth = OAuth()

_cfg = get_settings()

if _cfg.google_enabled:
    oauth.register(
        name="google",
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url=GOOGLE_DISCOVERY_URL,
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Google OAuth provider registered")


def google_profile_from_token(token: dict) -> FederatedProfile:
    """Build a FederatedProfile from the token dict authlib returns after code exchange.

    Raises:
        ValueError: no userinfo, unverified email, or missing email/sub claims.
            The callback route treats any of these as a failed sign-in.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError("google OAuth: no userinfo in token response")

    # Omitted email_verified counts as unverified.
    if not userinfo.get("email_verified", False):
        raise ValueError(
            "google OAuth: email is not verified. "
            "The provider must confirm email ownership before login is allowed."
        )

    email = userinfo.get("email")
    subject = userinfo.get("sub")
    if not email or not subject:
        raise ValueError("google OAuth: missing email or sub claim in userinfo")

    return FederatedProfile(
        subject=str(subject),
        email=email,
        first_name=userinfo.get("given_name", "") or "",
        last_name=userinfo.get("family_name", "") or "",
    )
