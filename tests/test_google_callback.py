"""
tests/test_google_callback.py -- Google sign-in callback and userinfo parsing.

The callback is exercised through the real ASGI stack with the authlib client
replaced by a mock, and with follow_redirects=False so the Location header
can be asserted directly.

Coverage:
  - Verified userinfo -> 302 to {frontend}/auth/callback with a session cookie
  - Token exchange failure or unverified email -> 302 to /login?error=oauth_failed
  - google_profile_from_token() rejects missing userinfo, unverified email,
    and missing claims
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from authlib.integrations.starlette_client import OAuthError

import api.routes.v1.auth as auth_routes
from auth.oauth import google_profile_from_token


def _userinfo(**overrides) -> dict:
    info = {
        "sub": "google-123",
        "email": "Pump.Owner@example.com",
        "email_verified": True,
        "given_name": "Pump",
        "family_name": "Owner",
    }
    info.update(overrides)
    return {"userinfo": info}


@pytest.fixture
def google(api, monkeypatch):
    """Enable Google for the route module and return the mocked authlib client."""
    settings = auth_routes._settings.model_copy(update={"google_client_id": "cid", "google_client_secret": "csecret"})
    monkeypatch.setattr(auth_routes, "_settings", settings)
    client = MagicMock()
    registry = MagicMock()
    registry.create_client.return_value = client
    monkeypatch.setattr(api.client.app.state, "oauth", registry)
    api.client.cookies.clear()
    return client


class TestCallback:
    def test_verified_identity_gets_a_session(self, api, google) -> None:
        google.authorize_access_token = AsyncMock(return_value=_userinfo())

        resp = api.client.get("/api/v1/auth/google/callback", follow_redirects=False)

        assert resp.status_code == 302
        assert resp.headers["location"] == f"{auth_routes._settings.frontend_url}/auth/callback"
        assert "access_token" in resp.cookies
        account = api.service.accounts.find_by_federation_id("google-123")
        assert account.email == "pump.owner@example.com"

    def test_exchange_failure_redirects_to_login(self, api, google) -> None:
        google.authorize_access_token = AsyncMock(side_effect=OAuthError(description="access_denied"))

        resp = api.client.get("/api/v1/auth/google/callback", follow_redirects=False)

        assert resp.status_code == 302
        assert resp.headers["location"].endswith("/login?error=oauth_failed")

    def test_unverified_email_redirects_to_login(self, api, google) -> None:
        google.authorize_access_token = AsyncMock(return_value=_userinfo(sub="google-456", email_verified=False))

        resp = api.client.get("/api/v1/auth/google/callback", follow_redirects=False)

        assert resp.headers["location"].endswith("/login?error=oauth_failed")
        assert api.service.accounts.find_by_federation_id("google-456") is None


class TestProfileFromToken:
    def test_builds_profile(self) -> None:
        profile = google_profile_from_token(_userinfo())
        assert profile.subject == "google-123"
        assert profile.first_name == "Pump"

    @pytest.mark.parametrize(
        "token",
        [
            {},
            _userinfo(email_verified=False),
            {"userinfo": {"sub": "x", "email_verified": True}},
            {"userinfo": {"email": "a@example.com", "email_verified": True}},
        ],
    )
    def test_rejects_unusable_tokens(self, token) -> None:
        with pytest.raises(ValueError):
            google_profile_from_token(token)
