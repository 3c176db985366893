"""
tests/test_health.py -- Integration tests for GET /api/v1/health.
"""

from __future__ import annotations

from api.main import API_VERSION


def test_health_returns_200_with_version(api):
    resp = api.client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "version": API_VERSION}


def test_health_no_auth_required(api):
    """Health endpoint is accessible without any authentication headers."""
    api.client.cookies.clear()
    resp = api.client.get("/api/v1/health", headers={})
    assert resp.status_code == 200


def test_unknown_route_uses_error_envelope(api):
    resp = api.client.get("/api/v1/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "http_404"
