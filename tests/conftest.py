# Shared fixtures: isolated home directory, key material, mocked upstream.
# Created: 2026-10-19

import base64
import hashlib
import secrets

import httpx
import pytest

from keyward.api.oauth2.server import AuthorizationServer, reset_oauth_server
from keyward.api.oauth2.upstream import UpstreamVerifier
from keyward.config import Settings, reset_settings
from keyward.security.audit import reset_audit_logger
from keyward.security.rate_limiter import reset_all

TEST_ENCRYPTION_KEY = "00112233445566778899aabbccddeeff" * 2
TEST_JWT_SECRET = "test-signing-secret-0123456789-abcdefghijklmnop"
TEST_ISSUER = "https://auth.example.com"
VALID_API_KEY = "wf-valid-api-key"
UPSTREAM_URL = "https://upstream.example/api/v1/targets"


def make_pkce_pair():
    """Generate a PKCE code_verifier and code_challenge pair."""
    verifier = secrets.token_urlsafe(32)
    challenge = (
        base64.urlsafe_b64encode(hashlib.sha256(verifier.encode()).digest())
        .rstrip(b"=")
        .decode()
    )
    return verifier, challenge


def upstream_handler(request: httpx.Request) -> httpx.Response:
    if request.headers.get("authorization") == f"Bearer {VALID_API_KEY}":
        return httpx.Response(200, json={"targets": []})
    return httpx.Response(401, json={"error": "unauthorized"})


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path, monkeypatch):
    """Point every singleton at a throwaway home directory."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("KEYWARD_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("KEYWARD_ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)
    monkeypatch.setenv("KEYWARD_JWT_SECRET", TEST_JWT_SECRET)
    monkeypatch.setenv("KEYWARD_ISSUER", TEST_ISSUER)
    monkeypatch.setenv("KEYWARD_RATE_LIMIT_ENABLED", "false")
    monkeypatch.delenv("KEYWARD_REGISTRATION_SECRET", raising=False)
    reset_settings()
    reset_audit_logger()
    reset_oauth_server()
    reset_all()
    yield
    reset_settings()
    reset_audit_logger()
    reset_oauth_server()
    reset_all()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        home=str(tmp_path / "home"),
        issuer=TEST_ISSUER,
        encryption_key=TEST_ENCRYPTION_KEY,
        jwt_secret=TEST_JWT_SECRET,
        upstream_validation_url=UPSTREAM_URL,
        rate_limit_enabled=False,
    )


@pytest.fixture
def upstream():
    return UpstreamVerifier(UPSTREAM_URL, transport=httpx.MockTransport(upstream_handler))


@pytest.fixture
def server(settings, upstream, monkeypatch):
    import keyward.api.oauth2.server as mod

    srv = AuthorizationServer(settings=settings, upstream=upstream)
    monkeypatch.setattr(mod, "_server", srv)
    return srv
