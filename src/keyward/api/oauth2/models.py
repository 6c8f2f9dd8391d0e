# OAuth2 data models.
# Created: 2026-10-19

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime

AUTHORIZATION_CODE = "authorization_code"
REFRESH_TOKEN = "refresh_token"
SUPPORTED_GRANT_TYPES = (AUTHORIZATION_CODE, REFRESH_TOKEN)
PKCE_METHOD = "S256"
SUPPORTED_AUTH_METHODS = ("client_secret_basic", "client_secret_post")


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class OAuthClient:
    """Dynamically registered OAuth2 client. Immutable once stored."""

    client_id: str
    client_secret_hash: str
    redirect_uris: list[str]
    grant_types: list[str] = field(default_factory=lambda: list(SUPPORTED_GRANT_TYPES))
    client_name: str | None = None
    created_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class AuthorizationCode:
    """Single-use authorization code bound to a PKCE challenge."""

    code: str
    client_id: str
    redirect_uri: str
    code_challenge: str
    code_challenge_method: str
    upstream_credential_encrypted: str
    expires_at: datetime
    state: str | None = None
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at


@dataclass(frozen=True)
class RefreshToken:
    """Refresh token record, keyed by the SHA-256 of the token value."""

    token_hash: str
    client_id: str
    upstream_credential_encrypted: str
    scope: str
    expires_at: datetime
    created_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at


@dataclass(frozen=True)
class VerifiedAccess:
    """What a valid bearer token resolves to.

    Handed explicitly to whatever forwards the request upstream; never parked in
    module state.
    """

    upstream_credential: str = field(repr=False)
    client_id: str
    scope: str
