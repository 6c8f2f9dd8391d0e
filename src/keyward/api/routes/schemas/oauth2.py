# OAuth2 schemas.
# Created: 2026-10-19

from __future__ import annotations

from pydantic import BaseModel, Field


class RegistrationRequest(BaseModel):
    """Dynamic client registration request (RFC 7591 §2)."""

    client_name: str | None = Field(None, max_length=200)
    redirect_uris: list[str] = Field(..., min_length=1, max_length=20)
    grant_types: list[str] | None = None
    response_types: list[str] | None = None
    token_endpoint_auth_method: str | None = None
    scope: str | None = None


class RegistrationResponse(BaseModel):
    """Registered client. ``client_secret`` is shown only here, once."""

    client_id: str
    client_secret: str
    client_id_issued_at: int
    client_secret_expires_at: int = 0
    client_name: str | None = None
    redirect_uris: list[str]
    grant_types: list[str]
    response_types: list[str] = ["code"]
    token_endpoint_auth_method: str = "client_secret_basic"
    scope: str | None = None


class TokenResponse(BaseModel):
    """OAuth2 token response."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int
    scope: str


class OAuthErrorResponse(BaseModel):
    error: str
    error_description: str


class AuthorizationServerMetadata(BaseModel):
    """RFC 8414 authorization server metadata."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    registration_endpoint: str
    revocation_endpoint: str
    scopes_supported: list[str]
    response_types_supported: list[str] = ["code"]
    grant_types_supported: list[str] = ["authorization_code", "refresh_token"]
    code_challenge_methods_supported: list[str] = ["S256"]
    token_endpoint_auth_methods_supported: list[str] = [
        "client_secret_basic",
        "client_secret_post",
    ]
    revocation_endpoint_auth_methods_supported: list[str] = [
        "client_secret_basic",
        "client_secret_post",
    ]


class ProtectedResourceMetadata(BaseModel):
    """RFC 9728 protected resource metadata."""

    resource: str
    authorization_servers: list[str]
    scopes_supported: list[str]
    bearer_methods_supported: list[str] = ["header"]
