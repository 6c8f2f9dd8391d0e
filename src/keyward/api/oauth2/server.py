# OAuth2 Authorization Server with PKCE support.
# Created: 2026-10-19
#
# Implements the authorization code flow with PKCE (RFC 7636), refresh-token
# rotation, and dynamic client registration (RFC 7591). The end user proves
# who they are by presenting a working upstream API key at consent time. That
# key is the only identity, and it is stored encrypted, never handed to clients.

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, fields
from datetime import timedelta
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from keyward.api.oauth2 import errors
from keyward.api.oauth2.clients import ClientRegistry, is_registered_redirect_uri
from keyward.api.oauth2.errors import OAuthError
from keyward.api.oauth2.models import (
    AUTHORIZATION_CODE,
    PKCE_METHOD,
    SUPPORTED_GRANT_TYPES,
    OAuthClient,
    VerifiedAccess,
    utcnow,
)
from keyward.api.oauth2.storage import GrantStore, OAuthDatabase
from keyward.api.oauth2.tokens import TokenCodec, verify_pkce
from keyward.api.oauth2.upstream import CredentialCheck, UpstreamVerifier, is_header_safe
from keyward.config import Settings, get_settings
from keyward.security.audit import AuditSeverity, get_audit_logger
from keyward.security.crypto import (
    CryptoBox,
    CryptoError,
    hash_lookup_token,
    random_opaque_secret,
)

logger = logging.getLogger(__name__)

MISSING_CREDENTIAL_MESSAGE = "Please enter your API key."
INVALID_CREDENTIAL_MESSAGE = "That API key was not accepted. Please check it and try again."
UNREACHABLE_MESSAGE = "Could not reach the service to check your API key. Please try again."


@dataclass
class AuthorizationRequest:
    """Authorize-endpoint parameters, carried through the consent form verbatim."""

    client_id: str = ""
    redirect_uri: str = ""
    response_type: str = ""
    code_challenge: str = ""
    code_challenge_method: str = ""
    state: str = ""
    scope: str = ""

    @classmethod
    def from_params(cls, params: Mapping[str, Any]) -> AuthorizationRequest:
        return cls(**{f.name: str(params.get(f.name) or "") for f in fields(cls)})

    def as_form_fields(self) -> dict[str, str]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass
class ConsentResult:
    """Outcome of a consent submission.

    Exactly one of ``redirect_url`` (send the user agent back to the client),
    ``error`` (protocol failure, JSON 400) or ``form_error`` (show the form
    again) is set.
    """

    redirect_url: str | None = None
    error: OAuthError | None = None
    form_error: str | None = None
    client: OAuthClient | None = None


def append_query(uri: str, params: Mapping[str, str]) -> str:
    """Add *params* to *uri*, keeping any query string it already has."""
    parts = urlsplit(uri)
    query = parse_qsl(parts.query, keep_blank_values=True) + list(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


def _audit(
    action: str,
    target: str,
    severity: AuditSeverity = AuditSeverity.INFO,
    **context: Any,
) -> None:
    try:
        get_audit_logger().log_api_event(action=action, target=target, severity=severity, **context)
    except Exception:
        logger.warning("Audit logging unavailable for %s", action, exc_info=True)


class AuthorizationServer:
    """OAuth2 authorization server with PKCE and rotating refresh tokens."""

    def __init__(
        self,
        settings: Settings | None = None,
        db: OAuthDatabase | None = None,
        upstream: UpstreamVerifier | None = None,
    ):
        self.settings = settings or get_settings()
        self.db = db or OAuthDatabase(self.settings.resolved_database_path())
        self.crypto = CryptoBox(self.settings.encryption_key)
        self.codec = TokenCodec(
            self.settings.jwt_secret,
            self.crypto,
            issuer=self.settings.issuer_url,
            scope=self.settings.scope,
        )
        self.clients = ClientRegistry(self.db)
        self.grants = GrantStore(self.db)
        self.upstream = upstream or UpstreamVerifier(
            self.settings.upstream_validation_url,
            timeout=self.settings.upstream_timeout,
        )

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_client(
        self,
        redirect_uris: list[str],
        client_name: str | None = None,
        grant_types: list[str] | None = None,
    ) -> tuple[OAuthClient, str]:
        """Register a client. Raises InvalidRedirectUri / UnsupportedGrantType."""
        client, secret = self.clients.register(
            redirect_uris, client_name=client_name, grant_types=grant_types
        )
        _audit(
            "client_registered",
            f"client:{client.client_id}",
            client_name=client_name,
            redirect_uris=client.redirect_uris,
        )
        return client, secret

    # ------------------------------------------------------------------
    # Authorization endpoint
    # ------------------------------------------------------------------

    def check_authorization_request(
        self, req: AuthorizationRequest
    ) -> tuple[OAuthClient | None, OAuthError | None]:
        """Validate authorize parameters, client and redirect URI.

        Returns (client, error). Nothing is shown to the user, and nothing is
        redirected, until this returns a client.
        """
        if not req.client_id:
            return None, errors.invalid_request("client_id is required")
        if not req.redirect_uri:
            return None, errors.invalid_request("redirect_uri is required")
        if req.response_type != "code":
            return None, errors.UNSUPPORTED_RESPONSE_TYPE
        if not req.code_challenge:
            return None, errors.invalid_request("code_challenge is required (PKCE)")
        if req.code_challenge_method != PKCE_METHOD:
            return None, errors.invalid_request("code_challenge_method must be S256")

        client = self.clients.get(req.client_id)
        if client is None:
            return None, errors.invalid_client("Unknown client_id", status_code=400)

        if not is_registered_redirect_uri(req.redirect_uri, client):
            return None, errors.invalid_request("redirect_uri not registered for this client")

        requested = set(req.scope.split()) if req.scope else set()
        if not requested.issubset({self.settings.scope}):
            return None, OAuthError("invalid_scope", f"Supported scope: {self.settings.scope}")

        return client, None

    def deny(self, req: AuthorizationRequest) -> ConsentResult:
        """User declined. Only a validated redirect URI receives the error."""
        client, error = self.check_authorization_request(req)
        if error:
            return ConsentResult(error=error)

        params = {"error": "access_denied", "error_description": "The user denied the request"}
        if req.state:
            params["state"] = req.state
        _audit("consent_denied", f"client:{client.client_id}")
        return ConsentResult(redirect_url=append_query(req.redirect_uri, params), client=client)

    async def complete_consent(self, req: AuthorizationRequest, credential: str) -> ConsentResult:
        """Check the upstream credential and, if it works, issue a code.

        The client and redirect URI are checked again here; the hidden form
        fields came back from the browser and are not trusted. Store calls run
        in a worker thread.
        """
        client, error = await asyncio.to_thread(self.check_authorization_request, req)
        if error:
            return ConsentResult(error=error)

        credential = credential.strip()
        if not credential:
            return ConsentResult(form_error=MISSING_CREDENTIAL_MESSAGE, client=client)

        # Bearer header values are ASCII; anything else cannot be a working key
        if not is_header_safe(credential):
            _audit("credential_rejected", f"client:{client.client_id}", AuditSeverity.WARNING)
            return ConsentResult(form_error=INVALID_CREDENTIAL_MESSAGE, client=client)

        check = await self.upstream.check(credential)
        if check is CredentialCheck.UNREACHABLE:
            return ConsentResult(form_error=UNREACHABLE_MESSAGE, client=client)
        if check is CredentialCheck.INVALID:
            _audit("credential_rejected", f"client:{client.client_id}", AuditSeverity.WARNING)
            return ConsentResult(form_error=INVALID_CREDENTIAL_MESSAGE, client=client)

        code = random_opaque_secret()
        await asyncio.to_thread(
            self.grants.put_authorization_code,
            code=code,
            client_id=client.client_id,
            redirect_uri=req.redirect_uri,
            code_challenge=req.code_challenge,
            code_challenge_method=req.code_challenge_method,
            upstream_credential_encrypted=self.crypto.encrypt(credential),
            expires_at=utcnow() + timedelta(seconds=self.settings.code_ttl),
            state=req.state or None,
        )
        _audit("code_issued", f"client:{client.client_id}")
        logger.info("Issued authorization code %s… for client %s", code[:6], client.client_id)

        params = {"code": code}
        if req.state:
            params["state"] = req.state
        return ConsentResult(redirect_url=append_query(req.redirect_uri, params), client=client)

    # ------------------------------------------------------------------
    # Token endpoint
    # ------------------------------------------------------------------

    def authenticate_client(
        self, credentials: tuple[str, str] | None
    ) -> tuple[OAuthClient | None, OAuthError | None]:
        if credentials is None:
            return None, errors.invalid_client("Client authentication required", status_code=400)
        client_id, client_secret = credentials
        if not self.clients.verify_credentials(client_id, client_secret):
            return None, errors.invalid_client("Invalid client credentials")
        client = self.clients.get(client_id)
        if client is None:
            return None, errors.invalid_client("Invalid client credentials")
        return client, None

    def token_request(
        self,
        params: Mapping[str, Any],
        credentials: tuple[str, str] | None,
    ) -> tuple[dict | None, OAuthError | None]:
        """Dispatch a token-endpoint request on ``grant_type``.

        Returns (token_dict, error).
        """
        grant_type = params.get("grant_type")
        if not grant_type:
            return None, errors.invalid_request("grant_type is required")
        if grant_type not in SUPPORTED_GRANT_TYPES:
            return None, errors.UNSUPPORTED_GRANT_TYPE

        client, error = self.authenticate_client(credentials)
        if error:
            return None, error
        if grant_type not in client.grant_types:
            return None, OAuthError(
                "unauthorized_client", f"Client is not registered for the {grant_type} grant"
            )

        if grant_type == AUTHORIZATION_CODE:
            return self.exchange_code(
                client,
                code=_str_or_none(params.get("code")),
                redirect_uri=_str_or_none(params.get("redirect_uri")),
                code_verifier=_str_or_none(params.get("code_verifier")),
            )
        return self.refresh(client, _str_or_none(params.get("refresh_token")))

    def exchange_code(
        self,
        client: OAuthClient,
        code: str | None,
        redirect_uri: str | None,
        code_verifier: str | None,
    ) -> tuple[dict | None, OAuthError | None]:
        """Redeem an authorization code for an access + refresh token pair.

        ``client`` must already be authenticated. Returns (token_dict, error).
        """
        if not code:
            return None, errors.invalid_request("code is required")
        if not redirect_uri:
            return None, errors.invalid_request("redirect_uri is required")
        if not code_verifier:
            return None, errors.invalid_request("code_verifier is required (PKCE)")

        # Consumed before any check: a failed attempt burns the code
        auth_code = self.grants.consume_authorization_code(code)
        if auth_code is None:
            return None, errors.INVALID_GRANT

        if (
            auth_code.is_expired()
            or auth_code.client_id != client.client_id
            or auth_code.redirect_uri != redirect_uri
            or not verify_pkce(code_verifier, auth_code.code_challenge)
        ):
            _audit(
                "code_rejected",
                f"client:{client.client_id}",
                AuditSeverity.WARNING,
                issued_to=auth_code.client_id,
            )
            return None, errors.INVALID_GRANT

        try:
            credential = self.crypto.decrypt(auth_code.upstream_credential_encrypted)
        except CryptoError:
            logger.error("Stored credential for client %s failed to decrypt", client.client_id)
            return None, errors.INVALID_GRANT

        result = self._issue_tokens(
            client.client_id,
            credential,
            auth_code.upstream_credential_encrypted,
            self.settings.scope,
        )
        _audit("token_issued", f"client:{client.client_id}", grant_type=AUTHORIZATION_CODE)
        return result, None

    def refresh(
        self, client: OAuthClient, refresh_token: str | None
    ) -> tuple[dict | None, OAuthError | None]:
        """Rotate a refresh token. Returns (token_dict, error).

        The new access token is signed first; the old record is then swapped
        for the new one in a single transaction. If the delete finds nothing, a
        concurrent redemption already won. Any failure leaves the old token
        in place.
        """
        if not refresh_token:
            return None, errors.invalid_request("refresh_token is required")

        token_hash = hash_lookup_token(refresh_token)
        stored = self.grants.get_refresh_token(token_hash)
        if stored is None:
            return None, errors.INVALID_GRANT

        if stored.is_expired():
            self.grants.delete_refresh_token(token_hash)
            return None, errors.INVALID_GRANT

        if stored.client_id != client.client_id:
            _audit(
                "refresh_rejected",
                f"client:{client.client_id}",
                AuditSeverity.ALERT,
                reason="client_mismatch",
            )
            return None, errors.INVALID_GRANT

        try:
            credential = self.crypto.decrypt(stored.upstream_credential_encrypted)
        except CryptoError:
            logger.error("Stored credential for client %s failed to decrypt", client.client_id)
            return None, errors.INVALID_GRANT

        ttl = self.settings.access_token_ttl
        access_token = self.codec.issue_access_token(client.client_id, credential, ttl_seconds=ttl)
        new_refresh_token = random_opaque_secret()
        rotated = self.grants.rotate_refresh_token(
            old_token_hash=token_hash,
            new_token_hash=hash_lookup_token(new_refresh_token),
            client_id=client.client_id,
            upstream_credential_encrypted=stored.upstream_credential_encrypted,
            scope=stored.scope,
            expires_at=utcnow() + timedelta(seconds=self.settings.refresh_token_ttl),
        )
        if not rotated:
            _audit(
                "refresh_rejected",
                f"client:{client.client_id}",
                AuditSeverity.ALERT,
                reason="concurrent_redemption",
            )
            return None, errors.INVALID_GRANT

        _audit("token_refreshed", f"client:{client.client_id}")
        return {
            "access_token": access_token,
            "token_type": "Bearer",
            "expires_in": ttl,
            "refresh_token": new_refresh_token,
            "scope": stored.scope,
        }, None

    def _issue_tokens(
        self,
        client_id: str,
        credential: str,
        credential_encrypted: str,
        scope: str,
    ) -> dict:
        ttl = self.settings.access_token_ttl
        access_token = self.codec.issue_access_token(client_id, credential, ttl_seconds=ttl)

        refresh_token = random_opaque_secret()
        self.grants.put_refresh_token(
            token_hash=hash_lookup_token(refresh_token),
            client_id=client_id,
            upstream_credential_encrypted=credential_encrypted,
            scope=scope,
            expires_at=utcnow() + timedelta(seconds=self.settings.refresh_token_ttl),
        )
        return {
            "access_token": access_token,
            "token_type": "Bearer",
            "expires_in": ttl,
            "refresh_token": refresh_token,
            "scope": scope,
        }

    # ------------------------------------------------------------------
    # Revocation, verification, maintenance
    # ------------------------------------------------------------------

    def revoke(self, client: OAuthClient, token: str) -> bool:
        """Revoke a refresh token owned by *client* (RFC 7009).

        Tokens belonging to other clients are left alone. Access tokens are
        self-contained and cannot be revoked; they simply expire.
        """
        token_hash = hash_lookup_token(token)
        stored = self.grants.get_refresh_token(token_hash)
        if stored is None or stored.client_id != client.client_id:
            return False
        revoked = self.grants.delete_refresh_token(token_hash)
        if revoked:
            _audit("token_revoked", f"client:{client.client_id}")
        return revoked

    def verify_access_token(self, access_token: str) -> VerifiedAccess | None:
        """Verify a bearer token and recover the upstream credential."""
        return self.codec.verify_access_token(access_token)

    def sweep_expired(self) -> int:
        return self.grants.sweep_expired()


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


# Singleton
_server: AuthorizationServer | None = None


def get_oauth_server() -> AuthorizationServer:
    global _server
    if _server is None:
        _server = AuthorizationServer()
    return _server


def reset_oauth_server() -> None:
    global _server
    _server = None
