# Client registry: dynamic registration (RFC 7591) and client authentication.
# Created: 2026-10-19
#
# Only the salted hash of a client secret is stored. The plaintext is returned
# once from register() and can never be read back (like GitHub PATs).

from __future__ import annotations

import json
import logging
from urllib.parse import urlsplit

from keyward.api.oauth2.models import (
    AUTHORIZATION_CODE,
    SUPPORTED_GRANT_TYPES,
    OAuthClient,
    utcnow,
)
from keyward.api.oauth2.storage import OAuthDatabase, from_timestamp, to_timestamp
from keyward.security.crypto import (
    hash_secret,
    random_identifier,
    random_opaque_secret,
    verify_secret,
)

logger = logging.getLogger(__name__)

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1", "::1"})

# Verified against when the client_id is unknown
_DUMMY_SECRET_HASH = hash_secret(random_opaque_secret())


class InvalidRedirectUri(ValueError):
    """Redirect URI is not absolute, has a fragment, or is plain http off-loopback."""


class UnsupportedGrantType(ValueError):
    """Requested grant types are unknown, empty, or leave out authorization_code."""


def validate_redirect_uri(uri: str) -> None:
    """Raise InvalidRedirectUri unless *uri* is acceptable as a redirect target.

    https is required, except for loopback hosts, which may also use http.
    """
    try:
        parts = urlsplit(uri)
        host = parts.hostname
    except ValueError:
        raise InvalidRedirectUri(f"Invalid redirect URI: {uri}") from None

    if not parts.scheme or not host:
        raise InvalidRedirectUri(f"Redirect URI must be absolute: {uri}")
    if parts.fragment or uri.endswith("#"):
        raise InvalidRedirectUri(f"Redirect URI must not contain a fragment: {uri}")

    scheme = parts.scheme.lower()
    if host in LOOPBACK_HOSTS:
        if scheme not in ("http", "https"):
            raise InvalidRedirectUri(f"Redirect URI must use http or https: {uri}")
    elif scheme != "https":
        raise InvalidRedirectUri(f"Redirect URI must use HTTPS: {uri}")


def is_registered_redirect_uri(uri: str, client: OAuthClient) -> bool:
    """Exact string match against the client's registrations, plus the scheme rule."""
    if uri not in client.redirect_uris:
        return False
    try:
        validate_redirect_uri(uri)
    except InvalidRedirectUri:
        return False
    return True


class ClientRegistry:
    """Stores OAuth clients and verifies their credentials."""

    def __init__(self, db: OAuthDatabase):
        self.db = db

    def register(
        self,
        redirect_uris: list[str],
        client_name: str | None = None,
        grant_types: list[str] | None = None,
    ) -> tuple[OAuthClient, str]:
        """Register a client. Returns (client, plaintext_secret).

        Raises InvalidRedirectUri or UnsupportedGrantType.
        """
        if not redirect_uris:
            raise InvalidRedirectUri("At least one redirect URI is required")
        for uri in redirect_uris:
            validate_redirect_uri(uri)

        if grant_types is None:
            grant_types = list(SUPPORTED_GRANT_TYPES)
        for grant_type in grant_types:
            if grant_type not in SUPPORTED_GRANT_TYPES:
                raise UnsupportedGrantType(f"Unsupported grant type: {grant_type}")
        if AUTHORIZATION_CODE not in grant_types:
            raise UnsupportedGrantType("grant_types must include authorization_code")

        secret = random_opaque_secret()
        client = OAuthClient(
            client_id=random_identifier(),
            client_secret_hash=hash_secret(secret),
            client_name=client_name,
            redirect_uris=list(dict.fromkeys(redirect_uris)),
            grant_types=list(dict.fromkeys(grant_types)),
            created_at=utcnow(),
        )

        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO oauth_clients
                (client_id, client_secret_hash, client_name, redirect_uris, grant_types, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    client.client_id,
                    client.client_secret_hash,
                    client.client_name,
                    json.dumps(client.redirect_uris),
                    json.dumps(client.grant_types),
                    to_timestamp(client.created_at),
                ),
            )

        logger.info("Registered OAuth client %s (%s)", client.client_id, client_name or "unnamed")
        return client, secret

    def get(self, client_id: str) -> OAuthClient | None:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM oauth_clients WHERE client_id = ?", (client_id,)
            ).fetchone()
        if row is None:
            return None
        return OAuthClient(
            client_id=row["client_id"],
            client_secret_hash=row["client_secret_hash"],
            client_name=row["client_name"],
            redirect_uris=json.loads(row["redirect_uris"]),
            grant_types=json.loads(row["grant_types"]),
            created_at=from_timestamp(row["created_at"]),
        )

    def verify_credentials(self, client_id: str, client_secret: str) -> bool:
        """True only for a known client presenting its own secret.

        Unknown client and wrong secret are indistinguishable to the caller.
        """
        client = self.get(client_id)
        if client is None:
            verify_secret(client_secret, _DUMMY_SECRET_HASH)
            return False
        return verify_secret(client_secret, client.client_secret_hash)
