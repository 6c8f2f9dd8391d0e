# Access-token codec and PKCE verification.
# Created: 2026-10-19
#
# Access tokens are HS256 JWTs. The upstream credential rides inside the
# ``cred`` claim, AES-GCM encrypted.

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
import time

import jwt

from keyward.api.oauth2.models import VerifiedAccess
from keyward.errors import ConfigurationError
from keyward.security.crypto import CryptoBox, CryptoError, constant_time_equals

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"
DEFAULT_ACCESS_TOKEN_TTL = 3600
REQUIRED_CLAIMS = ["sub", "iss", "aud", "exp", "iat", "scope", "cred"]


def pkce_challenge(code_verifier: str) -> str:
    """S256 challenge: BASE64URL(SHA256(code_verifier)) without padding."""
    digest = hashlib.sha256(code_verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_pkce(code_verifier: str, code_challenge: str) -> bool:
    computed = pkce_challenge(code_verifier)
    if len(computed) != len(code_challenge):
        return False
    return constant_time_equals(computed, code_challenge)


class TokenCodec:
    """Signs and verifies self-contained access tokens."""

    def __init__(self, signing_key: str | None, crypto: CryptoBox, issuer: str, scope: str):
        self._signing_key = signing_key or ""
        self.crypto = crypto
        self.issuer = issuer
        self.scope = scope

    verify_pkce = staticmethod(verify_pkce)

    def _key(self) -> str:
        if not self._signing_key:
            raise ConfigurationError("Token signing key is not configured")
        return self._signing_key

    def issue_access_token(
        self,
        client_id: str,
        upstream_credential: str,
        ttl_seconds: int = DEFAULT_ACCESS_TOKEN_TTL,
    ) -> str:
        key = self._key()
        now = int(time.time())
        payload = {
            "sub": client_id,
            "iss": self.issuer,
            "aud": self.issuer,
            "scope": self.scope,
            "iat": now,
            "exp": now + ttl_seconds,
            "jti": secrets.token_hex(16),
            "cred": self.crypto.encrypt(upstream_credential),
        }
        return jwt.encode(payload, key, algorithm=JWT_ALGORITHM)

    def verify_access_token(self, token: str) -> VerifiedAccess | None:
        """Return the embedded credential for a valid token, None otherwise.

        Invalid signatures, expiry, wrong issuer/audience, any algorithm other
        than HS256, and undecryptable credentials all return None.
        """
        key = self._key()
        try:
            claims = jwt.decode(
                token,
                key,
                algorithms=[JWT_ALGORITHM],
                audience=self.issuer,
                issuer=self.issuer,
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.InvalidTokenError as e:
            logger.debug("Rejected access token: %s", type(e).__name__)
            return None

        try:
            credential = self.crypto.decrypt(claims["cred"])
        except (CryptoError, AttributeError, TypeError):
            # Signed by us but undecryptable: key rotated or claim corrupted
            logger.warning("Access token for %s carried an undecryptable credential", claims["sub"])
            return None

        return VerifiedAccess(
            upstream_credential=credential,
            client_id=claims["sub"],
            scope=claims["scope"],
        )
