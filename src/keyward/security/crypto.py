"""Symmetric encryption and secret hashing helpers.

Blob format for encrypted values: ``{nonce_hex}:{tag_hex}:{ciphertext_hex}``.
Each blob carries its own nonce and tag and can be decrypted on its own.

Secret hashes use the format ``{salt_hex}:{sha256_hex}``. Refresh tokens
(256-bit random values) use an unsalted SHA-256 digest as their lookup key.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import uuid

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from keyward.errors import ConfigurationError, KeyFormatError, KeywardError

__all__ = [
    "AuthenticationFailure",
    "CryptoBox",
    "CryptoError",
    "MalformedCiphertext",
    "constant_time_equals",
    "hash_lookup_token",
    "hash_secret",
    "random_identifier",
    "random_opaque_secret",
    "verify_secret",
]

KEY_BYTES = 32
NONCE_BYTES = 12
TAG_BYTES = 16
SALT_BYTES = 16
SECRET_BYTES = 32


class CryptoError(KeywardError):
    """Base class for integrity failures on attacker-controllable input."""


class MalformedCiphertext(CryptoError):
    """Blob does not have the nonce:tag:ciphertext shape."""


class AuthenticationFailure(CryptoError):
    """GCM tag check failed (tampered data or wrong key)."""


class CryptoBox:
    """AES-256-GCM box keyed by a 64-character hex string.

    The key is checked on every call, not at construction.
    """

    def __init__(self, key_hex: str | None):
        self._key_hex = key_hex or ""

    def _aead(self) -> AESGCM:
        if not self._key_hex:
            raise ConfigurationError("Encryption key is not configured")
        try:
            key = bytes.fromhex(self._key_hex)
        except ValueError:
            raise KeyFormatError("Encryption key must be hex encoded") from None
        if len(key) != KEY_BYTES:
            raise KeyFormatError(
                f"Encryption key must be {KEY_BYTES * 2} hex characters ({KEY_BYTES} bytes)"
            )
        return AESGCM(key)

    def encrypt(self, plaintext: str | bytes) -> str:
        data = plaintext.encode("utf-8") if isinstance(plaintext, str) else plaintext
        aead = self._aead()
        nonce = secrets.token_bytes(NONCE_BYTES)
        # cryptography appends the tag to the ciphertext
        sealed = aead.encrypt(nonce, data, None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return f"{nonce.hex()}:{tag.hex()}:{ciphertext.hex()}"

    def decrypt_bytes(self, blob: str) -> bytes:
        parts = blob.split(":")
        if len(parts) != 3:
            raise MalformedCiphertext("Expected nonce:tag:ciphertext")
        try:
            nonce, tag, ciphertext = (bytes.fromhex(p) for p in parts)
        except ValueError:
            raise MalformedCiphertext("Blob components must be hex encoded") from None
        if len(nonce) != NONCE_BYTES or len(tag) != TAG_BYTES:
            raise MalformedCiphertext("Nonce or tag has the wrong length")

        aead = self._aead()
        try:
            return aead.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag:
            raise AuthenticationFailure("Ciphertext failed authentication") from None

    def decrypt(self, blob: str) -> str:
        try:
            return self.decrypt_bytes(blob).decode("utf-8")
        except UnicodeDecodeError:
            raise MalformedCiphertext("Plaintext is not valid UTF-8") from None


def constant_time_equals(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def hash_secret(secret: str) -> str:
    salt = secrets.token_hex(SALT_BYTES)
    digest = hashlib.sha256((salt + secret).encode("utf-8")).hexdigest()
    return f"{salt}:{digest}"


def verify_secret(secret: str, stored_hash: str) -> bool:
    parts = stored_hash.split(":")
    if len(parts) != 2:
        return False
    salt, expected = parts
    computed = hashlib.sha256((salt + secret).encode("utf-8")).hexdigest()
    return constant_time_equals(computed, expected)


def hash_lookup_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def random_identifier() -> str:
    return str(uuid.uuid4())


def random_opaque_secret() -> str:
    return secrets.token_urlsafe(SECRET_BYTES)
