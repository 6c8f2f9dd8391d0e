# OAuth2 persistence: SQLite schema, authorization codes, refresh tokens.
# Created: 2026-10-19
#
# Every call opens its own connection, so any number of request handlers (or
# replicas sharing the file) may run concurrently. Single-use guarantees come
# from the database, not from in-process locks: a code or refresh token row can
# only be DELETEd once, and the loser of a race sees rowcount == 0.

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path

from keyward.api.oauth2.models import AuthorizationCode, RefreshToken, utcnow

logger = logging.getLogger(__name__)

BUSY_TIMEOUT_SECONDS = 10.0

_SCHEMA = """
CREATE TABLE IF NOT EXISTS oauth_clients (
    client_id TEXT PRIMARY KEY,
    client_secret_hash TEXT NOT NULL,
    client_name TEXT,
    redirect_uris TEXT NOT NULL,
    grant_types TEXT NOT NULL,
    created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS oauth_authorization_codes (
    code TEXT PRIMARY KEY,
    client_id TEXT NOT NULL,
    redirect_uri TEXT NOT NULL,
    code_challenge TEXT NOT NULL,
    code_challenge_method TEXT NOT NULL DEFAULT 'S256',
    upstream_credential_encrypted TEXT NOT NULL,
    state TEXT,
    expires_at REAL NOT NULL,
    created_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS oauth_refresh_tokens (
    token_hash TEXT PRIMARY KEY,
    client_id TEXT NOT NULL,
    upstream_credential_encrypted TEXT NOT NULL,
    scope TEXT NOT NULL,
    expires_at REAL NOT NULL,
    created_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_codes_expires ON oauth_authorization_codes (expires_at);
CREATE INDEX IF NOT EXISTS idx_refresh_expires ON oauth_refresh_tokens (expires_at);
"""


def to_timestamp(value: datetime) -> float:
    return value.timestamp()


def from_timestamp(value: float) -> datetime:
    return datetime.fromtimestamp(value, UTC)


class OAuthDatabase:
    """SQLite file holding clients, codes and refresh tokens."""

    def __init__(self, path: Path):
        self.path = path
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.connect() as conn:
            conn.executescript(_SCHEMA)
        try:
            self.path.chmod(0o600)
        except OSError:
            pass

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        # Autocommit mode; callers open explicit transactions where needed
        conn = sqlite3.connect(
            self.path,
            timeout=BUSY_TIMEOUT_SECONDS,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Write transaction that takes the database lock up front."""
        with self.connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")


def _insert_refresh_token(
    conn: sqlite3.Connection,
    token_hash: str,
    client_id: str,
    upstream_credential_encrypted: str,
    scope: str,
    expires_at: datetime,
) -> None:
    conn.execute(
        """
        INSERT INTO oauth_refresh_tokens
        (token_hash, client_id, upstream_credential_encrypted, scope, expires_at, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            token_hash,
            client_id,
            upstream_credential_encrypted,
            scope,
            to_timestamp(expires_at),
            to_timestamp(utcnow()),
        ),
    )


class GrantStore:
    """Authorization codes (10 min, single use) and refresh tokens (30 days, rotated)."""

    def __init__(self, db: OAuthDatabase):
        self.db = db

    # --- Authorization codes -------------------------------------------------

    def put_authorization_code(
        self,
        code: str,
        client_id: str,
        redirect_uri: str,
        code_challenge: str,
        code_challenge_method: str,
        upstream_credential_encrypted: str,
        expires_at: datetime,
        state: str | None = None,
    ) -> None:
        with self.db.connect() as conn:
            conn.execute(
                """
                INSERT INTO oauth_authorization_codes
                (code, client_id, redirect_uri, code_challenge, code_challenge_method,
                 upstream_credential_encrypted, state, expires_at, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    code,
                    client_id,
                    redirect_uri,
                    code_challenge,
                    code_challenge_method,
                    upstream_credential_encrypted,
                    state,
                    to_timestamp(expires_at),
                    to_timestamp(utcnow()),
                ),
            )

    def consume_authorization_code(self, code: str) -> AuthorizationCode | None:
        """Read and delete *code* atomically.

        Returns None if the code was never issued, was already consumed, or has
        expired (an expired row is deleted as a side effect).
        """
        with self.db.transaction() as conn:
            row = conn.execute(
                "SELECT * FROM oauth_authorization_codes WHERE code = ?", (code,)
            ).fetchone()
            if row is None:
                return None
            deleted = conn.execute(
                "DELETE FROM oauth_authorization_codes WHERE code = ?", (code,)
            ).rowcount
        if deleted != 1:
            return None

        auth_code = AuthorizationCode(
            code=row["code"],
            client_id=row["client_id"],
            redirect_uri=row["redirect_uri"],
            code_challenge=row["code_challenge"],
            code_challenge_method=row["code_challenge_method"],
            upstream_credential_encrypted=row["upstream_credential_encrypted"],
            state=row["state"],
            expires_at=from_timestamp(row["expires_at"]),
            created_at=from_timestamp(row["created_at"]),
        )
        if auth_code.is_expired():
            logger.debug("Discarded expired authorization code for client %s", auth_code.client_id)
            return None
        return auth_code

    # --- Refresh tokens ------------------------------------------------------

    def put_refresh_token(
        self,
        token_hash: str,
        client_id: str,
        upstream_credential_encrypted: str,
        scope: str,
        expires_at: datetime,
    ) -> None:
        with self.db.connect() as conn:
            _insert_refresh_token(
                conn, token_hash, client_id, upstream_credential_encrypted, scope, expires_at
            )

    def rotate_refresh_token(
        self,
        old_token_hash: str,
        new_token_hash: str,
        client_id: str,
        upstream_credential_encrypted: str,
        scope: str,
        expires_at: datetime,
    ) -> bool:
        """Replace *old_token_hash* with a new refresh token in one transaction.

        False means the old token was already gone (a concurrent redemption
        won) and nothing was written. If the insert fails the delete is rolled
        back, so the old token stays redeemable.
        """
        with self.db.transaction() as conn:
            deleted = conn.execute(
                "DELETE FROM oauth_refresh_tokens WHERE token_hash = ?", (old_token_hash,)
            ).rowcount
            if deleted != 1:
                return False
            _insert_refresh_token(
                conn, new_token_hash, client_id, upstream_credential_encrypted, scope, expires_at
            )
        return True

    def get_refresh_token(self, token_hash: str) -> RefreshToken | None:
        with self.db.connect() as conn:
            row = conn.execute(
                "SELECT * FROM oauth_refresh_tokens WHERE token_hash = ?", (token_hash,)
            ).fetchone()
        if row is None:
            return None
        return RefreshToken(
            token_hash=row["token_hash"],
            client_id=row["client_id"],
            upstream_credential_encrypted=row["upstream_credential_encrypted"],
            scope=row["scope"],
            expires_at=from_timestamp(row["expires_at"]),
            created_at=from_timestamp(row["created_at"]),
        )

    def delete_refresh_token(self, token_hash: str) -> bool:
        """Delete a refresh token. False means it was already gone."""
        with self.db.connect() as conn:
            deleted = conn.execute(
                "DELETE FROM oauth_refresh_tokens WHERE token_hash = ?", (token_hash,)
            ).rowcount
        return deleted == 1

    # --- Maintenance ---------------------------------------------------------

    def sweep_expired(self) -> int:
        """Remove expired codes and refresh tokens. Returns the number removed."""
        now = to_timestamp(utcnow())
        with self.db.transaction() as conn:
            codes = conn.execute(
                "DELETE FROM oauth_authorization_codes WHERE expires_at <= ?", (now,)
            ).rowcount
            tokens = conn.execute(
                "DELETE FROM oauth_refresh_tokens WHERE expires_at <= ?", (now,)
            ).rowcount
        if codes or tokens:
            logger.info("Swept %d expired codes and %d expired refresh tokens", codes, tokens)
        return codes + tokens
