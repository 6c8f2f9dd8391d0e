# Tests for the SQLite grant store: single use, rotation, sweeping.
# Created: 2026-10-19

import sqlite3
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from keyward.api.oauth2.models import utcnow
from keyward.api.oauth2.storage import GrantStore, OAuthDatabase


@pytest.fixture
def store(tmp_path):
    return GrantStore(OAuthDatabase(tmp_path / "oauth.db"))


def _put_code(store, code="code-1", ttl=600):
    store.put_authorization_code(
        code=code,
        client_id="client-1",
        redirect_uri="https://app.example/cb",
        code_challenge="challenge",
        code_challenge_method="S256",
        upstream_credential_encrypted="aa:bb:cc",
        expires_at=utcnow() + timedelta(seconds=ttl),
        state="xyz",
    )


def _put_refresh(store, token_hash="hash-1", ttl=3600):
    store.put_refresh_token(
        token_hash=token_hash,
        client_id="client-1",
        upstream_credential_encrypted="aa:bb:cc",
        scope="workflowy",
        expires_at=utcnow() + timedelta(seconds=ttl),
    )


def _rotation(old_hash, new_hash):
    return dict(
        old_token_hash=old_hash,
        new_token_hash=new_hash,
        client_id="client-1",
        upstream_credential_encrypted="aa:bb:cc",
        scope="workflowy",
        expires_at=utcnow() + timedelta(seconds=3600),
    )


class TestAuthorizationCodes:
    def test_consume_returns_record(self, store):
        _put_code(store)
        record = store.consume_authorization_code("code-1")
        assert record is not None
        assert record.client_id == "client-1"
        assert record.state == "xyz"
        assert record.code_challenge_method == "S256"

    def test_consume_is_single_use(self, store):
        _put_code(store)
        assert store.consume_authorization_code("code-1") is not None
        assert store.consume_authorization_code("code-1") is None

    def test_consume_unknown(self, store):
        assert store.consume_authorization_code("never-issued") is None

    def test_expired_code_is_not_returned(self, store):
        _put_code(store, ttl=-1)
        assert store.consume_authorization_code("code-1") is None

    def test_concurrent_consume_single_winner(self, store):
        _put_code(store)
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: store.consume_authorization_code("code-1"), range(8)))
        assert sum(r is not None for r in results) == 1


class TestRefreshTokens:
    def test_get_and_delete(self, store):
        _put_refresh(store)
        record = store.get_refresh_token("hash-1")
        assert record.scope == "workflowy"
        assert store.delete_refresh_token("hash-1") is True
        assert store.delete_refresh_token("hash-1") is False
        assert store.get_refresh_token("hash-1") is None

    def test_expired_record_still_readable(self, store):
        _put_refresh(store, ttl=-1)
        record = store.get_refresh_token("hash-1")
        assert record is not None
        assert record.is_expired()

    def test_rotate_replaces_record(self, store):
        _put_refresh(store)
        assert store.rotate_refresh_token(**_rotation("hash-1", "hash-2")) is True
        assert store.get_refresh_token("hash-1") is None
        assert store.get_refresh_token("hash-2").client_id == "client-1"

    def test_rotate_already_gone(self, store):
        _put_refresh(store)
        assert store.rotate_refresh_token(**_rotation("hash-1", "hash-2")) is True
        assert store.rotate_refresh_token(**_rotation("hash-1", "hash-3")) is False
        assert store.get_refresh_token("hash-3") is None

    def test_rotate_rolls_back_on_failed_insert(self, store):
        _put_refresh(store, "hash-1")
        _put_refresh(store, "hash-2")
        with pytest.raises(sqlite3.IntegrityError):
            store.rotate_refresh_token(**_rotation("hash-1", "hash-2"))
        assert store.get_refresh_token("hash-1") is not None

    def test_concurrent_rotate_single_winner(self, store):
        _put_refresh(store)
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(
                pool.map(
                    lambda i: store.rotate_refresh_token(**_rotation("hash-1", f"new-{i}")),
                    range(8),
                )
            )
        assert results.count(True) == 1

    def test_concurrent_delete_single_winner(self, store):
        _put_refresh(store)
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: store.delete_refresh_token("hash-1"), range(8)))
        assert results.count(True) == 1


class TestSweep:
    def test_sweep_removes_only_expired(self, store):
        _put_code(store, "live-code")
        _put_code(store, "dead-code", ttl=-1)
        _put_refresh(store, "live-hash")
        _put_refresh(store, "dead-hash", ttl=-1)

        assert store.sweep_expired() == 2
        assert store.get_refresh_token("live-hash") is not None
        assert store.get_refresh_token("dead-hash") is None
        assert store.consume_authorization_code("live-code") is not None

    def test_sweep_is_idempotent(self, store):
        _put_refresh(store, ttl=-1)
        assert store.sweep_expired() == 1
        assert store.sweep_expired() == 0
