"""
Tests for CredentialStore
"""

import datetime

from auth.credential_store import CredentialStore
from auth.models import TokenPair
from settings import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, REMEMBERED_IDENTIFIER_KEY
from utils.kv_store import MemoryKeyValueStore

from conftest import make_jwt


def _store(initial=None):
    kv = MemoryKeyValueStore(initial)
    return kv, CredentialStore(kv)


class TestReadWrite:

    def test_empty_store_reads_none(self):
        _, store = _store()
        assert store.read() is None
        assert not store.has_tokens()

    def test_write_then_read(self):
        kv, store = _store()
        access = make_jwt(600)
        store.write(TokenPair(access, "refresh-1"))

        pair = store.read()
        assert pair.access_token == access
        assert pair.refresh_token == "refresh-1"
        assert kv.dump() == {ACCESS_TOKEN_KEY: access, REFRESH_TOKEN_KEY: "refresh-1"}

    def test_expiry_recovered_from_jwt(self):
        access = make_jwt(600)
        _, store = _store({ACCESS_TOKEN_KEY: access, REFRESH_TOKEN_KEY: "r"})

        remaining = store.read().seconds_until_expiry()
        assert 590 < remaining <= 600

    def test_server_expiry_kept_for_written_pair(self):
        _, store = _store()
        expires = datetime.datetime(2030, 1, 1, tzinfo=datetime.timezone.utc)
        store.write(TokenPair("opaque-access", "opaque-refresh", expires))

        assert store.read().expires_at == expires

    def test_opaque_tokens_have_unknown_expiry(self):
        _, store = _store({ACCESS_TOKEN_KEY: "opaque", REFRESH_TOKEN_KEY: "r"})
        assert store.read().expires_at is None

    def test_partial_pair_is_cleaned(self):
        kv, store = _store({ACCESS_TOKEN_KEY: make_jwt()})

        assert store.read() is None
        assert ACCESS_TOKEN_KEY not in kv.dump()


class TestClear:

    def test_clear_removes_tokens_and_legacy_keys(self):
        kv, store = _store({
            ACCESS_TOKEN_KEY: "a",
            REFRESH_TOKEN_KEY: "r",
            "accessToken": "old",
            "logware_user": "{}",
            REMEMBERED_IDENTIFIER_KEY: "analyst@logware.io",
        })
        store.clear()

        assert kv.dump() == {REMEMBERED_IDENTIFIER_KEY: "analyst@logware.io"}


class TestRememberIdentifier:

    def test_remember_and_forget(self):
        _, store = _store()
        store.remember_identifier("analyst@logware.io")
        assert store.remembered_identifier() == "analyst@logware.io"

        store.forget_identifier()
        assert store.remembered_identifier() is None


class TestStatus:

    def test_status_without_tokens(self):
        _, store = _store()
        status = store.get_status()
        assert status["has_tokens"] is False
        assert status["time_until_expiry"] == "No tokens"

    def test_status_valid_token(self):
        _, store = _store()
        store.write(TokenPair(make_jwt(2 * 3600 + 120), "r"))
        status = store.get_status()

        assert status["has_tokens"] is True
        assert status["is_expired"] is False
        assert status["time_until_expiry"].startswith("2h")

    def test_status_expired_token(self):
        _, store = _store()
        store.write(TokenPair(make_jwt(-600), "r"))
        status = store.get_status()

        assert status["is_expired"] is True
        assert status["time_until_expiry"].endswith("ago")

    def test_status_never_contains_secrets(self):
        _, store = _store()
        access = make_jwt()
        store.write(TokenPair(access, "refresh-secret"))
        values = [str(v) for v in store.get_status().values()]

        assert access not in values
        assert "refresh-secret" not in values
