"""
Tests for the key-value storage backends
"""

import json
import os
import platform
import stat

import pytest

from utils.kv_store import FileKeyValueStore, MemoryKeyValueStore, origin_slug


class TestOriginSlug:

    @pytest.mark.parametrize("url,expected", [
        ("http://localhost:8000/api/v1", "http_localhost_8000"),
        ("https://soc.example.com/api/v1", "https_soc.example.com"),
        ("https://soc.example.com:8443", "https_soc.example.com_8443"),
    ])
    def test_slug_from_origin(self, url, expected):
        assert origin_slug(url) == expected

    def test_path_does_not_change_slug(self):
        assert origin_slug("https://a.example/api/v1") == origin_slug("https://a.example/other")


class TestMemoryKeyValueStore:

    def test_get_many_returns_present_keys_only(self):
        store = MemoryKeyValueStore({"a": "1"})
        assert store.get_many(["a", "b"]) == {"a": "1"}
        assert store.get("b") is None

    def test_update_and_delete(self):
        store = MemoryKeyValueStore()
        store.update({"a": "1", "b": "2"})
        store.delete(["a", "missing"])
        assert store.dump() == {"b": "2"}


class TestFileKeyValueStore:

    def test_for_origin_scopes_path(self, tmp_path):
        store = FileKeyValueStore.for_origin("https://soc.example.com/api/v1", tmp_path)
        assert store.path == tmp_path / "https_soc.example.com" / "session.json"

    def test_update_persists_json(self, tmp_path):
        store = FileKeyValueStore(tmp_path / "origin" / "session.json")
        store.update({"logware_token": "a", "logware_refresh_token": "r"})

        data = json.loads(store.path.read_text())
        assert data == {"logware_token": "a", "logware_refresh_token": "r"}
        assert FileKeyValueStore(store.path).get("logware_token") == "a"

    @pytest.mark.skipif(platform.system() == "Windows", reason="POSIX permissions")
    def test_owner_only_permissions(self, tmp_path):
        store = FileKeyValueStore(tmp_path / "origin" / "session.json")
        store.update({"k": "v"})

        assert stat.S_IMODE(os.stat(store.path).st_mode) == 0o600
        assert stat.S_IMODE(os.stat(store.path.parent).st_mode) == 0o700

    def test_delete_last_key_removes_file(self, tmp_path):
        store = FileKeyValueStore(tmp_path / "session.json")
        store.update({"k": "v"})
        store.delete(["k"])
        assert not store.path.exists()

    def test_delete_keeps_other_keys(self, tmp_path):
        store = FileKeyValueStore(tmp_path / "session.json")
        store.update({"k": "v", "keep": "me"})
        store.delete(["k"])
        assert store.get_many(["k", "keep"]) == {"keep": "me"}

    def test_malformed_file_reads_as_empty(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text("{not json")
        store = FileKeyValueStore(path)

        assert store.get_many(["logware_token"]) == {}
        store.update({"k": "v"})
        assert store.get("k") == "v"

    def test_non_string_values_ignored(self, tmp_path):
        path = tmp_path / "session.json"
        path.write_text(json.dumps({"k": 1, "s": "ok"}))
        assert FileKeyValueStore(path).get_many(["k", "s"]) == {"s": "ok"}
