"""
Tests for ConfigLoader environment coercion
"""

from pathlib import Path

import pytest

import settings
from config.loader import ConfigLoader


@pytest.fixture
def loader(tmp_path):
    return ConfigLoader(env_path=str(tmp_path / "missing.env"))


class TestConfigLoader:

    def test_default_when_unset(self, loader, monkeypatch):
        monkeypatch.delenv("LOGWARE_TEST_VALUE", raising=False)
        assert loader.get("LOGWARE_TEST_VALUE", "fallback") == "fallback"

    def test_blank_value_counts_as_unset(self, loader, monkeypatch):
        monkeypatch.setenv("LOGWARE_TEST_VALUE", "   ")
        assert loader.get("LOGWARE_TEST_VALUE", 15.0) == 15.0

    def test_numeric_coercion(self, loader, monkeypatch):
        monkeypatch.setenv("LOGWARE_TEST_INT", "90")
        monkeypatch.setenv("LOGWARE_TEST_FLOAT", "2.5")
        assert loader.get("LOGWARE_TEST_INT", 60) == 90
        assert loader.get("LOGWARE_TEST_FLOAT", 5.0) == 2.5

    def test_bad_number_falls_back(self, loader, monkeypatch):
        monkeypatch.setenv("LOGWARE_TEST_INT", "soon")
        assert loader.get("LOGWARE_TEST_INT", 60) == 60

    @pytest.mark.parametrize("raw, expected", [("yes", True), ("TRUE", True), ("0", False), ("off", False)])
    def test_bool_coercion(self, loader, monkeypatch, raw, expected):
        monkeypatch.setenv("LOGWARE_TEST_FLAG", raw)
        assert loader.get("LOGWARE_TEST_FLAG", False) is expected

    def test_path_expansion(self, loader, monkeypatch, tmp_path):
        monkeypatch.setenv("HOME", str(tmp_path))
        monkeypatch.delenv("LOGWARE_TEST_DIR", raising=False)
        assert loader.get_path("LOGWARE_TEST_DIR", "~/.logware") == tmp_path / ".logware"

    def test_env_file_does_not_override_environment(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("LOGWARE_TEST_FROM_FILE=file\nLOGWARE_TEST_SHADOWED=file\n")
        # setenv first so teardown removes the value load_dotenv adds
        monkeypatch.setenv("LOGWARE_TEST_FROM_FILE", "placeholder")
        monkeypatch.delenv("LOGWARE_TEST_FROM_FILE")
        monkeypatch.setenv("LOGWARE_TEST_SHADOWED", "env")

        loader = ConfigLoader(env_path=str(env_file))

        assert loader.get("LOGWARE_TEST_FROM_FILE", "default") == "file"
        assert loader.get("LOGWARE_TEST_SHADOWED", "default") == "env"

    def test_storage_dir_setting_is_expanded_path(self):
        assert isinstance(settings.STORAGE_DIR, Path)
        assert not str(settings.STORAGE_DIR).startswith("~")
