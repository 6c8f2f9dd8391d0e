# Tests for settings loading and key checks.
# Created: 2026-10-19

import pytest

from keyward.config import Settings, get_config_dir, get_settings, reset_settings
from keyward.errors import ConfigurationError, KeyFormatError

from conftest import TEST_ENCRYPTION_KEY, TEST_ISSUER


class TestSettings:
    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("KEYWARD_SCOPE", "custom")
        monkeypatch.setenv("KEYWARD_CODE_TTL", "30")
        s = Settings.load()
        assert s.scope == "custom"
        assert s.code_ttl == 30
        assert s.encryption_key == TEST_ENCRYPTION_KEY

    def test_defaults(self):
        s = Settings(_env_file=None, encryption_key="", jwt_secret="")
        assert s.access_token_ttl == 3600
        assert s.refresh_token_ttl == 30 * 24 * 3600
        assert s.code_ttl == 600
        assert s.upstream_timeout == 10.0

    def test_secrets_not_in_repr(self):
        s = Settings.load()
        assert TEST_ENCRYPTION_KEY not in repr(s)

    def test_issuer_url_strips_slash(self):
        assert Settings(issuer=TEST_ISSUER + "/").issuer_url == TEST_ISSUER

    def test_database_defaults_to_home(self, tmp_path):
        s = Settings(home=str(tmp_path / "h"))
        assert s.resolved_database_path() == tmp_path / "h" / "keyward.db"
        assert Settings(database_path="/x/y.db").resolved_database_path().name == "y.db"

    def test_config_dir_created(self, tmp_path):
        path = get_config_dir(Settings(home=str(tmp_path / "new-home")))
        assert path.is_dir()

    def test_singleton(self):
        assert get_settings() is get_settings()
        first = get_settings()
        reset_settings()
        assert get_settings() is not first


class TestCheckSecrets:
    def test_valid(self):
        Settings.load().check_secrets()

    def test_missing_encryption_key(self):
        with pytest.raises(ConfigurationError):
            Settings(encryption_key="").check_secrets()

    @pytest.mark.parametrize("key", ["abc", "z" * 64, TEST_ENCRYPTION_KEY + "00"])
    def test_bad_encryption_key(self, key):
        with pytest.raises(KeyFormatError):
            Settings(encryption_key=key).check_secrets()

    def test_missing_jwt_secret(self):
        with pytest.raises(ConfigurationError):
            Settings(jwt_secret="").check_secrets()
