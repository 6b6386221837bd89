"""Tests for settings loading and validation."""

import pytest
from pydantic import ValidationError

from gatehouse.config import SessionBackend, Settings, get_settings, reset_settings_cache


class TestFromEnv:
    def test_env_names_map_to_fields(self, monkeypatch):
        monkeypatch.setenv("LOGIN_VERSION", "open")
        monkeypatch.setenv("SESSION_TTL_SECONDS", "600")
        monkeypatch.setenv("OIDC_CLIENT_ID", "cid")
        settings = Settings.from_env()
        assert settings.login_version == "open"
        assert settings.session_ttl_seconds == 600
        assert settings.oidc_client_id == "cid"

    def test_dotenv_file_used_when_env_missing(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.delenv("LOGIN_PAGE_PATH", raising=False)
        (tmp_path / ".env").write_text("LOGIN_PAGE_PATH=/signin\n")
        assert Settings.from_env().login_page_path == "/signin"

    def test_environment_beats_dotenv(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text("LOGIN_PAGE_PATH=/signin\n")
        monkeypatch.setenv("LOGIN_PAGE_PATH", "/enter")
        assert Settings.from_env().login_page_path == "/enter"

    def test_settings_are_cached_until_reset(self, monkeypatch):
        reset_settings_cache()
        first = get_settings()
        monkeypatch.setenv("LOGIN_VERSION", "open")
        assert get_settings() is first
        reset_settings_cache()
        assert get_settings().login_version == "open"


class TestValidation:
    def test_missing_secret_is_generated(self):
        settings = Settings(session_secret=None)
        assert settings.session_secret
        assert len(settings.session_secret) >= 32

    def test_unknown_backend_rejected(self):
        with pytest.raises(ValidationError):
            Settings(session_secret="s", session_backend="memcached")

    def test_backend_parsed(self):
        assert Settings(session_secret="s", session_backend="redis").session_backend is SessionBackend.REDIS

    def test_login_page_must_be_absolute_path(self):
        with pytest.raises(ValidationError):
            Settings(session_secret="s", login_page_path="login")

    def test_non_positive_ttl_rejected(self):
        with pytest.raises(ValidationError):
            Settings(session_secret="s", session_ttl_seconds=0)

    def test_trailing_slashes_stripped(self):
        settings = Settings(session_secret="s", site_url="http://gw.local/", oidc_logout_url="https://idp/logout/")
        assert settings.site_url == "http://gw.local"
        assert settings.oidc_logout_url == "https://idp/logout"


class TestDerived:
    def test_oidc_enabled_needs_all_four_values(self, make_settings):
        base = {
            "oidc_client_id": "cid",
            "oidc_auth_url": "https://idp/authorize",
            "oidc_token_url": "https://idp/token",
            "oidc_userinfo_url": "https://idp/userinfo",
        }
        assert make_settings(**base).oidc_enabled
        for key in base:
            assert not make_settings(**{**base, key: ""}).oidc_enabled

    def test_account_table_skips_malformed_entries(self, make_settings):
        table = make_settings(accounts="alice:a, bogus ,bob:b").account_table()
        assert table == {"alice": "a", "bob": "b"}

    def test_exempt_prefixes(self, make_settings):
        assert make_settings(auth_exempt_prefixes="/auth, /healthz").exempt_prefixes() == ("/auth", "/healthz")
