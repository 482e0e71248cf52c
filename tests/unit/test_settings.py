"""
Tests for client settings.
"""

import pytest
from pydantic import ValidationError

from smart_client.config.settings import Settings, get_settings, reset_settings


class TestSettings:
    """Tests for Settings."""

    def test_defaults(self):
        """Should default to the SMART client values."""
        settings = Settings()

        assert settings.default_scope == "user/*.*"
        assert settings.state_length == 122
        assert settings.pkce_verifier_length == 122
        assert settings.token_expiry_margin_seconds == 10
        assert settings.request_timeout == 30

    def test_env_prefix(self, monkeypatch):
        """Should read SMART_CLIENT_ variables."""
        monkeypatch.setenv("SMART_CLIENT_DEFAULT_SCOPE", "patient/*.read")
        monkeypatch.setenv("SMART_CLIENT_TOKEN_EXPIRY_MARGIN_SECONDS", "30")

        settings = Settings()

        assert settings.default_scope == "patient/*.read"
        assert settings.token_expiry_margin_seconds == 30

    @pytest.mark.parametrize("length", [42, 129])
    def test_verifier_length_bounds(self, monkeypatch, length):
        """Should reject verifier lengths outside 43-128."""
        monkeypatch.setenv("SMART_CLIENT_PKCE_VERIFIER_LENGTH", str(length))

        with pytest.raises(ValidationError):
            Settings()

    @pytest.mark.parametrize("length", [8, 121])
    def test_state_length_minimum(self, monkeypatch, length):
        """Should reject state lengths below 122."""
        monkeypatch.setenv("SMART_CLIENT_STATE_LENGTH", str(length))

        with pytest.raises(ValidationError):
            Settings()

    def test_longer_state_length(self, monkeypatch):
        """Should accept state lengths above the default."""
        monkeypatch.setenv("SMART_CLIENT_STATE_LENGTH", "160")
        assert Settings().state_length == 160

    def test_language_must_be_two_letters(self, monkeypatch):
        """Should reject longer language codes."""
        monkeypatch.setenv("SMART_CLIENT_DEFAULT_LANGUAGE", "english")

        with pytest.raises(ValidationError):
            Settings()

    def test_empty_language_is_none(self, monkeypatch):
        """Should treat an empty language as unset."""
        monkeypatch.setenv("SMART_CLIENT_DEFAULT_LANGUAGE", "")
        assert Settings().default_language is None


class TestGetSettings:
    """Tests for the cached settings accessor."""

    def test_cached(self):
        """Should return the same instance."""
        assert get_settings() is get_settings()

    def test_reset(self, monkeypatch):
        """Should re-read the environment after reset."""
        first = get_settings()
        monkeypatch.setenv("SMART_CLIENT_STATE_LENGTH", "64")
        reset_settings()

        second = get_settings()

        assert second is not first
        assert second.state_length == 64
