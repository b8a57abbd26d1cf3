"""Test configuration and settings."""

import pytest
from pydantic import ValidationError

from resilience_backbone.core.config import Settings, get_settings


class TestSettings:
    """Test configuration settings."""

    def test_default_settings(self):
        """Test that default settings are loaded correctly."""
        settings = Settings()

        assert settings.LOG_LEVEL == "INFO"
        assert settings.LOG_FORMAT == "json"
        assert settings.EVENT_BUS_RECORD_HISTORY is True
        assert settings.EVENT_BUS_HISTORY_LIMIT == 1000
        assert settings.EVENT_BUS_USE_DLQ is True
        assert settings.BREAKER_FAILURE_THRESHOLD == 5
        assert settings.BREAKER_SUCCESS_THRESHOLD == 1
        assert settings.BREAKER_TIMEOUT_SECONDS == 10.0
        assert settings.BREAKER_ROLLING_WINDOW_SECONDS == 60.0
        assert settings.BREAKER_IGNORED_ERROR_CODES == []

    def test_settings_from_env(self, monkeypatch):
        """Test that settings can be loaded from environment variables."""
        monkeypatch.setenv("LOG_LEVEL", "debug")
        monkeypatch.setenv("EVENT_BUS_HISTORY_LIMIT", "50")
        monkeypatch.setenv("BREAKER_FAILURE_THRESHOLD", "3")
        monkeypatch.setenv("BREAKER_IGNORED_ERROR_CODES", '["rate_limit_exceeded"]')

        settings = Settings()

        assert settings.LOG_LEVEL == "DEBUG"
        assert settings.EVENT_BUS_HISTORY_LIMIT == 50
        assert settings.BREAKER_FAILURE_THRESHOLD == 3
        assert settings.BREAKER_IGNORED_ERROR_CODES == ["rate_limit_exceeded"]

    def test_invalid_log_level(self, monkeypatch):
        """Test that an unknown log level is rejected."""
        monkeypatch.setenv("LOG_LEVEL", "LOUD")

        with pytest.raises(ValidationError):
            Settings()

    def test_invalid_log_format(self, monkeypatch):
        """Test that an unknown log format is rejected."""
        monkeypatch.setenv("LOG_FORMAT", "xml")

        with pytest.raises(ValidationError):
            Settings()

    def test_history_limit_must_be_positive(self, monkeypatch):
        """Test range validation on the history capacity."""
        monkeypatch.setenv("EVENT_BUS_HISTORY_LIMIT", "0")

        with pytest.raises(ValidationError):
            Settings()

    def test_get_settings_returns_shared_instance(self):
        """Test that get_settings is stable for dependency injection."""
        assert get_settings() is get_settings()
