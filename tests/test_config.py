"""Test configuration and settings."""

import pytest
from pydantic import ValidationError

from mcp_host.core.config import Settings


class TestSettings:
    """Test configuration settings."""

    def test_default_settings(self):
        """Test that default settings are loaded correctly."""
        settings = Settings()

        assert settings.HOST == "127.0.0.1"
        assert settings.PORT == 8000
        assert settings.DEBUG is False
        assert settings.LOG_LEVEL == "INFO"
        assert settings.LOG_FORMAT == "json"
        assert settings.CONNECT_RETRY_DELAY == 1.0
        assert settings.MAX_TOOL_ITERATIONS == 0

    def test_settings_from_env(self, monkeypatch):
        """Test that settings can be loaded from environment variables."""
        monkeypatch.setenv("HOST", "0.0.0.0")
        monkeypatch.setenv("PORT", "9000")
        monkeypatch.setenv("DEBUG", "true")
        monkeypatch.setenv("MCP_SERVER_URL", "http://mcp.example:9999/mcp")

        settings = Settings()

        assert settings.HOST == "0.0.0.0"
        assert settings.PORT == 9000
        assert settings.DEBUG is True
        assert settings.MCP_SERVER_URL == "http://mcp.example:9999/mcp"

    def test_sampling_model_falls_back_to_model(self):
        assert Settings(MODEL="gpt-test").sampling_model == "gpt-test"
        assert Settings(MODEL="gpt-test", SAMPLING_MODEL="gpt-small").sampling_model == "gpt-small"

    def test_log_level_is_normalized(self):
        assert Settings(LOG_LEVEL="debug").LOG_LEVEL == "DEBUG"

    def test_invalid_log_level_rejected(self):
        with pytest.raises(ValidationError):
            Settings(LOG_LEVEL="chatty")

    def test_invalid_log_format_rejected(self):
        with pytest.raises(ValidationError):
            Settings(LOG_FORMAT="xml")

    def test_sampling_timeout_documents_session_stall(self):
        description = Settings.model_fields["SAMPLING_TIMEOUT"].description
        assert "0 = forever" in description
        assert "tool calls" in description and "pings" in description
        assert Settings(SAMPLING_TIMEOUT=2.5).SAMPLING_TIMEOUT == 2.5
