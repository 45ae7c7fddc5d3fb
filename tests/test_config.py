"""Tests for application configuration."""

from pathlib import Path

import pytest
from pydantic import ValidationError

import doorlink.config as config_module
from doorlink.config import Settings, load_config


@pytest.fixture(autouse=True)
def isolated_env_file(tmp_path, monkeypatch):
    env_file = tmp_path / ".env"
    monkeypatch.setattr(config_module, "_ENV_FILE", env_file)
    return env_file


class TestDefaults:
    def test_defaults(self):
        s = Settings()
        assert s.db_path == Path("./data/doorlink.db")
        assert s.invite_ttl_seconds == 300
        assert s.pending_request_ttl_hours == 48
        assert s.sweep_interval == 3600
        assert s.log_level == "info"


class TestLogLevel:
    def test_normalized_to_lowercase(self):
        assert Settings(log_level=" DEBUG ").log_level == "debug"

    def test_unknown_level_rejected(self):
        with pytest.raises(ValidationError):
            Settings(log_level="verbose")


class TestSources:
    def test_env_var_override(self, monkeypatch):
        monkeypatch.setenv("DOORLINK_SEND_TIMEOUT", "1.5")
        monkeypatch.setenv("DOORLINK_PORT", "9000")
        s = load_config()
        assert s.send_timeout == 1.5
        assert s.port == 9000

    def test_dotenv_file(self, isolated_env_file):
        isolated_env_file.write_text("DOORLINK_INVITE_TTL_SECONDS=120\n")
        assert load_config().invite_ttl_seconds == 120

    def test_env_beats_dotenv(self, isolated_env_file, monkeypatch):
        isolated_env_file.write_text("DOORLINK_LOG_LEVEL=warning\n")
        monkeypatch.setenv("DOORLINK_LOG_LEVEL", "error")
        assert load_config().log_level == "error"
