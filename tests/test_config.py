"""Tests for configuration loading."""

import json
from pathlib import Path
from unittest.mock import patch

from duplex.config import (
    DEFAULT_API_URL,
    AuthSettings,
    Config,
    fallback_access_token,
)


class TestConfig:
    """Tests for Config."""

    def test_defaults(self, tmp_path, monkeypatch):
        monkeypatch.delenv("DUPLEX_API_URL", raising=False)

        config = Config.load(tmp_path / "missing.json")

        assert config.api_url == DEFAULT_API_URL
        assert config.sync.debounce_seconds == 5
        assert config.sync.workspace_id == "default"
        assert config.discovery.auto_discover is True
        assert config.parsers.enabled == ["claude-code"]
        assert config.auth.check_interval_seconds == 30
        assert config.auth.refresh_buffer_seconds == 60

    def test_save_and_load(self, tmp_path, monkeypatch):
        monkeypatch.delenv("DUPLEX_API_URL", raising=False)
        path = tmp_path / "config.json"
        config = Config(api_url="https://api.duplex.test")
        config.sync.debounce_seconds = 2
        config.discovery.additional_paths = ["~/agent-logs"]

        config.save(path)
        loaded = Config.load(path)

        assert loaded.api_url == "https://api.duplex.test"
        assert loaded.sync.debounce_seconds == 2
        assert loaded.discovery.additional_paths == ["~/agent-logs"]

    def test_invalid_file_falls_back_to_defaults(self, tmp_path, monkeypatch):
        monkeypatch.delenv("DUPLEX_API_URL", raising=False)
        path = tmp_path / "config.json"
        path.write_text("{broken")

        assert Config.load(path).api_url == DEFAULT_API_URL

    def test_env_api_url_wins(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"api_url": "https://from-file.test"}))
        monkeypatch.setenv("DUPLEX_API_URL", "https://from-env.test")

        assert Config.load(path).api_url == "https://from-env.test"

    def test_database_path_in_data_dir(self):
        with patch.object(Config, "get_data_dir", return_value=Path("/data")):
            assert Config.get_database_path() == Path("/data") / "sync.db"


class TestAuthSettings:
    """Tests for client id and fallback token resolution."""

    def test_env_client_id_wins(self, monkeypatch):
        monkeypatch.setenv("WORKOS_CLIENT_ID", "client_env")

        assert AuthSettings(client_id="client_file").resolve_client_id() == "client_env"

    def test_config_client_id(self, monkeypatch):
        monkeypatch.delenv("WORKOS_CLIENT_ID", raising=False)

        assert AuthSettings(client_id="client_file").resolve_client_id() == "client_file"
        assert AuthSettings().resolve_client_id() is None

    def test_fallback_access_token(self, monkeypatch):
        monkeypatch.setenv("DUPLEX_ACCESS_TOKEN", "static")
        assert fallback_access_token() == "static"

        monkeypatch.setenv("DUPLEX_ACCESS_TOKEN", "")
        assert fallback_access_token() is None
