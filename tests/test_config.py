"""Tests for configuration loading."""

import os
import pytest

from fieldsync.config import Config, load_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove FIELDSYNC_* variables from the environment."""
    for key in list(os.environ):
        if key.startswith("FIELDSYNC_"):
            monkeypatch.delenv(key)


class TestDefaults:
    """Tests for default configuration."""

    def test_defaults(self):
        config = load_config()

        assert config.storage.queue_key == "OFFLINE_QUEUE"
        assert config.storage.cache_prefix == "CACHE_"
        assert config.storage.token_key == "AUTH_TOKEN"
        assert config.sync.retry_delay_seconds == 5.0
        assert config.sync.keep_on_auth_error is False
        assert config.api.idempotency_header is None
        assert config.connectivity.assume_online is True

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_config(tmp_path / "nope.yaml")

        assert config == Config()


class TestYamlLoading:
    """Tests for YAML config files."""

    def test_partial_sections(self, tmp_path):
        path = tmp_path / "fieldsync.yaml"
        path.write_text(
            "api:\n"
            "  base_url: https://api.example.org/v1\n"
            "  idempotency_header: Idempotency-Key\n"
            "sync:\n"
            "  retry_delay_seconds: 30\n"
            "  keep_on_auth_error: true\n"
            "connectivity:\n"
            "  probe_url: https://api.example.org/health\n"
        )

        config = load_config(path)

        assert config.api.base_url == "https://api.example.org/v1"
        assert config.api.idempotency_header == "Idempotency-Key"
        assert config.api.timeout_seconds == 30.0
        assert config.sync.retry_delay_seconds == 30
        assert config.sync.keep_on_auth_error is True
        assert config.sync.dropped_history_limit == 200
        assert config.connectivity.probe_url == "https://api.example.org/health"
        assert config.connectivity.probe_interval_seconds == 15.0

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert load_config(path) == Config()


class TestEnvOverrides:
    """Tests for FIELDSYNC_* environment overrides."""

    def test_env_overrides_file(self, tmp_path, monkeypatch):
        path = tmp_path / "fieldsync.yaml"
        path.write_text("storage:\n  db_path: /data/file.db\n")
        monkeypatch.setenv("FIELDSYNC_DB_PATH", "/data/env.db")
        monkeypatch.setenv("FIELDSYNC_SYNC_RETRY_DELAY", "2.5")
        monkeypatch.setenv("FIELDSYNC_SYNC_KEEP_ON_AUTH_ERROR", "yes")
        monkeypatch.setenv("FIELDSYNC_ASSUME_ONLINE", "false")

        config = load_config(path)

        assert config.storage.db_path == "/data/env.db"
        assert config.sync.retry_delay_seconds == 2.5
        assert config.sync.keep_on_auth_error is True
        assert config.connectivity.assume_online is False
