"""Configuration loading for fieldsync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class ApiConfig:
    base_url: str = ""
    timeout_seconds: float = 30.0
    idempotency_header: str | None = None  # e.g. "Idempotency-Key"; unset sends none


@dataclass
class StorageConfig:
    """Where the outbox, cache and token live."""

    db_path: str = "~/.fieldsync/fieldsync.db"
    queue_key: str = "OFFLINE_QUEUE"
    dropped_key: str = "OFFLINE_DROPPED"
    cache_prefix: str = "CACHE_"
    token_key: str = "AUTH_TOKEN"


@dataclass
class UploadConfig:
    timeout_seconds: float = 60.0


@dataclass
class SyncConfig:
    """Configuration for outbox replay."""

    retry_delay_seconds: float = 5.0  # 0 disables automatic follow-up passes
    keep_on_auth_error: bool = False  # Retain 401/403 replays instead of dropping
    dropped_history_limit: int = 200


@dataclass
class ConnectivityConfig:
    probe_url: str = ""  # Empty: rely on update() reports only
    probe_interval_seconds: float = 15.0
    probe_timeout_seconds: float = 5.0
    assume_online: bool = True


@dataclass
class Config:
    api: ApiConfig = field(default_factory=ApiConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    upload: UploadConfig = field(default_factory=UploadConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    connectivity: ConnectivityConfig = field(default_factory=ConnectivityConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with FIELDSYNC_ prefix."""
    return os.environ.get(f"FIELDSYNC_{key}", default)


def _parse_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # API overrides
    if base_url := _get_env("API_BASE_URL"):
        config.api.base_url = base_url
    if timeout := _get_env("API_TIMEOUT"):
        config.api.timeout_seconds = float(timeout)
    if header := _get_env("API_IDEMPOTENCY_HEADER"):
        config.api.idempotency_header = header

    # Storage overrides
    if db_path := _get_env("DB_PATH"):
        config.storage.db_path = db_path

    # Upload overrides
    if upload_timeout := _get_env("UPLOAD_TIMEOUT"):
        config.upload.timeout_seconds = float(upload_timeout)

    # Sync overrides
    if retry_delay := _get_env("SYNC_RETRY_DELAY"):
        config.sync.retry_delay_seconds = float(retry_delay)
    if keep_auth := _get_env("SYNC_KEEP_ON_AUTH_ERROR"):
        config.sync.keep_on_auth_error = _parse_bool(keep_auth)

    # Connectivity overrides
    if probe_url := _get_env("PROBE_URL"):
        config.connectivity.probe_url = probe_url
    if probe_interval := _get_env("PROBE_INTERVAL"):
        config.connectivity.probe_interval_seconds = float(probe_interval)
    if assume_online := _get_env("ASSUME_ONLINE"):
        config.connectivity.assume_online = _parse_bool(assume_online)

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            if "api" in data:
                api_data = data["api"]
                config.api = ApiConfig(
                    base_url=api_data.get("base_url", config.api.base_url),
                    timeout_seconds=api_data.get(
                        "timeout_seconds", config.api.timeout_seconds
                    ),
                    idempotency_header=api_data.get(
                        "idempotency_header", config.api.idempotency_header
                    ),
                )

            if "storage" in data:
                storage_data = data["storage"]
                config.storage = StorageConfig(
                    db_path=storage_data.get("db_path", config.storage.db_path),
                    queue_key=storage_data.get("queue_key", config.storage.queue_key),
                    dropped_key=storage_data.get(
                        "dropped_key", config.storage.dropped_key
                    ),
                    cache_prefix=storage_data.get(
                        "cache_prefix", config.storage.cache_prefix
                    ),
                    token_key=storage_data.get("token_key", config.storage.token_key),
                )

            if "upload" in data:
                config.upload = UploadConfig(
                    timeout_seconds=data["upload"].get(
                        "timeout_seconds", config.upload.timeout_seconds
                    )
                )

            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    retry_delay_seconds=sync_data.get(
                        "retry_delay_seconds", config.sync.retry_delay_seconds
                    ),
                    keep_on_auth_error=sync_data.get(
                        "keep_on_auth_error", config.sync.keep_on_auth_error
                    ),
                    dropped_history_limit=sync_data.get(
                        "dropped_history_limit", config.sync.dropped_history_limit
                    ),
                )

            if "connectivity" in data:
                conn_data = data["connectivity"]
                config.connectivity = ConnectivityConfig(
                    probe_url=conn_data.get("probe_url", config.connectivity.probe_url),
                    probe_interval_seconds=conn_data.get(
                        "probe_interval_seconds",
                        config.connectivity.probe_interval_seconds,
                    ),
                    probe_timeout_seconds=conn_data.get(
                        "probe_timeout_seconds",
                        config.connectivity.probe_timeout_seconds,
                    ),
                    assume_online=conn_data.get(
                        "assume_online", config.connectivity.assume_online
                    ),
                )

    # Apply environment variable overrides
    config = _apply_env_overrides(config)

    return config
