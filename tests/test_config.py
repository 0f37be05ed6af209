"""Tests for tempmail_client.config."""

from __future__ import annotations

from pathlib import Path

from tempmail_client.config import (
    ClientConfig,
    HttpConfig,
    PollerConfig,
    RetryConfig,
    StorageConfig,
)


class TestRetryConfig:
    def test_defaults(self):
        cfg = RetryConfig()
        assert cfg.max_retries == 3
        assert cfg.initial_wait_seconds == 1.0
        assert cfg.max_wait_seconds == 30.0
        assert cfg.multiplier == 2.0

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("TEMPMAIL_RETRY_MAX_RETRIES", "5")
        monkeypatch.setenv("TEMPMAIL_RETRY_INITIAL_WAIT_SECONDS", "0.5")
        cfg = RetryConfig()
        assert cfg.max_retries == 5
        assert cfg.initial_wait_seconds == 0.5


class TestPollerConfig:
    def test_default_interval(self):
        assert PollerConfig().interval_seconds == 1.0

    def test_interval_from_env(self, monkeypatch):
        monkeypatch.setenv("TEMPMAIL_POLL_INTERVAL_SECONDS", "2.5")
        assert PollerConfig().interval_seconds == 2.5


class TestHttpConfig:
    def test_defaults(self):
        cfg = HttpConfig()
        assert cfg.timeout_seconds == 30.0
        assert cfg.user_agent == "tempmail-client"


class TestStorageConfig:
    def test_memory_by_default(self):
        assert StorageConfig().path is None

    def test_path_from_env(self, monkeypatch, tmp_path: Path):
        monkeypatch.setenv("TEMPMAIL_STORAGE_PATH", str(tmp_path / "state.json"))
        assert StorageConfig().path == tmp_path / "state.json"


class TestClientConfig:
    def test_defaults(self):
        cfg = ClientConfig()
        assert cfg.default_provider == "duckmail"
        assert cfg.remember_passwords is True
        assert cfg.serialize_mutations is True
        assert cfg.api_key is None
        assert isinstance(cfg.retry, RetryConfig)
        assert isinstance(cfg.poller, PollerConfig)
        assert isinstance(cfg.http, HttpConfig)
        assert isinstance(cfg.storage, StorageConfig)

    def test_nested_overrides(self):
        cfg = ClientConfig(
            default_provider="mailtm",
            retry=RetryConfig(max_retries=1),
            poller=PollerConfig(interval_seconds=2.0),
        )
        assert cfg.default_provider == "mailtm"
        assert cfg.retry.max_retries == 1
        assert cfg.poller.interval_seconds == 2.0

    def test_secrets_from_env(self, monkeypatch):
        monkeypatch.setenv("TEMPMAIL_API_KEY", "dk_secret")
        monkeypatch.setenv("TEMPMAIL_ADDRESS", "me@duckmail.sbs")
        monkeypatch.setenv("TEMPMAIL_PASSWORD", "hunter22")
        cfg = ClientConfig()
        assert cfg.api_key is not None
        assert cfg.api_key.get_secret_value() == "dk_secret"
        assert "dk_secret" not in repr(cfg)
        assert cfg.address == "me@duckmail.sbs"
        assert cfg.password.get_secret_value() == "hunter22"
