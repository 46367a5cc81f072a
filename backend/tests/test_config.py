"""Tests for YAML + environment configuration loading."""
from pathlib import Path

import pytest
import yaml
from pydantic import ValidationError

from fxgate.config import AppConfig, get_config, load_config, set_config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "ADMIN_TOKEN",
        "OPENAI_API_KEY",
        "OPENWEATHER_API_KEY",
        "WEATHERAPI_KEY",
        "EXCHANGERATE_API_KEY",
        "FXGATE_ENV",
        "PORT",
    ):
        monkeypatch.delenv(name, raising=False)


def _write(path: Path, data: dict) -> Path:
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


class TestDefaults:
    def test_defaults_without_files(self, tmp_path):
        config = load_config(tmp_path / "missing.yaml")
        assert config.server.port == 3000
        assert config.rate_limit.points == 100
        assert config.rate_limit.duration_seconds == 60
        assert config.rate_limit.block_seconds == 300
        assert config.batch.max_requests == 10
        assert config.batch.concurrency == 5
        assert config.storage.file_lifetime_seconds == 3600
        assert config.storage.max_total_bytes == 500 * 1024 * 1024
        assert config.storage.max_file_bytes == 100 * 1024 * 1024
        assert config.secrets.admin_token is None
        assert config.secrets.api_keys.openai is None

    def test_batch_limits_must_be_positive(self):
        with pytest.raises(ValidationError):
            AppConfig(batch={"max_requests": 0})


class TestYamlFiles:
    def test_settings_and_secrets_merge(self, tmp_path):
        settings = _write(tmp_path / "fxgate.settings.yaml", {
            "server": {"port": 8080, "environment": "production"},
            "rate_limit": {"points": 5},
            "storage": {"temp_dir": "scratch"},
        })
        _write(tmp_path / "fxgate.secrets.yaml", {
            "admin_token": "s3cret",
            "api_keys": {"openweather": "ow-key"},
        })

        config = load_config(settings)
        assert config.server.port == 8080
        assert config.server.is_development is False
        assert config.rate_limit.points == 5
        assert config.secrets.admin_token == "s3cret"
        assert config.secrets.api_keys.openweather == "ow-key"
        # relative temp_dir resolves next to the settings file
        assert Path(config.storage.temp_dir) == tmp_path.resolve() / "scratch"

    def test_env_overrides_yaml(self, tmp_path, monkeypatch):
        settings = _write(tmp_path / "fxgate.settings.yaml", {"server": {"port": 8080}})
        _write(tmp_path / "fxgate.secrets.yaml", {"admin_token": "from-file"})
        monkeypatch.setenv("ADMIN_TOKEN", "from-env")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        monkeypatch.setenv("PORT", "9090")
        monkeypatch.setenv("FXGATE_ENV", "test")

        config = load_config(settings)
        assert config.secrets.admin_token == "from-env"
        assert config.secrets.api_keys.openai == "sk-env"
        assert config.server.port == 9090
        assert config.server.environment == "test"


def test_get_and_set_config():
    custom = AppConfig()
    custom.server.port = 1234
    set_config(custom)
    try:
        assert get_config() is custom
    finally:
        set_config(None)
