"""fxgate application configuration.

Loads settings from two YAML files:
  * fxgate.settings.yaml  : non-secret configuration
  * fxgate.secrets.yaml   : admin token and upstream API keys (never committed)

Environment variables override the secrets and a handful of server
settings so the gateway can be configured from a container environment
without any file at all.
"""
from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("fxgate.settings.yaml")
SECRETS_FILE  = Path("fxgate.secrets.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class ApiKeys(BaseModel):
    openai:         Optional[str] = None
    openweather:    Optional[str] = None
    weatherapi:     Optional[str] = None
    exchangerate:   Optional[str] = None
    libretranslate: Optional[str] = None
    oxford_app_id:  Optional[str] = None
    oxford_app_key: Optional[str] = None


class Secrets(BaseModel):
    admin_token: Optional[str] = None
    api_keys:    ApiKeys       = Field(default_factory=ApiKeys)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str  = "0.0.0.0"
    port:            int  = 3000
    environment:     Literal["development", "production", "test"] = "development"
    version:         str  = "1.0.0"
    service_name:    str  = "fxgate"
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


class LoggingSettings(BaseModel):
    level: str = "info"


class RateLimitSettings(BaseModel):
    """Fixed-window limiter: ``points`` requests per ``duration_seconds``."""
    enabled:          bool = True
    points:           int  = 100
    duration_seconds: int  = 60
    block_seconds:    int  = 300


class BatchSettings(BaseModel):
    max_requests: int = 10
    concurrency:  int = 5

    @field_validator("max_requests", "concurrency")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value


class StorageSettings(BaseModel):
    temp_dir:               str = Field(
        default_factory=lambda: str(Path(tempfile.gettempdir()) / "fxgate")
    )
    file_lifetime_seconds:  int = 3600
    max_total_bytes:        int = 500 * 1024 * 1024
    max_file_bytes:         int = 100 * 1024 * 1024
    sweep_interval_seconds: int = 1800
    orphan_max_age_seconds: int = 2 * 3600


class HttpSettings(BaseModel):
    """Shared outbound HTTP client defaults."""
    timeout_seconds:     float = 30.0
    lookup_timeout_seconds: float = 10.0
    max_retries:         int   = 3
    retry_delay_seconds: float = 1.0


class AppConfig(BaseModel):
    server:     ServerSettings    = Field(default_factory=ServerSettings)
    logging:    LoggingSettings   = Field(default_factory=LoggingSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    batch:      BatchSettings     = Field(default_factory=BatchSettings)
    storage:    StorageSettings   = Field(default_factory=StorageSettings)
    http:       HttpSettings      = Field(default_factory=HttpSettings)
    warmup:     List[str]         = Field(
        default_factory=lambda: ["tools/qr", "tools/translate", "fun/dice"]
    )
    secrets:    Secrets           = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Environment overrides
# ---------------------------------------------------------------------------

_SECRET_ENV_VARS = {
    "OPENAI_API_KEY":         "openai",
    "OPENWEATHER_API_KEY":    "openweather",
    "WEATHERAPI_KEY":         "weatherapi",
    "EXCHANGERATE_API_KEY":   "exchangerate",
    "LIBRETRANSLATE_API_KEY": "libretranslate",
    "OXFORD_DICTIONARY_APP_ID":  "oxford_app_id",
    "OXFORD_DICTIONARY_API_KEY": "oxford_app_key",
}


def _apply_env_overrides(config: AppConfig) -> None:
    """Let process environment win over values read from YAML."""
    admin_token = os.environ.get("ADMIN_TOKEN")
    if admin_token:
        config.secrets.admin_token = admin_token

    for env_var, field_name in _SECRET_ENV_VARS.items():
        value = os.environ.get(env_var)
        if value:
            setattr(config.secrets.api_keys, field_name, value)

    environment = os.environ.get("FXGATE_ENV")
    if environment:
        config.server.environment = environment

    port = os.environ.get("PORT")
    if port and port.isdigit():
        config.server.port = int(port)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppConfig:
    """Load and merge settings + secrets into a single *AppConfig* object."""
    settings_file = Path(settings_path) if settings_path else SETTINGS_FILE
    secrets_file = Path(secrets_path) if secrets_path else settings_file.with_name(SECRETS_FILE.name)

    settings_data = _load_yaml(settings_file)
    secrets_data  = _load_yaml(secrets_file)

    # Merge: secrets live under the "secrets" key in AppConfig
    settings_data["secrets"] = secrets_data

    config = AppConfig(**settings_data)
    _apply_env_overrides(config)

    temp_dir = Path(config.storage.temp_dir).expanduser()
    if not temp_dir.is_absolute():
        temp_dir = settings_file.resolve().parent / temp_dir
    config.storage.temp_dir = str(temp_dir)

    logger.info(
        "Settings loaded (env=%s, port=%s, rate_limit=%s/%ss, temp_dir=%s)",
        config.server.environment,
        config.server.port,
        config.rate_limit.points,
        config.rate_limit.duration_seconds,
        config.storage.temp_dir,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[AppConfig]) -> None:
    """Replace (or clear) the process-wide configuration."""
    global _config
    _config = config
