"""JustJio configuration.

Loads settings from two YAML files:
  * justjio.settings.yaml: non-secret configuration
  * justjio.secrets.yaml: secrets (never committed)

Both files are optional; every field has a development default. The
``JUSTJIO_SETTINGS`` and ``JUSTJIO_SECRETS`` environment variables point the
loader at files outside the working directory.
"""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("justjio.settings.yaml")
SECRETS_FILE  = Path("justjio.secrets.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"
    algorithm:  str = "HS256"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8080


class LoggingSettings(BaseModel):
    level: str = "info"


class AuthSettings(BaseModel):
    token_expire_minutes: int = 60 * 24


class ChatSettings(BaseModel):
    page_size: int = 10

    @field_validator("page_size")
    @classmethod
    def _positive_page_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("page_size must be at least 1")
        return value


class RealtimeSettings(BaseModel):
    """Client-side streaming connection settings."""
    ws_url:                  str           = "ws://localhost:8080/ws"
    api_url:                 str           = "http://localhost:8080"
    poll_interval_seconds:   float         = 5.0
    backoff_base_seconds:    float         = 1.0
    backoff_max_seconds:     float         = 30.0
    # None keeps retrying forever.
    max_retries:             Optional[int] = None
    connect_timeout_seconds: float         = 10.0
    # a connection counts as healthy after this long, or after its first event
    stable_after_seconds:    float         = 10.0


class ClientSettings(BaseModel):
    state_dir: str = "~/.justjio"


class AppConfig(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    auth:     AuthSettings     = Field(default_factory=AuthSettings)
    chat:     ChatSettings     = Field(default_factory=ChatSettings)
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)
    client:   ClientSettings   = Field(default_factory=ClientSettings)
    secrets:  Secrets          = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppConfig:
    """Load and merge settings + secrets into a single *AppConfig* object."""
    if settings_path is None:
        settings_path = Path(os.environ.get("JUSTJIO_SETTINGS", SETTINGS_FILE))
    if secrets_path is None:
        secrets_path = Path(os.environ.get("JUSTJIO_SECRETS", SECRETS_FILE))

    settings_data = _load_yaml(Path(settings_path))
    secrets_data  = _load_yaml(Path(secrets_path))

    # Merge: secrets live under the "secrets" key in AppConfig
    settings_data["secrets"] = secrets_data

    config = AppConfig(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, ws_url=%s, page_size=%d)",
        config.server.host,
        config.server.port,
        config.realtime.ws_url,
        config.chat.page_size,
    )
    return config


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    return load_config()
