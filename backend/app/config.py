"""Chatroom application configuration.

Loads settings from two YAML files:
  * chatroom.settings.yaml  - non-secret configuration
  * chatroom.secrets.yaml   - secrets (never committed)

Both files are optional. Missing files fall back to the defaults declared on
the models below.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("chatroom.settings.yaml")
SECRETS_FILE  = Path("chatroom.secrets.yaml")


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


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str  = "0.0.0.0"
    port:            int  = 3005
    allowed_origins: List[str] = Field(default_factory=lambda: ["http://localhost:3000"])


class LoggingSettings(BaseModel):
    level: str = "info"


class AuthSettings(BaseModel):
    token_expire_minutes: int = 24 * 60
    algorithm:            str = "HS256"


class RateLimitSettings(BaseModel):
    """Per-connection admission control: at most max_events per window."""
    max_events:     int   = 5
    window_seconds: float = 10.0

    @field_validator("max_events")
    @classmethod
    def _positive_events(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_events must be >= 1")
        return v

    @field_validator("window_seconds")
    @classmethod
    def _positive_window(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("window_seconds must be > 0")
        return v


class PresenceSettings(BaseModel):
    typing_ttl_seconds: float = 3.0


class RoomSettings(BaseModel):
    sweep_interval_seconds: float = 3600.0
    max_history:            int   = 0  # 0 = unbounded


class ConversationSettings(BaseModel):
    max_history: int = 0  # 0 = unbounded


class AppConfig(BaseModel):
    server:        ServerSettings       = Field(default_factory=ServerSettings)
    logging:       LoggingSettings      = Field(default_factory=LoggingSettings)
    auth:          AuthSettings         = Field(default_factory=AuthSettings)
    rate_limit:    RateLimitSettings    = Field(default_factory=RateLimitSettings)
    presence:      PresenceSettings     = Field(default_factory=PresenceSettings)
    rooms:         RoomSettings         = Field(default_factory=RoomSettings)
    conversations: ConversationSettings = Field(default_factory=ConversationSettings)
    secrets:       Secrets              = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppConfig:
    """Load and merge settings + secrets into a single *AppConfig* object."""
    settings_data = _load_yaml(Path(settings_path) if settings_path else SETTINGS_FILE)
    secrets_data  = _load_yaml(Path(secrets_path) if secrets_path else SECRETS_FILE)

    # Merge: secrets live under the "secrets" key in AppConfig
    settings_data["secrets"] = secrets_data

    config = AppConfig(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, rate_limit=%d/%.0fs, typing_ttl=%.1fs)",
        config.server.host,
        config.server.port,
        config.rate_limit.max_events,
        config.rate_limit.window_seconds,
        config.presence.typing_ttl_seconds,
    )
    return config


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[AppConfig]) -> None:
    """Replace the process-wide config (``None`` forces a reload)."""
    global _config
    _config = config
