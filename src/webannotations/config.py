"""Centralised configuration using pydantic-settings.

All environment variables are read through the Settings class.
Consumers call ``get_settings()`` to obtain a cached, validated instance.
Tests construct ``Settings(_env_file=None, ...)`` directly for isolation.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# src/webannotations/config.py  ->  parent x3  ->  project root
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


# ---------------------------------------------------------------------------
# Sub-models (one per configuration domain)
# ---------------------------------------------------------------------------
class AnchoringConfig(BaseModel):
    """Anchor capture and highlight painting."""

    context_chars: int = Field(default=40, ge=0)
    highlight_alpha: float = 0.5

    @field_validator("highlight_alpha")
    @classmethod
    def _clamp_alpha(cls, value: float) -> float:
        return min(1.0, max(0.0, value))


class NavigationConfig(BaseModel):
    """Client-side navigation detection."""

    url_check_delay_ms: int = Field(default=120, ge=0)


class StoreConfig(BaseModel):
    """Annotation store backend."""

    backend: Literal["database", "memory"] = "database"
    url: str = "sqlite+aiosqlite:///data/webannotations.db"
    echo: bool = False


class AppConfig(BaseModel):
    """Application runtime configuration."""

    log_dir: Path = Path("logs")
    repository_url: str = ""


# ---------------------------------------------------------------------------
# Root settings
# ---------------------------------------------------------------------------
class Settings(BaseSettings):
    """Application settings with automatic .env loading and type validation.

    Environment variables use double-underscore delimiter for nesting:
    ``STORE__URL``, ``ANCHORING__CONTEXT_CHARS``, ``APP__LOG_DIR``, etc.
    """

    model_config = SettingsConfigDict(
        env_file=_PROJECT_ROOT / ".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    anchoring: AnchoringConfig = AnchoringConfig()
    navigation: NavigationConfig = NavigationConfig()
    store: StoreConfig = StoreConfig()
    app: AppConfig = AppConfig()


# ---------------------------------------------------------------------------
# Singleton access
# ---------------------------------------------------------------------------
@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Call ``get_settings.cache_clear()`` in tests to reset.
    """
    settings = Settings()

    env_file = settings.model_config.get("env_file")
    if env_file is not None and Path(str(env_file)).is_file():
        logger.info("Settings loaded .env from: %s", env_file)
    else:
        logger.info("Settings: no .env file found, using env vars and defaults")

    return settings
