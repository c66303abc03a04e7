"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (CHANGEWATCH__SERVER__PORT=9000)
  2. changewatch.yaml       (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional. API credentials may also come from the
conventional ``GEMINI_API_KEY``, ``RESEND_API_KEY`` and ``NOTIFY_EMAIL``
variables, which apply when the namespaced variables are unset.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("changewatch")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "changewatch.db")

DEFAULT_CHANGELOG_URL = "https://raw.githubusercontent.com/anthropics/claude-code/main/CHANGELOG.md"


def _find_config_file() -> str | None:
    """Return the path of the first changewatch.yaml found, or None."""
    candidates = [
        Path("changewatch.yaml"),
        Path(platformdirs.user_config_dir("changewatch")) / "changewatch.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ServerSettings(BaseModel):
    host: str = "127.0.0.1"
    port: int = 3001


class DatabaseSettings(BaseModel):
    db_path: str = _DEFAULT_DB_PATH


class FetcherSettings(BaseModel):
    timeout_seconds: float = 30.0
    user_agent: str = "changewatch/1.0"


class GeminiSettings(BaseModel):
    api_key: str = ""
    base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    analysis_model: str = "gemini-3-flash-preview"
    tts_model: str = "gemini-2.5-flash-preview-tts"


class EmailSettings(BaseModel):
    resend_api_key: str = ""
    notify_email: str = ""
    from_address: str = "Changelog Tracker <onboarding@resend.dev>"
    base_url: str = "https://api.resend.com"


class MonitorSettings(BaseModel):
    seed_default_source: bool = True
    default_source_name: str = "Claude Code"
    default_source_url: str = DEFAULT_CHANGELOG_URL
    default_voice: str = "Charon"


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: CHANGEWATCH__SERVER__PORT=9000
        env_prefix="CHANGEWATCH__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    server: ServerSettings = ServerSettings()
    database: DatabaseSettings = DatabaseSettings()
    fetcher: FetcherSettings = FetcherSettings()
    gemini: GeminiSettings = GeminiSettings()
    email: EmailSettings = EmailSettings()
    monitor: MonitorSettings = MonitorSettings()
    logging: LoggingSettings = LoggingSettings()

    @model_validator(mode="after")
    def _apply_conventional_secrets(self) -> Settings:
        if not self.gemini.api_key:
            self.gemini.api_key = os.environ.get("GEMINI_API_KEY", "")
        if not self.email.resend_api_key:
            self.email.resend_api_key = os.environ.get("RESEND_API_KEY", "")
        if not self.email.notify_email:
            self.email.notify_email = os.environ.get("NOTIFY_EMAIL", "")
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
        )
