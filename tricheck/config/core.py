"""Process settings for the oracle.

Resolution order (highest first): constructor kwargs, ``TRICHECK_*``
environment variables, ``.env``, the YAML file, field defaults.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Literal, Tuple, Type

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from tricheck.oracle.config.settlement_params import SettlementParams

ENV_PREFIX = "TRICHECK_"
CONFIG_FILE_ENV = "TRICHECK_CONFIG_FILE"


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _data_dir(test_mode: bool = False) -> Path:
    sub = "test" if test_mode else "oracle"
    return _project_root() / "tricheck" / "data" / sub


def default_yaml_path() -> Path:
    configured = os.environ.get(CONFIG_FILE_ENV)
    if configured:
        return Path(configured).expanduser().resolve()
    return _project_root() / "config" / "oracle.yaml"


class APISettings(BaseModel):
    """Market query + storage API (the thin CRUD service)."""

    base_url: str = "http://localhost:3001"
    timeout_sec: float = Field(default=15.0, gt=0)
    max_retries: int = Field(default=2, ge=0, le=10)


class RatingSettings(BaseModel):
    api_key: SecretStr = SecretStr("")
    model: str = "claude-opus-4-6"
    max_tokens: int = Field(default=512, ge=16, le=8192)
    summary_max_tokens: int = Field(default=300, ge=16, le=8192)


class DatabaseSettings(BaseModel):
    url: str | None = None
    echo: bool = False

    def resolved_url(self, test_mode: bool = False) -> str:
        if self.url:
            return self.url
        data_dir = _data_dir(test_mode)
        data_dir.mkdir(parents=True, exist_ok=True)
        return f"sqlite+aiosqlite:///{data_dir / 'settlement.db'}"


class LedgerSettings(BaseModel):
    mode: Literal["local", "gateway"] = "local"
    gateway_url: str = "http://localhost:8899"
    authority: str = "settlement-authority"
    timeout_sec: float = Field(default=30.0, gt=0)


class LoggingSettings(BaseModel):
    level: str = "INFO"
    log_dir: str | None = None
    max_bytes: int = Field(default=50 * 1024 * 1024, ge=1024)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    test_mode: bool = False
    api: APISettings = Field(default_factory=APISettings)
    rating: RatingSettings = Field(default_factory=RatingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    ledger: LedgerSettings = Field(default_factory=LedgerSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    settlement: SettlementParams = Field(default_factory=SettlementParams)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        sources: list[PydanticBaseSettingsSource] = [init_settings, env_settings, dotenv_settings]
        yaml_path = default_yaml_path()
        if yaml_path.exists():
            sources.append(YamlConfigSettingsSource(settings_cls, yaml_file=yaml_path))
        sources.append(file_secret_settings)
        return tuple(sources)


def load_settings(**overrides: Any) -> Settings:
    return Settings(**overrides)


_SECRET_KEYS = ("api_key", "password", "secret", "token")


def sanitize_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of a settings dump with secret-looking values masked, for logging."""
    clean: Dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, dict):
            clean[key] = sanitize_dict(value)
        elif any(marker in key.lower() for marker in _SECRET_KEYS):
            clean[key] = "***" if value else ""
        else:
            clean[key] = value
    return clean


__all__ = [
    "APISettings",
    "RatingSettings",
    "DatabaseSettings",
    "LedgerSettings",
    "LoggingSettings",
    "Settings",
    "load_settings",
    "sanitize_dict",
    "default_yaml_path",
]
