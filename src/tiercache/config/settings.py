"""Settings and configuration management."""

import logging
import re
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from typing import ClassVar

from pydantic import Field, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

logger = logging.getLogger(__name__)

# Regex for ${ENV_VAR} placeholders in YAML values
_ENV_VAR_PLACEHOLDER_RE = re.compile(r"^\$\{[A-Z_][A-Z0-9_]*\}$")

# YAML config search paths (checked in order, first found wins)
_YAML_SEARCH_PATHS = [
    Path("tiercache.yaml"),
    Path("config/tiercache.yaml"),
    Path.home() / ".config" / "tiercache" / "tiercache.yaml",
]


def _find_yaml_config() -> Path | None:
    """Find the first tiercache.yaml in search paths."""
    for path in _YAML_SEARCH_PATHS:
        if path.is_file():
            return path
    return None


class Settings(BaseSettings):
    """Application settings for the default tier chain.

    Priority chain: init kwargs > env vars > .env file > tiercache.yaml > defaults
    """

    model_config = SettingsConfigDict(
        env_prefix="TIERCACHE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Class-level cache for the resolved YAML path (not a pydantic field)
    _yaml_path: ClassVar[Path | None] = None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings source priority.

        Priority: init kwargs > env vars > .env file > tiercache.yaml > file secrets > defaults
        """
        sources: list[PydanticBaseSettingsSource] = [
            init_settings,
            env_settings,
            dotenv_settings,
        ]

        yaml_path = _find_yaml_config()
        cls._yaml_path = yaml_path
        if yaml_path:
            sources.append(
                YamlConfigSettingsSource(
                    settings_cls,
                    yaml_file=yaml_path,
                    yaml_file_encoding="utf-8",
                )
            )

        sources.append(file_secret_settings)
        return tuple(sources)

    @model_validator(mode="before")
    @classmethod
    def _resolve_env_var_placeholders(cls, data: dict) -> dict:
        """Strip unresolved ${VAR} placeholders so they become None.

        YAML files may reference secrets such as the Redis URL with ${ENV_VAR}
        syntax. When the variable is not set the field default applies.
        """
        if not isinstance(data, dict):
            return data
        for key, value in data.items():
            if isinstance(value, str) and _ENV_VAR_PLACEHOLDER_RE.match(value):
                data[key] = None
        return data

    # Logging
    log_level: str = Field("INFO", description="Logging level")
    log_format: str = Field("text", description="Log format: 'text' or 'json'")
    sanitize_logs: bool = Field(True, description="Redact credentials from logs")

    # Shared cache options
    namespace: str = Field("", description="Prefix applied to every key")
    ttl_seconds: float | None = Field(None, ge=0, description="Time to live (None = no expiry)")

    # Memory tier
    memory_purge_seconds: float = Field(120.0, gt=0, description="Purge interval of expired entries")
    memory_max_size: int = Field(0, ge=0, description="Maximum entries (0 = unlimited)")

    # Redis tier
    redis_url: str | None = Field(None, description="Redis URL (tier enabled when set)")
    redis_manage_types: bool = Field(True, description="Keep value kinds in type tags")
    redis_client_caching: bool = Field(False, description="Keep read results in process")
    redis_client_caching_ttl_seconds: float = Field(
        0.0, ge=0, description="How long cached read results are kept"
    )

    # S3 tier
    s3_bucket: str | None = Field(None, description="Bucket name (tier enabled when set)")
    s3_region: str | None = Field(None, description="AWS region")
    s3_prefix: str | None = Field(None, description="Object key prefix (default: namespace)")
    s3_suffix: str = Field("", description="Object key suffix, e.g. '.json'")
    s3_content_type: str = Field("text/plain", description="Content type of written objects")
    s3_endpoint_url: str | None = Field(None, description="Custom S3 endpoint")

    @field_validator("log_format")
    @classmethod
    def _check_log_format(cls, value: str) -> str:
        value = value.lower()
        if value not in ("text", "json"):
            raise ValueError("log_format must be 'text' or 'json'")
        return value

    @property
    def ttl(self) -> timedelta | None:
        """TTL as a timedelta, or None when writes never expire."""
        if not self.ttl_seconds:
            return None
        return timedelta(seconds=self.ttl_seconds)

    @property
    def yaml_path(self) -> Path | None:
        """The YAML file the settings were loaded from, if any."""
        return type(self)._yaml_path


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
