"""Settings for tablelog, read from ``TABLELOG_*`` variables and an optional YAML file."""

import json
import logging
from datetime import timezone as dt_timezone
from datetime import tzinfo
from functools import lru_cache
from pathlib import Path
from typing import Annotated, Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict, SettingsError

from ..exceptions import ConfigurationError

logger = logging.getLogger(__name__)

FALLBACK_TIMEZONE = "Etc/UTC"

_LEVEL_NAMES = frozenset(
    {"DEBUG", "INFO", "NOTICE", "WARNING", "ERROR", "CRITICAL", "ALERT", "EMERGENCY"}
)


def _normalize_level_value(value: Any) -> Any:
    """Accept level names in any case, or numeric levels, for threshold options."""

    if isinstance(value, int):
        return str(value)
    if not isinstance(value, str):
        return value
    candidate = value.strip()
    if candidate.isdigit():
        return candidate
    if candidate.upper() not in _LEVEL_NAMES:
        raise ValueError(f"Unknown log level '{value}'")
    return candidate.upper()


def load_yaml_config(config_path: str | Path) -> dict[str, Any]:
    """Read a YAML mapping from ``config_path``; an empty file yields ``{}``.

    Raises:
        ConfigurationError: The file is missing, unparseable, or not a mapping.
    """
    path = Path(config_path)
    try:
        loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigurationError(f"Configuration file not found: {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigurationError(f"Configuration file {path} must contain a mapping")
    return loaded


class DatabasePoolSettings(BaseModel):
    """Pool sizing for server databases; ignored for SQLite URLs."""

    model_config = ConfigDict(extra="forbid")

    pool_size: int = Field(default=5, ge=1)
    max_overflow: int = Field(default=10, ge=0)
    timeout: float = Field(default=30.0, gt=0)
    recycle_seconds: int = Field(default=1800, ge=0)
    pre_ping: bool = True


class ConsoleSettings(BaseModel):
    """Operator console sink options."""

    model_config = ConfigDict(extra="forbid")

    enabled: bool = False
    level: str = "WARNING"
    debug: bool = False

    @field_validator("level", mode="before")
    @classmethod
    def _normalize_level(cls, value: Any) -> Any:
        return _normalize_level_value(value)


class GlobalSettings(BaseSettings):
    """Every tunable of the pipeline and the CLI, prefixed ``TABLELOG_`` in the environment."""

    model_config = SettingsConfigDict(
        env_prefix="TABLELOG_",
        env_nested_delimiter="__",
        env_file=(".env", ".env.local"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = "development"
    log_level: str = "INFO"
    database_url: str | None = None
    database: DatabasePoolSettings = DatabasePoolSettings()
    timezone: str | None = None
    database_level: str = "NOTICE"
    channel_levels: Annotated[dict[str, str], NoDecode] = Field(default_factory=dict)
    interpolate_messages: bool = True
    console: ConsoleSettings = ConsoleSettings()
    purge_max_age_days: int = Field(default=90, ge=0)
    config_file: Path | None = None

    @field_validator("log_level", "environment")
    @classmethod
    def _normalize_case(cls, value: str, info: ValidationInfo) -> str:
        """Diagnostics levels are upper case, environment names lower case."""

        return value.upper() if info.field_name == "log_level" else value.lower()

    @field_validator("database_level", mode="before")
    @classmethod
    def _normalize_database_level(cls, value: Any) -> Any:
        return _normalize_level_value(value)

    @field_validator("channel_levels", mode="before")
    @classmethod
    def _normalize_channel_levels(cls, value: Any) -> Any:
        """Support ``auth=DEBUG,cron=ERROR`` strings as well as mappings."""

        if value is None:
            return {}
        if isinstance(value, str) and value.strip().startswith("{"):
            value = json.loads(value)
        if isinstance(value, str):
            pairs = [item.strip() for item in value.split(",") if item.strip()]
            parsed: dict[str, str] = {}
            for pair in pairs:
                if "=" not in pair:
                    raise ValueError("channel_levels entries must look like 'channel=LEVEL'")
                channel, level = pair.split("=", 1)
                parsed[channel.strip()] = level
            value = parsed
        if isinstance(value, dict):
            return {str(key): _normalize_level_value(level) for key, level in value.items()}
        raise ValueError("channel_levels must be a mapping or 'channel=LEVEL' pairs")

    @field_validator("timezone", mode="before")
    @classmethod
    def _validate_timezone(cls, value: Any) -> Any:
        if value is None or value == "":
            return None
        try:
            ZoneInfo(str(value))
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone '{value}'") from exc
        return str(value)

    def resolved_database_url(self) -> str:
        """Return the configured database URL or the local SQLite fallback."""

        return self.database_url or "sqlite:///./tablelog.db"

    def resolved_timezone(self) -> tzinfo:
        """Return the configured local timezone, falling back to UTC."""

        return resolve_timezone(self.timezone)


def resolve_timezone(name: str | tzinfo | None) -> tzinfo:
    """Resolve an IANA zone name (or tzinfo) with a fixed UTC fallback."""

    if isinstance(name, tzinfo):
        return name
    if not name or name == FALLBACK_TIMEZONE:
        return dt_timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone '%s'; falling back to %s", name, FALLBACK_TIMEZONE)
        return dt_timezone.utc


def _merge_under(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge_under(merged[key], value)
        else:
            merged[key] = value
    return merged


def _load_settings() -> GlobalSettings:
    try:
        settings = GlobalSettings()
    except (PydanticValidationError, SettingsError) as exc:
        raise ConfigurationError(f"Configuration validation failed: {exc}") from exc

    if settings.config_file is None:
        return settings

    # Values set through the environment win over the YAML file.
    combined = _merge_under(
        load_yaml_config(settings.config_file),
        settings.model_dump(exclude_unset=True),
    )
    try:
        return GlobalSettings.model_validate(combined)
    except PydanticValidationError as exc:
        raise ConfigurationError(
            f"Invalid configuration in '{settings.config_file}': {exc}"
        ) from exc


_cached_settings = lru_cache(maxsize=1)(_load_settings)


def get_settings(*, reload: bool = False) -> GlobalSettings:
    """Settings for the current process, parsed once; ``reload=True`` parses again."""

    if reload:
        _cached_settings.cache_clear()
    return _cached_settings()
