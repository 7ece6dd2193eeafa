"""Utilities package initialization."""
from .config import (
    GlobalSettings,
    get_settings,
    load_yaml_config,
    resolve_timezone,
)
from .logging import set_diagnostics_level, setup_logger

__all__ = [
    "GlobalSettings",
    "get_settings",
    "load_yaml_config",
    "resolve_timezone",
    "set_diagnostics_level",
    "setup_logger",
]
