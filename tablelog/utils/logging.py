"""Internal diagnostics logging for tablelog.

These loggers report on the pipeline itself (schema installs, failed
inserts, misbehaving host providers). They go through the standard library
``logging`` module and never through a channel logger, so a broken database
sink cannot recurse into itself.
"""

from __future__ import annotations

import logging
import sys
from threading import Lock
from typing import Any, Final

from .config import get_settings

LOG_FORMAT: Final[str] = (
    "%(asctime)s | %(levelname)s | %(name)s | "
    "channel=%(channel)s | record_id=%(record_id)s | %(message)s"
)

# Placeholders rendered when a diagnostic is not about a particular record.
DEFAULT_CONTEXT: Final[dict[str, str]] = {"channel": "-", "record_id": "-"}

# Record level names that have no stdlib counterpart.
_EXTRA_LEVEL_NAMES: Final[dict[str, int]] = {
    "NOTICE": logging.INFO + 5,
    "ALERT": logging.CRITICAL,
    "EMERGENCY": logging.CRITICAL,
}


def resolve_diagnostics_level(level: str | int | None, default: int = logging.INFO) -> int:
    """Translate a level name (stdlib or record level) into a stdlib number."""

    if level is None:
        return default
    if isinstance(level, int):
        return level
    name = level.strip().upper()
    if name in _EXTRA_LEVEL_NAMES:
        return _EXTRA_LEVEL_NAMES[name]
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else default


class ContextualFormatter(logging.Formatter):
    """Formatter that fills in structured fields a log call did not supply."""

    def __init__(self, fmt: str, defaults: dict[str, str] | None = None) -> None:
        super().__init__(fmt)
        self._defaults = dict(defaults or {})

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        missing = {
            key: value for key, value in self._defaults.items() if key not in record.__dict__
        }
        record.__dict__.update(missing)
        return super().format(record)


class _RootInstaller:
    """Attaches the diagnostics formatter to the root logger on first use."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._installed = False

    def ensure(self) -> None:
        if self._installed:
            return
        with self._lock:
            if self._installed:
                return
            root = logging.root
            threshold = resolve_diagnostics_level(get_settings().log_level)
            root.setLevel(threshold)

            formatter = ContextualFormatter(LOG_FORMAT, DEFAULT_CONTEXT)
            if root.handlers:
                # Someone (pytest, an embedding app) already owns the handlers.
                for existing in root.handlers:
                    existing.setFormatter(formatter)
            else:
                stream_handler = logging.StreamHandler(sys.stderr)
                stream_handler.setFormatter(formatter)
                root.addHandler(stream_handler)
            self._installed = True

    def forget(self) -> None:
        with self._lock:
            self._installed = False


_installer = _RootInstaller()


def set_diagnostics_level(level: str | int) -> None:
    """Change the diagnostics threshold at runtime (the CLI ``--debug`` flag)."""

    _installer.ensure()
    threshold = resolve_diagnostics_level(level)
    logging.root.setLevel(threshold)
    for handler in logging.root.handlers:
        handler.setLevel(threshold)


def reset_logging_state() -> None:
    """Allow the next ``setup_logger`` call to reinstall the root formatter."""

    _installer.forget()


class StructuredLoggerAdapter(logging.LoggerAdapter):
    """Adapter whose per-call ``extra`` wins over its bound context."""

    def process(self, msg: Any, kwargs: Any) -> tuple[Any, Any]:
        kwargs["extra"] = {**(self.extra or {}), **(kwargs.get("extra") or {})}
        return msg, kwargs


def setup_logger(
    name: str,
    *,
    level: str | None = None,
    context: dict[str, Any] | None = None,
) -> logging.LoggerAdapter:
    """Return a diagnostics logger bound to channel/record placeholders.

    Args:
        name: Dotted logger name, normally ``__name__``.
        level: Threshold for this logger only; inherits the root level when omitted.
        context: Structured fields attached to every entry, e.g. ``{"channel": "auth"}``.
    """

    _installer.ensure()
    logger = logging.getLogger(name)
    logger.setLevel(logging.NOTSET if level is None else resolve_diagnostics_level(level))
    return StructuredLoggerAdapter(logger, {**DEFAULT_CONTEXT, **(context or {})})
