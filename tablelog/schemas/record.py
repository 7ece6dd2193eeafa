"""Log record value object and severity levels."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any


class Level(IntEnum):
    """Canonical severity levels; higher values are more severe."""

    DEBUG = 100
    INFO = 200
    NOTICE = 250
    WARNING = 300
    ERROR = 400
    CRITICAL = 500
    ALERT = 550
    EMERGENCY = 600

    @classmethod
    def parse(cls, value: Level | int | str) -> Level:
        """Resolve a level from an int, a numeric string or a case-insensitive name.

        Raises:
            ValueError: If the value does not name a known level.
        """

        if isinstance(value, Level):
            return value
        if isinstance(value, bool):
            raise ValueError(f"Invalid log level: {value!r}")
        if isinstance(value, int):
            return cls(value)
        if isinstance(value, str):
            candidate = value.strip()
            if candidate.isdigit():
                return cls(int(candidate))
            try:
                return cls[candidate.upper()]
            except KeyError:
                raise ValueError(f"Unknown log level name: {value!r}") from None
        raise ValueError(f"Invalid log level: {value!r}")


def level_name(level: int) -> str:
    """Return the canonical label for a level integer."""

    return Level(level).name


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class Record:
    """One log event, either in flight through the pipeline or read back from storage.

    ``level_name`` and ``created_at_gmt`` are derived from ``level`` and
    ``created_at`` and cannot be set on their own. Records are frozen:
    processors produce modified copies with :func:`dataclasses.replace`.
    """

    channel: str
    message: str
    level: int
    context: dict[str, Any] = field(default_factory=dict)
    extra: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)
    id: int | None = None
    formatted: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.channel, str) or not isinstance(self.message, str):
            raise TypeError("Record channel and message must be strings")
        if not self.channel:
            raise ValueError("Record channel must be a non-empty string")
        object.__setattr__(self, "level", Level.parse(self.level))
        if self.context is None:
            object.__setattr__(self, "context", {})
        if self.extra is None:
            object.__setattr__(self, "extra", {})
        if self.created_at is None:
            object.__setattr__(self, "created_at", _utcnow())
        elif isinstance(self.created_at, str):
            object.__setattr__(self, "created_at", datetime.fromisoformat(self.created_at))
        elif not isinstance(self.created_at, datetime):
            raise TypeError(f"Record created_at must be a datetime, not {self.created_at!r}")
        if self.created_at.tzinfo is None:
            object.__setattr__(self, "created_at", self.created_at.replace(tzinfo=timezone.utc))

    @property
    def level_name(self) -> str:
        return Level(self.level).name

    @property
    def created_at_gmt(self) -> datetime:
        return self.created_at.astimezone(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-ready mapping of the persisted fields."""

        return {
            "id": self.id,
            "channel": self.channel,
            "message": self.message,
            "level": int(self.level),
            "level_name": self.level_name,
            "extra": self.extra,
            "context": self.context,
            "created_at": self.created_at.isoformat(),
            "created_at_gmt": self.created_at_gmt.isoformat(),
        }

    def __repr__(self) -> str:
        """Return a developer-friendly string representation."""

        return (
            f"<Record id={self.id} channel={self.channel} "
            f"level={self.level_name} message={self.message!r}>"
        )
