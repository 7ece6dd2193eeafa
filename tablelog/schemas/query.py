"""Query filter schemas for the log record repository."""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any, Final

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .record import Level

ORDERABLE_COLUMNS: Final[frozenset[str]] = frozenset(
    {
        "id",
        "channel",
        "message",
        "level",
        "level_name",
        "context",
        "extra",
        "created_at",
        "created_at_gmt",
    }
)

DEFAULT_ORDER_BY: Final[str] = "id"
DEFAULT_ORDER: Final[str] = "DESC"

_RELATIVE_EXPRESSION = re.compile(
    r"^(?P<amount>\d+)\s+(?P<unit>second|minute|hour|day|week)s?\s+ago$",
    re.IGNORECASE,
)

DateExpression = datetime | date | str


def _blank_to_none(value: Any) -> Any:
    if isinstance(value, str) and not value.strip():
        return None
    return value


class RecordQuery(BaseModel):
    """Filters, ordering and pagination accepted by ``find_by_query``.

    Invalid ``order_by`` and ``order`` values are normalized to the defaults
    instead of failing; unknown keys are ignored.
    """

    model_config = ConfigDict(extra="ignore", arbitrary_types_allowed=True)

    channel: str | None = Field(None, description="Exact channel name")
    message: str | None = Field(None, description="Case-insensitive substring of the message")
    level: int | None = Field(None, description="Exact severity level")
    level_name: str | None = Field(None, description="Exact severity level name")
    site_id: int | None = Field(None, description="Tenant scope recorded in extra")
    after: DateExpression | None = Field(None, description="Inclusive lower bound on created_at")
    before: DateExpression | None = Field(
        None, description="Inclusive upper bound on created_at"
    )
    paged: int = Field(1, description="1-based page number")
    per_page: int | None = Field(None, description="Page size; None or <= 0 returns everything")
    order_by: str = Field(DEFAULT_ORDER_BY, description="Column used for ordering")
    order: str = Field(DEFAULT_ORDER, description="ASC or DESC")

    @field_validator("channel", "message", "after", "before", mode="before")
    @classmethod
    def _empty_strings_mean_unset(cls, value: Any) -> Any:
        return _blank_to_none(value)

    @field_validator("level", mode="before")
    @classmethod
    def _parse_level(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        if isinstance(value, str) and value.strip().lstrip("-").isdigit():
            value = int(value)
        if isinstance(value, int) and not isinstance(value, bool):
            # Any number is an exact match; non-canonical ones simply match nothing.
            return value or None
        if value is None:
            return None
        return int(Level.parse(value))

    @field_validator("level_name", mode="before")
    @classmethod
    def _normalize_level_name(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        if value is None:
            return None
        return str(value).strip().upper()

    @field_validator("site_id", mode="before")
    @classmethod
    def _normalize_site_id(cls, value: Any) -> Any:
        value = _blank_to_none(value)
        if value in (None, 0, "0"):
            return None
        return value

    @field_validator("paged", mode="before")
    @classmethod
    def _normalize_paged(cls, value: Any) -> int:
        try:
            paged = int(value)
        except (TypeError, ValueError):
            return 1
        return max(paged, 1)

    @field_validator("per_page", mode="before")
    @classmethod
    def _normalize_per_page(cls, value: Any) -> int | None:
        value = _blank_to_none(value)
        if value is None:
            return None
        per_page = int(value)
        return per_page if per_page > 0 else None

    @field_validator("order_by", mode="before")
    @classmethod
    def _normalize_order_by(cls, value: Any) -> str:
        if isinstance(value, str) and value.strip().lower() in ORDERABLE_COLUMNS:
            return value.strip().lower()
        return DEFAULT_ORDER_BY

    @field_validator("order", mode="before")
    @classmethod
    def _normalize_order(cls, value: Any) -> str:
        if isinstance(value, str) and value.strip().upper() in ("ASC", "DESC"):
            return value.strip().upper()
        return DEFAULT_ORDER

    @classmethod
    def coerce(cls, filters: RecordQuery | Mapping[str, Any] | None) -> RecordQuery:
        """Accept a query model, a plain mapping (CLI-style keys) or nothing."""

        if filters is None:
            return cls()
        if isinstance(filters, RecordQuery):
            return filters
        normalized = {str(key).replace("-", "_"): value for key, value in filters.items()}
        return cls.model_validate(normalized)

    def without_pagination(self) -> RecordQuery:
        """Return a copy that matches every row, not only one page."""

        return self.model_copy(update={"per_page": None, "paged": 1})


@dataclass(slots=True)
class ChannelSummary:
    """Aggregate row returned by ``find_channels``."""

    channel: str
    count: int
    last_record: datetime | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "count": self.count,
            "last_record": self.last_record.isoformat() if self.last_record else None,
        }


def parse_datetime_expression(
    value: DateExpression,
    tz: tzinfo,
    *,
    now: datetime | None = None,
) -> datetime:
    """Turn a date/time expression into an aware datetime in ``tz``.

    Supported: ``datetime`` (naive values are read as local to ``tz``),
    ``date`` (midnight), ISO-8601 strings, ``now``, ``today``, ``yesterday``,
    ``tomorrow`` and ``"<n> <unit>(s) ago"`` for seconds through weeks.

    Raises:
        ValueError: If the expression cannot be understood.
    """

    reference = (now or datetime.now(tz)).astimezone(tz)

    if isinstance(value, datetime):
        return value.replace(tzinfo=tz) if value.tzinfo is None else value.astimezone(tz)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=tz)
    if not isinstance(value, str):
        raise ValueError(f"Unsupported date expression: {value!r}")

    expression = value.strip().lower()
    midnight = reference.replace(hour=0, minute=0, second=0, microsecond=0)
    keywords = {
        "now": reference,
        "today": midnight,
        "yesterday": midnight - timedelta(days=1),
        "tomorrow": midnight + timedelta(days=1),
    }
    if expression in keywords:
        return keywords[expression]

    match = _RELATIVE_EXPRESSION.match(expression)
    if match:
        amount = int(match.group("amount"))
        delta = timedelta(**{f"{match.group('unit').lower()}s": amount})
        return reference - delta

    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        raise ValueError(f"Unrecognized date expression: {value!r}") from None
    return parsed.replace(tzinfo=tz) if parsed.tzinfo is None else parsed.astimezone(tz)
