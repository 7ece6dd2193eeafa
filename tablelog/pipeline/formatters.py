"""Text formatters used by sinks that render records for humans."""

from __future__ import annotations

import json
from typing import Any, Final

from ..schemas.record import Record

DEFAULT_LINE_FORMAT: Final[str] = "[{datetime}] {channel}.{level_name}: {message} {context} {extra}"
DEFAULT_DATE_FORMAT: Final[str] = "%Y-%m-%dT%H:%M:%S.%f%z"


class LineFormatter:
    """Render a record on a single line.

    Empty ``context``/``extra`` mappings are dropped from the output together
    with the space in front of them, unless ``keep_empty`` is set.
    """

    def __init__(
        self,
        fmt: str = DEFAULT_LINE_FORMAT,
        *,
        date_format: str = DEFAULT_DATE_FORMAT,
        keep_empty: bool = False,
    ) -> None:
        self._fmt = fmt
        self._date_format = date_format
        self._keep_empty = keep_empty

    @staticmethod
    def _encode(value: dict[str, Any]) -> str:
        return json.dumps(value, default=str, ensure_ascii=False)

    def format(self, record: Record) -> str:
        fmt = self._fmt
        if not self._keep_empty:
            if not record.context:
                fmt = fmt.replace(" {context}", "").replace("{context}", "")
            if not record.extra:
                fmt = fmt.replace(" {extra}", "").replace("{extra}", "")

        return fmt.format(
            datetime=record.created_at.strftime(self._date_format),
            channel=record.channel,
            level_name=record.level_name,
            level=int(record.level),
            message=record.message,
            context=self._encode(record.context),
            extra=self._encode(record.extra),
        )
