"""Record processors applied before dispatch to sinks.

A processor is any callable taking a :class:`Record` and returning a
(possibly new) :class:`Record`. Processors must not raise because optional
host information is missing.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Mapping
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Final

from ..schemas.record import Record
from ..utils.logging import setup_logger
from .host_context import HostContext, HostContextProvider, NullHostContextProvider

logger = setup_logger(__name__)

Processor = Callable[[Record], Record]

_PLACEHOLDER: Final = re.compile(r"\{([A-Za-z0-9_.]+)\}")


def _render_placeholder(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, default=str, ensure_ascii=False)
    if isinstance(value, BaseException):
        return f"[{type(value).__name__}: {value}]"
    return f"[object {type(value).__name__}]"


class MessageInterpolationProcessor:
    """Replace ``{name}`` tokens in the message with matching context values.

    Tokens without a matching context key are left as they are and the
    context itself is not modified.
    """

    def __call__(self, record: Record) -> Record:
        if "{" not in record.message or not record.context:
            return record

        context = record.context

        def substitute(match: re.Match[str]) -> str:
            key = match.group(1)
            if key not in context:
                return match.group(0)
            return _render_placeholder(context[key])

        message = _PLACEHOLDER.sub(substitute, record.message)
        if message == record.message:
            return record
        return replace(record, message=message)


class HostContextProcessor:
    """Merge host facts into ``extra``.

    Host keys are recomputed on every call and replace stale values; any
    other key already present in ``extra`` is kept.
    """

    def __init__(self, provider: HostContextProvider | None = None) -> None:
        self._provider = provider or NullHostContextProvider()

    @property
    def provider(self) -> HostContextProvider:
        return self._provider

    def _snapshot(self) -> HostContext:
        try:
            return self._provider.snapshot()
        except Exception:
            logger.warning(
                "Host context provider %s failed; recording empty host context",
                type(self._provider).__name__,
                exc_info=True,
            )
            return HostContext()

    def __call__(self, record: Record) -> Record:
        extra = {**record.extra, **self._snapshot().as_extra()}
        return replace(record, extra=extra)
