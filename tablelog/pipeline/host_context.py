"""Host context providers feeding the environment enrichment processor."""

from __future__ import annotations

import contextvars
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import asdict, dataclass, fields, replace
from datetime import tzinfo
from typing import Any, Final


@dataclass(frozen=True, slots=True)
class HostContext:
    """Snapshot of host-derived facts attached to every record's ``extra``.

    Every field is optional; a host that cannot answer leaves it as None.
    """

    request_uri: str | None = None
    doing_cron: bool | None = None
    doing_ajax: bool | None = None
    doing_autosave: bool | None = None
    is_admin: bool | None = None
    doing_rest: bool | None = None
    user_id: int | None = None
    site_switched: bool | None = None
    site_id: int | None = None
    network_id: int | None = None
    is_ssl: bool | None = None
    environment: str | None = None

    def as_extra(self) -> dict[str, Any]:
        return asdict(self)


HOST_CONTEXT_KEYS: Final[tuple[str, ...]] = tuple(field.name for field in fields(HostContext))

_BOUND_CONTEXT: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "tablelog_host_context", default={}
)


def _validate_keys(values: dict[str, Any]) -> None:
    unknown = sorted(set(values) - set(HOST_CONTEXT_KEYS))
    if unknown:
        raise TypeError(f"Unknown host context field(s): {', '.join(unknown)}")


class HostContextProvider(ABC):
    """Supplies host facts and the host's local timezone."""

    @abstractmethod
    def snapshot(self) -> HostContext:
        """Return the host facts as of this call."""

    def timezone(self) -> tzinfo | None:
        """Return the host's local timezone, or None when it has no opinion."""

        return None


class NullHostContextProvider(HostContextProvider):
    """Provider for non-hosted environments: every field is None."""

    def snapshot(self) -> HostContext:
        return HostContext()


class StaticHostContextProvider(HostContextProvider):
    """Provider returning fixed values, e.g. for CLI processes or tests."""

    def __init__(
        self,
        context: HostContext | None = None,
        *,
        timezone: tzinfo | None = None,
        **values: Any,
    ) -> None:
        _validate_keys(values)
        self._context = replace(context or HostContext(), **values)
        self._timezone = timezone

    def snapshot(self) -> HostContext:
        return self._context

    def timezone(self) -> tzinfo | None:
        return self._timezone


class ContextVarHostContextProvider(HostContextProvider):
    """Provider reading request-scoped values bound with :func:`host_context`.

    Values bound in the current context override the provider defaults, so
    concurrent requests (threads or asyncio tasks) each see their own facts.
    """

    def __init__(
        self,
        defaults: HostContext | None = None,
        *,
        timezone: tzinfo | None = None,
    ) -> None:
        self._defaults = defaults or HostContext()
        self._timezone = timezone

    def snapshot(self) -> HostContext:
        bound = _BOUND_CONTEXT.get()
        if not bound:
            return self._defaults
        return replace(self._defaults, **bound)

    def timezone(self) -> tzinfo | None:
        return self._timezone


@contextmanager
def host_context(**values: Any) -> Iterator[None]:
    """Bind host facts for the duration of a request or job.

    Nested blocks merge with the enclosing values; the previous binding is
    restored on exit.
    """

    _validate_keys(values)
    token = _BOUND_CONTEXT.set({**_BOUND_CONTEXT.get(), **values})
    try:
        yield
    finally:
        _BOUND_CONTEXT.reset(token)
