"""Sinks (handlers) receiving enriched records from a channel logger."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import IO

import click

from ..models.repository import LogRepository
from ..models.schema import SchemaManager
from ..schemas.record import Level, Record
from ..utils.logging import setup_logger
from .formatters import LineFormatter

logger = setup_logger(__name__)


class BaseSink(ABC):
    """
    Abstract base class for record destinations.

    Every sink gates on its own minimum level: a record below the threshold
    is ignored by that sink while other sinks still receive it.
    """

    def __init__(self, level: Level | int | str = Level.DEBUG) -> None:
        self.level = level

    @property
    def level(self) -> Level:
        return self._level

    @level.setter
    def level(self, value: Level | int | str) -> None:
        self._level = Level.parse(value)

    def accepts(self, level: int) -> bool:
        """Return whether a record at ``level`` should be handled."""

        return level >= self._level

    @abstractmethod
    def handle(self, record: Record) -> None:
        """
        Act on a record that passed :meth:`accepts`.

        Args:
            record: Fully processed record
        """
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__} level={self._level.name}>"


class DatabaseSink(BaseSink):
    """Persist records through the repository.

    The table is installed (or upgraded) when the sink is built; schema
    failures propagate to whoever constructs the sink. Several sinks sharing
    one :class:`SchemaManager` only pay for the check once.
    """

    def __init__(
        self,
        repository: LogRepository,
        *,
        schema_manager: SchemaManager | None = None,
        level: Level | int | str = Level.NOTICE,
    ) -> None:
        super().__init__(level)
        self.repository = repository
        self.schema_manager = schema_manager or SchemaManager(repository.engine)
        self.schema_manager.ensure_schema()

    def handle(self, record: Record) -> None:
        if not self.repository.save(record):
            logger.warning(
                "Database sink could not store record",
                extra={"channel": record.channel},
            )


class ConsoleSink(BaseSink):
    """Render records for an operator watching a terminal.

    ERROR and above go to the error stream in red, WARNING to the error
    stream in yellow, NOTICE and INFO to standard output and DEBUG to the
    error stream. In debug mode the threshold drops to DEBUG and each record's
    context is also dumped as indented JSON.
    """

    def __init__(
        self,
        level: Level | int | str = Level.WARNING,
        *,
        debug: bool = False,
        stream: IO[str] | None = None,
        err_stream: IO[str] | None = None,
        formatter: LineFormatter | None = None,
        color: bool | None = None,
    ) -> None:
        super().__init__(Level.DEBUG if debug else level)
        self.debug = debug
        self.formatter = formatter or LineFormatter()
        self._stream = stream
        self._err_stream = err_stream
        self._color = color

    def _echo(self, message: str, *, err: bool) -> None:
        click.echo(
            message,
            file=self._err_stream if err else self._stream,
            err=err,
            color=self._color,
        )

    def render(self, record: Record) -> str:
        """Return the text shown for ``record`` (its ``formatted`` value when set)."""

        if record.formatted is not None:
            return record.formatted
        return self.formatter.format(record)

    def handle(self, record: Record) -> None:
        text = self.render(record)

        if record.level >= Level.ERROR:
            self._echo(click.style("Error: ", fg="red", bold=True) + text, err=True)
        elif record.level >= Level.WARNING:
            self._echo(click.style("Warning: ", fg="yellow", bold=True) + text, err=True)
        elif record.level >= Level.INFO:
            self._echo(text, err=False)
        else:
            self._echo(click.style("Debug: ", fg="blue") + text, err=True)

        if self.debug and record.context:
            dumped = json.dumps(record.context, indent=4, default=str, ensure_ascii=False)
            for line in dumped.splitlines():
                self._echo(line, err=True)
