"""Per-channel logger façade."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from ..schemas.record import Level, Record
from .processors import Processor
from .sinks import BaseSink, DatabaseSink

Context = Mapping[str, Any] | None


class ChannelLogger:
    """Named, ordered collection of sinks plus the processor chain.

    ``log`` builds a transient record, runs every processor in order and
    hands the result to each sink whose threshold the level meets.
    """

    def __init__(
        self,
        name: str,
        sinks: Iterable[BaseSink] = (),
        processors: Iterable[Processor] = (),
    ) -> None:
        if not name:
            raise ValueError("Channel name must be a non-empty string")
        self.name = name
        self._sinks: list[BaseSink] = list(sinks)
        self._processors: list[Processor] = list(processors)

    @property
    def sinks(self) -> list[BaseSink]:
        return list(self._sinks)

    @property
    def processors(self) -> list[Processor]:
        return list(self._processors)

    def push_sink(self, sink: BaseSink) -> ChannelLogger:
        self._sinks.append(sink)
        return self

    def push_processor(self, processor: Processor) -> ChannelLogger:
        self._processors.append(processor)
        return self

    def is_handling(self, level: Level | int | str) -> bool:
        """Return whether any sink would accept a record at ``level``."""

        resolved = Level.parse(level)
        return any(sink.accepts(resolved) for sink in self._sinks)

    def set_level(
        self,
        level: Level | int | str,
        sink_type: type[BaseSink] = DatabaseSink,
    ) -> None:
        """Change the threshold of every attached sink of ``sink_type``."""

        for sink in self._sinks:
            if isinstance(sink, sink_type):
                sink.level = level

    def log(
        self,
        level: Level | int | str,
        message: str,
        context: Mapping[str, Any] | None = None,
        *,
        extra: Mapping[str, Any] | None = None,
    ) -> Record | None:
        """
        Emit a record on this channel.

        Args:
            level: Severity as a level, an int or a level name
            message: Human-readable message, may contain ``{placeholders}``
            context: Caller-supplied structured detail
            extra: Caller-supplied runtime detail merged with host enrichment

        Returns:
            The processed record, or None when no sink accepts the level.
        """
        resolved = Level.parse(level)
        targets = [sink for sink in self._sinks if sink.accepts(resolved)]
        if not targets:
            return None

        record = Record(
            channel=self.name,
            message=str(message),
            level=resolved,
            context=dict(context or {}),
            extra=dict(extra or {}),
        )
        for processor in self._processors:
            record = processor(record)

        for sink in targets:
            sink.handle(record)
        return record

    def debug(self, message: str, context: Context = None, **kwargs: Any) -> Record | None:
        return self.log(Level.DEBUG, message, context, **kwargs)

    def info(self, message: str, context: Context = None, **kwargs: Any) -> Record | None:
        return self.log(Level.INFO, message, context, **kwargs)

    def notice(self, message: str, context: Context = None, **kwargs: Any) -> Record | None:
        return self.log(Level.NOTICE, message, context, **kwargs)

    def warning(self, message: str, context: Context = None, **kwargs: Any) -> Record | None:
        return self.log(Level.WARNING, message, context, **kwargs)

    def error(self, message: str, context: Context = None, **kwargs: Any) -> Record | None:
        return self.log(Level.ERROR, message, context, **kwargs)

    def critical(self, message: str, context: Context = None, **kwargs: Any) -> Record | None:
        return self.log(Level.CRITICAL, message, context, **kwargs)

    def alert(self, message: str, context: Context = None, **kwargs: Any) -> Record | None:
        return self.log(Level.ALERT, message, context, **kwargs)

    def emergency(self, message: str, context: Context = None, **kwargs: Any) -> Record | None:
        return self.log(Level.EMERGENCY, message, context, **kwargs)

    def __repr__(self) -> str:
        return f"<ChannelLogger name={self.name} sinks={self._sinks!r}>"
