"""Channel registry: one lazily built logger per channel name."""

from __future__ import annotations

from collections.abc import Callable
from threading import Lock, RLock
from typing import Final

from ..models.repository import LogRepository, get_repository
from ..models.schema import SchemaManager
from ..schemas.record import Level
from ..utils.config import GlobalSettings, get_settings
from ..utils.logging import setup_logger
from .host_context import ContextVarHostContextProvider, HostContext, HostContextProvider
from .logger import ChannelLogger
from .processors import HostContextProcessor, MessageInterpolationProcessor, Processor
from .sinks import BaseSink, ConsoleSink, DatabaseSink

logger = setup_logger(__name__)

LoggerFactory = Callable[[str], ChannelLogger]
InitHook = Callable[[ChannelLogger, str], None]


class DefaultLoggerFactory:
    """Build channel loggers from settings.

    Every logger gets a database sink (sharing one schema manager, so the
    table check runs once), an optional console sink, message interpolation
    when enabled and host enrichment.
    """

    def __init__(
        self,
        repository: LogRepository | None = None,
        *,
        settings: GlobalSettings | None = None,
        host_provider: HostContextProvider | None = None,
        schema_manager: SchemaManager | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.repository = repository or get_repository()
        self.host_provider = host_provider or ContextVarHostContextProvider(
            HostContext(environment=self.settings.environment)
        )
        self.schema_manager = schema_manager or SchemaManager(self.repository.engine)

        host_timezone = self.host_provider.timezone()
        if self.settings.timezone is None and host_timezone is not None:
            self.repository.set_timezone(host_timezone)

    def database_level(self, channel: str) -> Level:
        return Level.parse(self.settings.channel_levels.get(channel, self.settings.database_level))

    def __call__(self, channel: str) -> ChannelLogger:
        sinks: list[BaseSink] = [
            DatabaseSink(
                self.repository,
                schema_manager=self.schema_manager,
                level=self.database_level(channel),
            )
        ]
        console = self.settings.console
        if console.enabled:
            sinks.append(ConsoleSink(console.level, debug=console.debug))

        processors: list[Processor] = []
        if self.settings.interpolate_messages:
            processors.append(MessageInterpolationProcessor())
        processors.append(HostContextProcessor(self.host_provider))

        return ChannelLogger(channel, sinks=sinks, processors=processors)


class ChannelRegistry:
    """Cache mapping channel names to logger instances.

    The first lookup of a channel builds its logger under a lock, so
    concurrent first use still yields exactly one logger per channel.
    """

    def __init__(self, factory: LoggerFactory) -> None:
        self._factory = factory
        self._loggers: dict[str, ChannelLogger] = {}
        self._hooks: list[InitHook] = []
        # Re-entrant: a factory or init hook may itself look up a channel.
        self._lock = RLock()

    def add_init_hook(self, hook: InitHook) -> None:
        """Register a callback run once for every newly built logger."""

        self._hooks.append(hook)

    def get(self, channel: str) -> ChannelLogger:
        if not channel:
            raise ValueError("Channel name must be a non-empty string")

        existing = self._loggers.get(channel)
        if existing is not None:
            return existing

        with self._lock:
            existing = self._loggers.get(channel)
            if existing is not None:
                return existing
            channel_logger = self._factory(channel)
            for hook in self._hooks:
                hook(channel_logger, channel)
            self._loggers[channel] = channel_logger
            logger.debug("Initialized logger", extra={"channel": channel})
            return channel_logger

    def channels(self) -> list[str]:
        return sorted(self._loggers)

    def clear(self) -> None:
        with self._lock:
            self._loggers.clear()

    def __contains__(self, channel: object) -> bool:
        return channel in self._loggers


_REGISTRY: ChannelRegistry | None = None
_REGISTRY_LOCK: Final = Lock()


def get_registry() -> ChannelRegistry:
    """Return the process-wide registry, building it with the default factory."""

    global _REGISTRY
    with _REGISTRY_LOCK:
        if _REGISTRY is None:
            _REGISTRY = ChannelRegistry(DefaultLoggerFactory())
        return _REGISTRY


def set_registry(registry: ChannelRegistry | None) -> None:
    """Install a specific registry as the process-wide one."""

    global _REGISTRY
    with _REGISTRY_LOCK:
        _REGISTRY = registry


def reset_registry() -> None:
    """Forget the process-wide registry (useful for testing)."""

    set_registry(None)


def get_logger_for_channel(channel: str) -> ChannelLogger:
    """Get the preconfigured logger for ``channel``, building it on first use."""

    return get_registry().get(channel)


def set_channel_level(
    channel_or_logger: str | ChannelLogger,
    level: Level | int | str,
) -> None:
    """Change the database sink threshold for a channel or logger."""

    if isinstance(channel_or_logger, str):
        channel_logger = get_logger_for_channel(channel_or_logger)
    else:
        channel_logger = channel_or_logger
    channel_logger.set_level(level, DatabaseSink)
