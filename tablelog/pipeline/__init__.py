"""Logging pipeline: processors, sinks, channel loggers and the registry."""

from .formatters import LineFormatter
from .host_context import (
    ContextVarHostContextProvider,
    HostContext,
    HostContextProvider,
    NullHostContextProvider,
    StaticHostContextProvider,
    host_context,
)
from .logger import ChannelLogger
from .processors import HostContextProcessor, MessageInterpolationProcessor
from .registry import (
    ChannelRegistry,
    DefaultLoggerFactory,
    get_logger_for_channel,
    get_registry,
    reset_registry,
    set_channel_level,
    set_registry,
)
from .sinks import BaseSink, ConsoleSink, DatabaseSink

__all__ = [
    "BaseSink",
    "ChannelLogger",
    "ChannelRegistry",
    "ConsoleSink",
    "ContextVarHostContextProvider",
    "DatabaseSink",
    "DefaultLoggerFactory",
    "HostContext",
    "HostContextProcessor",
    "HostContextProvider",
    "LineFormatter",
    "MessageInterpolationProcessor",
    "NullHostContextProvider",
    "StaticHostContextProvider",
    "get_logger_for_channel",
    "get_registry",
    "host_context",
    "reset_registry",
    "set_channel_level",
    "set_registry",
]
