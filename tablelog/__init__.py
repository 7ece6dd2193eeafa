"""tablelog: channel loggers writing structured records to a relational table."""

from .exceptions import StructuredError
from .pipeline import get_logger_for_channel, host_context, set_channel_level
from .schemas import Level, Record, RecordQuery

__version__ = "0.3.0"

__all__ = [
    "Level",
    "Record",
    "RecordQuery",
    "StructuredError",
    "__version__",
    "get_logger_for_channel",
    "host_context",
    "set_channel_level",
]
