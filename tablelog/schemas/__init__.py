"""Record and query schemas."""

from .query import ChannelSummary, RecordQuery, parse_datetime_expression
from .record import Level, Record, level_name

__all__ = [
    "ChannelSummary",
    "Level",
    "Record",
    "RecordQuery",
    "level_name",
    "parse_datetime_expression",
]
