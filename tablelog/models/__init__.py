"""Persistence layer: ORM models, schema management and the record repository."""

from .base import Base, create_engine_for_settings, get_engine, reset_engine
from .log_record import LogRecordRow, SchemaOption
from .repository import LogRepository, get_repository, reset_repository
from .schema import SCHEMA_VERSION, SchemaManager

__all__ = [
    "Base",
    "LogRecordRow",
    "LogRepository",
    "SCHEMA_VERSION",
    "SchemaManager",
    "SchemaOption",
    "create_engine_for_settings",
    "get_engine",
    "get_repository",
    "reset_engine",
    "reset_repository",
]
