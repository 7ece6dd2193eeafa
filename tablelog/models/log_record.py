"""SQLAlchemy model definitions for log record persistence."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects import mysql
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base

LOG_TABLE_NAME = "monolog"
OPTIONS_TABLE_NAME = "tablelog_options"

# SQLite only auto-increments INTEGER PRIMARY KEY columns.
_ID_TYPE = (
    BigInteger()
    .with_variant(Integer(), "sqlite")
    .with_variant(mysql.BIGINT(unsigned=True), "mysql", "mariadb")
)
_LEVEL_TYPE = Integer().with_variant(mysql.INTEGER(unsigned=True), "mysql", "mariadb")
_TIMESTAMP_TYPE = DateTime().with_variant(mysql.DATETIME(fsp=3), "mysql", "mariadb")


class LogRecordRow(Base):
    """Database representation of a single log record.

    ``created_at`` holds local wall-clock time in the repository timezone and
    ``created_at_gmt`` the same instant in UTC; both are naive.
    """

    __tablename__ = LOG_TABLE_NAME
    __table_args__ = (
        Index("ix_monolog_channel", "channel"),
        Index("ix_monolog_level", "level", "level_name"),
        Index("ix_monolog_created_at", "created_at"),
        Index("ix_monolog_site_id", "site_id"),
    )

    id: Mapped[int] = mapped_column(_ID_TYPE, primary_key=True, autoincrement=True)
    channel: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    level: Mapped[int] = mapped_column(_LEVEL_TYPE, nullable=False)
    level_name: Mapped[str] = mapped_column(String(16), nullable=False)
    context: Mapped[str | None] = mapped_column(Text, nullable=True)
    extra: Mapped[str | None] = mapped_column(Text, nullable=True)
    site_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(_TIMESTAMP_TYPE, nullable=False)
    created_at_gmt: Mapped[datetime] = mapped_column(_TIMESTAMP_TYPE, nullable=False)

    def __repr__(self) -> str:
        """Return a developer-friendly string representation."""

        return (
            f"<LogRecordRow id={self.id} channel={self.channel} "
            f"level={self.level_name} created_at={self.created_at}>"
        )


class SchemaOption(Base):
    """Key-value settings owned by tablelog, such as the installed schema version."""

    __tablename__ = OPTIONS_TABLE_NAME

    name: Mapped[str] = mapped_column(String(191), primary_key=True)
    value: Mapped[str] = mapped_column(String(255), nullable=False)
