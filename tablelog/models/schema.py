"""Schema installation and version tracking for the log table."""

from __future__ import annotations

from threading import Lock
from typing import Final

from alembic.migration import MigrationContext  # type: ignore[import-untyped]
from alembic.operations import Operations  # type: ignore[import-untyped]
from sqlalchemy import Column, Connection, Engine, inspect, insert, select, update
from sqlalchemy.exc import OperationalError, ProgrammingError, SQLAlchemyError

from ..exceptions import SchemaError
from ..utils.logging import setup_logger
from .base import Base
from .log_record import LOG_TABLE_NAME, LogRecordRow, SchemaOption

logger = setup_logger(__name__)

SCHEMA_VERSION: Final[int] = 3
SCHEMA_VERSION_OPTION: Final[str] = "schema_version"

MESSAGE_INDEX_NAME: Final[str] = "ix_monolog_message"
MESSAGE_PREFIX_LENGTH: Final[int] = 191


class SchemaManager:
    """Bring the log table up to a target schema version.

    Applying a version is idempotent: tables are created only when absent,
    columns and indexes missing from an existing table are added, and the
    version marker is written last. Once a manager has seen the current
    version it skips even the marker read.
    """

    def __init__(self, engine: Engine) -> None:
        self._engine = engine
        self._lock = Lock()
        self._known_version: int | None = None

    @property
    def engine(self) -> Engine:
        return self._engine

    def installed_version(self) -> int:
        """Return the recorded schema version, or 0 when nothing is installed."""

        statement = select(SchemaOption.value).where(SchemaOption.name == SCHEMA_VERSION_OPTION)
        try:
            with self._engine.connect() as connection:
                raw_value = connection.execute(statement).scalar_one_or_none()
        except (OperationalError, ProgrammingError):
            # Options table not created yet.
            return 0

        if raw_value is None:
            return 0
        try:
            return int(raw_value)
        except ValueError:
            logger.warning("Ignoring unparseable schema version marker %r", raw_value)
            return 0

    def ensure_schema(self, version: int = SCHEMA_VERSION) -> bool:
        """Apply the schema when ``version`` is newer than the installed one.

        Returns:
            True when DDL was applied, False when the schema was already current.

        Raises:
            SchemaError: If applying the schema fails. Nothing is retried.
        """

        with self._lock:
            if self._known_version is not None and self._known_version >= version:
                return False

            installed = self.installed_version()
            if installed >= version:
                self._known_version = installed
                return False

            logger.info("Upgrading log table schema from version %s to %s", installed, version)
            try:
                with self._engine.begin() as connection:
                    Base.metadata.create_all(
                        connection,
                        tables=[SchemaOption.__table__, LogRecordRow.__table__],
                        checkfirst=True,
                    )
                    self._add_missing_columns(connection)
                    self._add_missing_indexes(connection)
                    self._write_version(connection, version)
            except SQLAlchemyError as exc:
                raise SchemaError(
                    f"Failed to apply log table schema version {version}: {exc}",
                    version=version,
                ) from exc

            self._known_version = version
            return True

    def _add_missing_columns(self, connection: Connection) -> None:
        existing = {column["name"] for column in inspect(connection).get_columns(LOG_TABLE_NAME)}
        operations = Operations(MigrationContext.configure(connection))
        for column in LogRecordRow.__table__.columns:
            if column.name in existing:
                continue
            logger.info("Adding column %s.%s", LOG_TABLE_NAME, column.name)
            # Rows already in the table have no value for a new column.
            operations.add_column(LOG_TABLE_NAME, Column(column.name, column.type, nullable=True))

    def _add_missing_indexes(self, connection: Connection) -> None:
        existing = {
            index["name"] for index in inspect(connection).get_indexes(LOG_TABLE_NAME)
        }
        for index in LogRecordRow.__table__.indexes:
            if index.name not in existing:
                index.create(connection)

        if MESSAGE_INDEX_NAME in existing:
            return
        dialect = connection.dialect.name
        operations = Operations(MigrationContext.configure(connection))
        if dialect in ("mysql", "mariadb"):
            operations.create_index(
                MESSAGE_INDEX_NAME,
                LOG_TABLE_NAME,
                ["message"],
                mysql_length={"message": MESSAGE_PREFIX_LENGTH},
            )
        elif dialect == "sqlite":
            operations.create_index(MESSAGE_INDEX_NAME, LOG_TABLE_NAME, ["message"])
        else:
            logger.debug("Skipping message prefix index on dialect %s", dialect)

    def _write_version(self, connection: Connection, version: int) -> None:
        result = connection.execute(
            update(SchemaOption)
            .where(SchemaOption.name == SCHEMA_VERSION_OPTION)
            .values(value=str(version))
        )
        if result.rowcount == 0:
            connection.execute(
                insert(SchemaOption).values(name=SCHEMA_VERSION_OPTION, value=str(version))
            )
