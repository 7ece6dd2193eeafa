"""Repository for stored log records.

Owns every read and write against the log table: inserts from the database
sink, filtered and paginated queries, the per-channel summary, single-record
lookups and the resolve-then-delete purge path.
"""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator, Mapping
from datetime import datetime, timezone, tzinfo
from threading import Lock
from typing import Any, Final

from sqlalchemy import Engine, Select, delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from ..exceptions import RepositoryError, StructuredError
from ..schemas.query import ChannelSummary, RecordQuery, parse_datetime_expression
from ..schemas.record import Record
from ..utils.config import get_settings, resolve_timezone
from ..utils.logging import setup_logger
from .base import get_engine, make_session_factory, session_scope
from .log_record import LogRecordRow

logger = setup_logger(__name__)

# Record fields accepted by ``save`` when it is handed a plain mapping.
RECORD_FIELDS: Final[frozenset[str]] = frozenset(
    {"channel", "message", "level", "context", "extra", "created_at", "formatted"}
)

DELETE_CHUNK_SIZE: Final[int] = 500

Filters = RecordQuery | Mapping[str, Any] | None


def _sanitize_text(value: str) -> str:
    """Replace lone surrogates and other unencodable code points."""

    return value.encode("utf-8", errors="replace").decode("utf-8")


def flatten_error(error: BaseException) -> dict[str, Any]:
    """Flatten an error value to ``{"codes", "messages", "data"}``."""

    if isinstance(error, StructuredError):
        return {
            "codes": [_sanitize_text(code) for code in error.codes],
            "messages": [_sanitize_text(message) for message in error.messages],
            "data": sanitize_value(error.data),
        }
    return {
        "codes": [type(error).__name__],
        "messages": [_sanitize_text(str(error))],
        "data": {},
    }


def sanitize_value(value: Any) -> Any:
    """Make a context/extra value safe for JSON text storage."""

    if isinstance(value, BaseException):
        return flatten_error(value)
    if isinstance(value, str):
        return _sanitize_text(value)
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    if isinstance(value, Mapping):
        return {str(key): sanitize_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [sanitize_value(item) for item in value]
    return value


def encode_json_field(value: Any) -> str | None:
    """Serialize ``context``/``extra`` to JSON text, flattening error values."""

    if value is None:
        return None
    return json.dumps(sanitize_value(value), default=str, ensure_ascii=False)


def decode_json_field(raw: str | None) -> dict[str, Any]:
    """Decode stored JSON text; malformed or non-object payloads yield an empty mapping."""

    if not raw:
        return {}
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        return {}
    return decoded if isinstance(decoded, dict) else {}


def _truncate_to_milliseconds(value: datetime) -> datetime:
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def _coerce_site_id(extra: Any) -> int | None:
    if not isinstance(extra, Mapping):
        return None
    raw = extra.get("site_id")
    if raw is None or isinstance(raw, bool):
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        return None


def _chunks(values: list[int], size: int) -> Iterator[list[int]]:
    for start in range(0, len(values), size):
        yield values[start : start + size]


class LogRepository:
    """Data access helpers for :class:`LogRecordRow`."""

    def __init__(self, engine: Engine, *, timezone: tzinfo | str | None = None) -> None:
        """Bind the repository to an engine and a local timezone (UTC when omitted)."""

        self._engine = engine
        self._session_factory = make_session_factory(engine)
        self._timezone = resolve_timezone(timezone)

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def timezone(self) -> tzinfo:
        return self._timezone

    def set_timezone(self, tz: tzinfo | str | None) -> LogRepository:
        """Change the zone used for ``created_at`` values and date filters."""

        self._timezone = resolve_timezone(tz)
        return self

    def _to_row(self, record: Record) -> LogRecordRow:
        moment = _truncate_to_milliseconds(record.created_at)
        return LogRecordRow(
            channel=_sanitize_text(record.channel),
            message=_sanitize_text(record.message),
            level=int(record.level),
            level_name=record.level_name,
            context=encode_json_field(record.context),
            extra=encode_json_field(record.extra),
            site_id=_coerce_site_id(record.extra),
            created_at=moment.astimezone(self._timezone).replace(tzinfo=None),
            created_at_gmt=moment.astimezone(timezone.utc).replace(tzinfo=None),
        )

    def _to_record(self, row: LogRecordRow) -> Record:
        created_at_gmt = row.created_at_gmt.replace(tzinfo=timezone.utc)
        return Record(
            id=int(row.id),
            channel=row.channel,
            message=row.message,
            level=int(row.level),
            context=decode_json_field(row.context),
            extra=decode_json_field(row.extra),
            created_at=created_at_gmt.astimezone(self._timezone),
        )

    def _to_records(self, rows: Iterable[LogRecordRow]) -> list[Record]:
        records: list[Record] = []
        for row in rows:
            try:
                records.append(self._to_record(row))
            except ValueError:
                logger.warning(
                    "Skipping stored record with unknown level %s",
                    row.level,
                    extra={"record_id": row.id, "channel": row.channel},
                )
        return records

    def insert(self, record: Record | Mapping[str, Any]) -> Record | None:
        """Persist a record and return the stored copy (with its id), or None on failure."""

        if isinstance(record, Mapping):
            fields = {key: value for key, value in record.items() if key in RECORD_FIELDS}
            if "created_at" not in fields and isinstance(record.get("datetime"), datetime):
                fields["created_at"] = record["datetime"]
            try:
                record = Record(**fields)
            except (TypeError, ValueError):
                logger.warning("Refusing to persist incomplete log record: %s", sorted(fields))
                return None

        row = self._to_row(record)
        try:
            with session_scope(self._session_factory) as session:
                session.add(row)
                session.flush()
                record_id = int(row.id)
        except SQLAlchemyError:
            logger.exception("Failed to persist log record", extra={"channel": record.channel})
            return None

        return self._to_record(row) if record_id else None

    def save(self, record: Record | Mapping[str, Any]) -> bool:
        """Persist a record; returns whether the insert succeeded."""

        return self.insert(record) is not None

    def _apply_filters(self, statement: Select[Any], query: RecordQuery) -> Select[Any]:
        if query.channel:
            statement = statement.where(LogRecordRow.channel == query.channel)
        if query.message:
            statement = statement.where(
                LogRecordRow.message.icontains(query.message, autoescape=True)
            )
        if query.level:
            statement = statement.where(LogRecordRow.level == query.level)
        if query.level_name:
            statement = statement.where(LogRecordRow.level_name == query.level_name)
        if query.site_id:
            statement = statement.where(LogRecordRow.site_id == query.site_id)
        if query.after is not None:
            after = parse_datetime_expression(query.after, self._timezone)
            statement = statement.where(LogRecordRow.created_at >= after.replace(tzinfo=None))
        if query.before is not None:
            before = parse_datetime_expression(query.before, self._timezone)
            statement = statement.where(LogRecordRow.created_at <= before.replace(tzinfo=None))
        return statement

    def build_query(self, filters: Filters = None) -> Select[Any]:
        """Return the SELECT statement ``find_by_query`` would execute."""

        query = RecordQuery.coerce(filters)
        statement = self._apply_filters(select(LogRecordRow), query)

        column = getattr(LogRecordRow, query.order_by)
        direction = column.asc() if query.order == "ASC" else column.desc()
        statement = statement.order_by(direction)
        if query.order_by != "id":
            statement = statement.order_by(
                LogRecordRow.id.asc() if query.order == "ASC" else LogRecordRow.id.desc()
            )

        if query.per_page:
            statement = statement.offset((query.paged - 1) * query.per_page).limit(query.per_page)
        return statement

    def find_by_query(self, filters: Filters = None) -> list[Record]:
        """Find records matching ``filters``; an empty list when nothing matches."""

        statement = self.build_query(filters)
        logger.debug("Running record query: %s", statement)
        try:
            with session_scope(self._session_factory) as session:
                rows = session.scalars(statement).all()
        except SQLAlchemyError as exc:
            raise RepositoryError(f"Failed to query log records: {exc}") from exc
        return self._to_records(rows)

    def find_channels(self, filters: Filters = None) -> list[ChannelSummary]:
        """Summarize channels with their record count and most recent record."""

        query = RecordQuery.coerce(filters)
        last_record = func.max(LogRecordRow.created_at_gmt).label("last_record")
        statement = select(
            LogRecordRow.channel,
            func.count(LogRecordRow.id).label("count"),
            last_record,
        )
        if query.site_id:
            statement = statement.where(LogRecordRow.site_id == query.site_id)
        statement = statement.group_by(LogRecordRow.channel).order_by(
            last_record.desc(), LogRecordRow.channel.asc()
        )

        try:
            with session_scope(self._session_factory) as session:
                rows = session.execute(statement).all()
        except SQLAlchemyError as exc:
            raise RepositoryError(f"Failed to summarize log channels: {exc}") from exc

        summaries: list[ChannelSummary] = []
        for channel, count, last_seen in rows:
            localized = None
            if last_seen is not None:
                localized = last_seen.replace(tzinfo=timezone.utc).astimezone(self._timezone)
            summaries.append(
                ChannelSummary(channel=channel, count=int(count), last_record=localized)
            )
        return summaries

    def get(self, record_id: int) -> Record | None:
        """Fetch a single record by primary key."""

        try:
            with session_scope(self._session_factory) as session:
                row = session.get(LogRecordRow, int(record_id))
        except SQLAlchemyError as exc:
            raise RepositoryError(f"Failed to load log record {record_id}: {exc}") from exc
        if row is None:
            return None
        try:
            return self._to_record(row)
        except ValueError as exc:
            raise RepositoryError(
                f"Log record {record_id} has an unreadable level {row.level}"
            ) from exc

    def delete_by_query(self, filters: Filters = None) -> int | None:
        """Delete exactly the records ``find_by_query(filters)`` returns.

        Returns:
            None when nothing matched, otherwise the number of deleted rows
            (0 when the delete itself failed).
        """

        records = self.find_by_query(filters)
        ids = [record.id for record in records if record.id is not None]
        if not ids:
            return None

        deleted = 0
        try:
            with session_scope(self._session_factory) as session:
                for chunk in _chunks(ids, DELETE_CHUNK_SIZE):
                    result = session.execute(
                        delete(LogRecordRow)
                        .where(LogRecordRow.id.in_(chunk))
                        .execution_options(synchronize_session=False)
                    )
                    deleted += result.rowcount or 0
        except SQLAlchemyError:
            logger.exception("Failed to delete %d log record(s)", len(ids))
            return 0

        logger.info("Deleted %d log record(s)", deleted)
        return deleted


_REPOSITORY: LogRepository | None = None
_REPOSITORY_LOCK: Final = Lock()


def get_repository(engine: Engine | None = None) -> LogRepository:
    """Return the process-wide repository, building it on first use.

    The first caller may supply the engine; later callers get the same instance.
    """

    global _REPOSITORY
    with _REPOSITORY_LOCK:
        if _REPOSITORY is None:
            settings = get_settings()
            _REPOSITORY = LogRepository(
                engine or get_engine(),
                timezone=settings.resolved_timezone(),
            )
        return _REPOSITORY


def reset_repository() -> None:
    """Forget the process-wide repository (useful for testing)."""

    global _REPOSITORY
    with _REPOSITORY_LOCK:
        _REPOSITORY = None
