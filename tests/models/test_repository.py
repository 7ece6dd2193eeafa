"""Tests for the log record repository."""

from __future__ import annotations

from collections.abc import Callable
import threading
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import Engine, text
from sqlalchemy.exc import OperationalError

from tablelog.exceptions import RepositoryError, StructuredError
from tablelog.models import repository as repository_module
from tablelog.models.repository import (
    LogRepository,
    decode_json_field,
    encode_json_field,
    flatten_error,
    get_repository,
    reset_repository,
)
from tablelog.schemas.query import RecordQuery
from tablelog.schemas.record import Level, Record
from tablelog.utils.config import get_settings

UTC = timezone.utc
PLUS_TWO = timezone(timedelta(hours=2))

MakeRecord = Callable[..., Record]


def _seed(repository: LogRepository, make_record: MakeRecord, count: int, **kwargs) -> list[Record]:
    stored = []
    for index in range(count):
        record = repository.insert(make_record(f"message {index}", **kwargs))
        assert record is not None
        stored.append(record)
    return stored


class TestInsert:
    """Test suite for persisting records."""

    def test_insert_assigns_increasing_ids(self, repository: LogRepository, make_record):
        first = repository.insert(make_record("first"))
        second = repository.insert(make_record("second"))

        assert first is not None and second is not None
        assert first.id is not None
        assert second.id > first.id

    def test_round_trip_preserves_fields(self, repository: LogRepository, make_record: MakeRecord):
        moment = datetime(2024, 5, 1, 10, 15, 30, 123456, tzinfo=UTC)
        stored = repository.insert(
            make_record(
                "login ok",
                channel="auth",
                level=Level.WARNING,
                context={"user": {"id": 42, "roles": ["admin"]}, "ok": True},
                extra={"request_uri": "/login"},
                created_at=moment,
            )
        )
        assert stored is not None

        fetched = repository.get(stored.id)

        assert fetched is not None
        assert fetched.channel == "auth"
        assert fetched.message == "login ok"
        assert fetched.level is Level.WARNING
        assert fetched.level_name == "WARNING"
        assert fetched.context == {"user": {"id": 42, "roles": ["admin"]}, "ok": True}
        assert fetched.extra == {"request_uri": "/login"}
        # Stored with millisecond precision.
        assert fetched.created_at_gmt == datetime(2024, 5, 1, 10, 15, 30, 123000, tzinfo=UTC)

    def test_save_reports_success(self, repository: LogRepository, make_record: MakeRecord):
        assert repository.save(make_record()) is True

    def test_mapping_input_is_filtered_to_known_fields(self, repository: LogRepository):
        stored = repository.insert(
            {
                "channel": "cron",
                "message": "tick",
                "level": 200,
                "datetime": datetime(2024, 1, 1, 12, tzinfo=UTC),
                "unexpected": "dropped",
            }
        )

        assert stored is not None
        assert stored.channel == "cron"
        assert stored.created_at_gmt == datetime(2024, 1, 1, 12, tzinfo=UTC)

    def test_incomplete_mapping_is_refused(self, repository: LogRepository):
        assert repository.insert({"message": "no channel", "level": 200}) is None
        assert repository.save({"channel": "cron", "message": "no level"}) is False
        assert repository.find_by_query() == []

    def test_mapping_with_non_mapping_extra_is_stored(self, repository: LogRepository):
        stored = repository.insert(
            {"channel": "cron", "message": "tick", "level": 250, "extra": "oops"}
        )

        assert stored is not None
        assert stored.extra == {}

    def test_mapping_with_text_timestamp(self, repository: LogRepository):
        stored = repository.insert(
            {
                "channel": "cron",
                "message": "tick",
                "level": 250,
                "created_at": "2024-01-01 00:00:00",
            }
        )

        assert stored is not None
        assert stored.created_at_gmt == datetime(2024, 1, 1, tzinfo=UTC)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"created_at": "yesterday-ish"},
            {"created_at": 1704067200},
            {"message": None},
            {"channel": 42},
        ],
    )
    def test_malformed_mapping_is_refused(self, repository: LogRepository, overrides):
        payload = {"channel": "cron", "message": "tick", "level": 250, **overrides}

        assert repository.save(payload) is False
        assert repository.find_by_query() == []

    def test_storage_failure_returns_none(self, engine: Engine, make_record: MakeRecord):
        # Schema never installed.
        repository = LogRepository(engine)

        assert repository.insert(make_record()) is None
        assert repository.save(make_record()) is False

    def test_local_and_gmt_timestamps(self, engine: Engine, repository: LogRepository, make_record):
        repository.set_timezone(PLUS_TWO)
        stored = repository.insert(
            make_record(created_at=datetime(2024, 6, 1, 12, 0, tzinfo=UTC))
        )
        assert stored is not None

        with engine.connect() as connection:
            created_at, created_at_gmt = connection.execute(
                text("SELECT created_at, created_at_gmt FROM monolog WHERE id = :id"),
                {"id": stored.id},
            ).one()

        assert str(created_at).startswith("2024-06-01 14:00:00")
        assert str(created_at_gmt).startswith("2024-06-01 12:00:00")
        assert stored.created_at == datetime(2024, 6, 1, 14, 0, tzinfo=PLUS_TWO)

    def test_site_id_is_taken_from_extra(self, engine: Engine, repository, make_record):
        stored = repository.insert(make_record(extra={"site_id": "3"}))
        assert stored is not None

        with engine.connect() as connection:
            site_id = connection.execute(
                text("SELECT site_id FROM monolog WHERE id = :id"), {"id": stored.id}
            ).scalar_one()

        assert site_id == 3


class TestSerialization:
    """Test suite for JSON field encoding."""

    def test_structured_errors_are_flattened(self, repository: LogRepository, make_record):
        error = StructuredError("invalid_user", "User does not exist", {"user": 42})
        error.add("blocked", "Account is blocked")

        stored = repository.insert(make_record(context={"error": error}))

        assert stored is not None
        assert stored.context["error"] == {
            "codes": ["invalid_user", "blocked"],
            "messages": ["User does not exist", "Account is blocked"],
            "data": {"invalid_user": {"user": 42}},
        }

    def test_plain_exceptions_are_flattened(self):
        assert flatten_error(KeyError("missing")) == {
            "codes": ["KeyError"],
            "messages": ["'missing'"],
            "data": {},
        }

    def test_invalid_utf8_is_replaced(self, repository: LogRepository, make_record):
        context = {"raw": b"ok \xff done", "text": "a\ud800b"}
        stored = repository.insert(make_record(context=context))

        assert stored is not None
        assert stored.context["raw"] == "ok � done"
        assert "\ud800" not in stored.context["text"]

    def test_encode_handles_non_json_values(self):
        encoded = encode_json_field({"when": date(2024, 1, 31), "tags": ("a", "b")})

        assert encoded == '{"when": "2024-01-31", "tags": ["a", "b"]}'
        assert encode_json_field(None) is None

    @pytest.mark.parametrize("raw", [None, "", "{not json", "[1, 2]", '"text"'])
    def test_decode_tolerates_bad_payloads(self, raw):
        assert decode_json_field(raw) == {}

    def test_malformed_stored_json_reads_as_empty(self, engine: Engine, repository, make_record):
        stored = repository.insert(make_record(context={"a": 1}))
        assert stored is not None
        with engine.begin() as connection:
            connection.execute(
                text("UPDATE monolog SET context = '{broken' WHERE id = :id"), {"id": stored.id}
            )

        fetched = repository.get(stored.id)

        assert fetched is not None
        assert fetched.context == {}

    def test_rows_with_unknown_levels_are_skipped_in_listings(
        self, engine: Engine, repository, make_record
    ):
        good = repository.insert(make_record("good"))
        bad = repository.insert(make_record("bad"))
        assert good is not None and bad is not None
        with engine.begin() as connection:
            connection.execute(
                text("UPDATE monolog SET level = 123 WHERE id = :id"), {"id": bad.id}
            )

        assert [record.message for record in repository.find_by_query()] == ["good"]
        with pytest.raises(RepositoryError, match="unreadable level 123"):
            repository.get(bad.id)
        assert repository.get(bad.id + 100) is None


class TestFindByQuery:
    """Test suite for filtered queries."""

    def test_empty_table_yields_empty_list(self, repository: LogRepository):
        assert repository.find_by_query() == []

    def test_default_order_is_newest_first(self, repository: LogRepository, make_record):
        stored = _seed(repository, make_record, 3)

        ids = [record.id for record in repository.find_by_query()]

        assert ids == [record.id for record in reversed(stored)]

    def test_filters_by_channel_level_and_message(self, repository: LogRepository, make_record):
        repository.insert(make_record("User login failed", channel="auth", level=Level.ERROR))
        repository.insert(make_record("user LOGIN ok", channel="auth", level=Level.INFO))
        repository.insert(make_record("cron ran", channel="cron", level=Level.ERROR))

        assert len(repository.find_by_query({"channel": "auth"})) == 2
        assert len(repository.find_by_query({"level": "error"})) == 2
        assert len(repository.find_by_query({"level_name": "info"})) == 1
        assert {r.message for r in repository.find_by_query({"message": "login"})} == {
            "User login failed",
            "user LOGIN ok",
        }
        combined = repository.find_by_query({"channel": "auth", "level": Level.ERROR})
        assert [record.message for record in combined] == ["User login failed"]

    def test_message_wildcards_are_literal(self, repository: LogRepository, make_record):
        repository.insert(make_record("disk 100% full"))
        repository.insert(make_record("disk 1000 full"))

        assert [r.message for r in repository.find_by_query({"message": "100%"})] == [
            "disk 100% full"
        ]
        assert repository.find_by_query({"message": "_"}) == []

    def test_filters_by_site(self, repository: LogRepository, make_record):
        repository.insert(make_record("one", extra={"site_id": 1}))
        repository.insert(make_record("two", extra={"site_id": 2}))
        repository.insert(make_record("none"))

        assert [r.message for r in repository.find_by_query({"site_id": 2})] == ["two"]
        assert len(repository.find_by_query({"site_id": 0})) == 3

    def test_date_range_is_inclusive(self, repository: LogRepository, make_record):
        for day in (1, 2, 3):
            repository.insert(
                make_record(f"day {day}", created_at=datetime(2024, 1, day, 12, tzinfo=UTC))
            )

        after = repository.find_by_query({"after": "2024-01-02 12:00:00"})
        before = repository.find_by_query({"before": datetime(2024, 1, 2, 12, tzinfo=UTC)})
        window = repository.find_by_query({"after": date(2024, 1, 2), "before": date(2024, 1, 3)})

        assert [r.message for r in after] == ["day 3", "day 2"]
        assert [r.message for r in before] == ["day 2", "day 1"]
        assert [r.message for r in window] == ["day 2"]

    def test_date_filters_use_local_time(self, repository: LogRepository, make_record):
        repository.set_timezone(PLUS_TWO)
        # 23:30 UTC on Jan 1st is already Jan 2nd locally.
        repository.insert(make_record("late", created_at=datetime(2024, 1, 1, 23, 30, tzinfo=UTC)))

        matched = repository.find_by_query({"after": date(2024, 1, 2)})
        assert [r.message for r in matched] == ["late"]

    def test_relative_dates(self, repository: LogRepository, make_record):
        now = datetime.now(UTC)
        repository.insert(make_record("old", created_at=now - timedelta(days=10)))
        repository.insert(make_record("new", created_at=now - timedelta(hours=1)))

        assert [r.message for r in repository.find_by_query({"after": "7 days ago"})] == ["new"]

    def test_non_canonical_level_matches_nothing(self, repository: LogRepository, make_record):
        _seed(repository, make_record, 2)

        assert repository.find_by_query({"level": 150}) == []

    def test_invalid_date_expression_raises(self, repository: LogRepository):
        with pytest.raises(ValueError):
            repository.find_by_query({"after": "sometime soon"})

    def test_pagination(self, repository: LogRepository, make_record):
        stored = _seed(repository, make_record, 5)
        ids = [record.id for record in stored]

        page_one = repository.find_by_query({"per_page": 2, "order": "ASC"})
        page_three = repository.find_by_query({"per_page": 2, "paged": 3, "order": "ASC"})
        beyond = repository.find_by_query({"per_page": 2, "paged": 4})

        assert [r.id for r in page_one] == ids[:2]
        assert [r.id for r in page_three] == ids[4:]
        assert beyond == []
        assert len(repository.find_by_query({"per_page": 0})) == 5

    def test_order_by_column_with_id_tiebreak(self, repository: LogRepository, make_record):
        repository.insert(make_record("b", channel="beta"))
        repository.insert(make_record("a1", channel="alpha"))
        repository.insert(make_record("a2", channel="alpha"))

        ordered = repository.find_by_query({"order_by": "channel", "order": "ASC"})

        assert [r.message for r in ordered] == ["a1", "a2", "b"]

    def test_invalid_order_by_falls_back_to_id(self, repository: LogRepository, make_record):
        stored = _seed(repository, make_record, 3)

        ordered = repository.find_by_query({"order_by": "nope", "order": "sideways"})

        assert [r.id for r in ordered] == [r.id for r in reversed(stored)]

    def test_accepts_query_models(self, repository: LogRepository, make_record):
        repository.insert(make_record(channel="auth"))

        assert len(repository.find_by_query(RecordQuery(channel="auth"))) == 1

    def test_read_failures_raise_repository_error(self, engine: Engine):
        repository = LogRepository(engine)

        with pytest.raises(RepositoryError):
            repository.find_by_query()
        with pytest.raises(RepositoryError):
            repository.find_channels()


class TestFindChannels:
    """Test suite for the per-channel summary."""

    def test_summary_counts_and_orders_by_last_record(self, repository, make_record):
        base = datetime(2024, 1, 1, tzinfo=UTC)
        repository.insert(make_record(channel="auth", created_at=base))
        repository.insert(make_record(channel="auth", created_at=base + timedelta(hours=1)))
        repository.insert(make_record(channel="cron", created_at=base + timedelta(hours=2)))

        summaries = repository.find_channels()

        assert [(s.channel, s.count) for s in summaries] == [("cron", 1), ("auth", 2)]
        assert summaries[1].last_record == base + timedelta(hours=1)

    def test_ties_are_broken_by_channel_name(self, repository, make_record):
        moment = datetime(2024, 1, 1, tzinfo=UTC)
        repository.insert(make_record(channel="zeta", created_at=moment))
        repository.insert(make_record(channel="alpha", created_at=moment))

        assert [s.channel for s in repository.find_channels()] == ["alpha", "zeta"]

    def test_summary_respects_site_filter(self, repository, make_record):
        repository.insert(make_record(channel="auth", extra={"site_id": 1}))
        repository.insert(make_record(channel="cron", extra={"site_id": 2}))

        assert [s.channel for s in repository.find_channels({"site_id": 2})] == ["cron"]

    def test_empty_table(self, repository):
        assert repository.find_channels() == []


class TestDeleteByQuery:
    """Test suite for the resolve-then-delete purge path."""

    def test_nothing_matched_returns_none(self, repository, make_record):
        repository.insert(make_record(channel="auth"))

        assert repository.delete_by_query({"channel": "cron"}) is None
        assert len(repository.find_by_query()) == 1

    def test_deletes_exactly_the_matching_page(self, repository, make_record):
        stored = _seed(repository, make_record, 5)
        filters = {"per_page": 2, "order": "ASC"}
        expected = {record.id for record in repository.find_by_query(filters)}

        deleted = repository.delete_by_query(filters)

        remaining = {record.id for record in repository.find_by_query()}
        assert deleted == 2
        assert remaining == {record.id for record in stored} - expected

    def test_without_pagination_deletes_every_match(self, repository, make_record, monkeypatch):
        monkeypatch.setattr(repository_module, "DELETE_CHUNK_SIZE", 2)
        _seed(repository, make_record, 5, channel="auth")
        repository.insert(make_record(channel="cron"))

        assert repository.delete_by_query({"channel": "auth"}) == 5
        assert [r.channel for r in repository.find_by_query()] == ["cron"]

    def test_before_filter_purges_old_records(self, repository, make_record):
        now = datetime.now(UTC)
        repository.insert(make_record("ancient", created_at=now - timedelta(days=120)))
        repository.insert(make_record("recent", created_at=now - timedelta(days=5)))

        cutoff = (now - timedelta(days=90)).date()
        assert repository.delete_by_query({"before": cutoff}) == 1
        assert [r.message for r in repository.find_by_query()] == ["recent"]

    def test_delete_failure_returns_zero(self, repository, make_record, monkeypatch):
        _seed(repository, make_record, 2)

        def _broken_delete(*args, **kwargs):
            raise OperationalError("DELETE FROM monolog", {}, Exception("locked"))

        monkeypatch.setattr(repository_module, "delete", _broken_delete)

        assert repository.delete_by_query() == 0
        assert len(repository.find_by_query()) == 2


class TestSingleton:
    """Test suite for the process-wide repository."""

    def test_get_repository_is_shared(self, engine: Engine):
        first = get_repository(engine)

        assert get_repository() is first
        assert first.engine is engine

        reset_repository()
        assert get_repository(engine) is not first

    def test_concurrent_first_use_builds_one_repository(self, engine: Engine, monkeypatch):
        built: list[LogRepository] = []
        original_init = LogRepository.__init__

        def _counting_init(self, *args, **kwargs):
            built.append(self)
            original_init(self, *args, **kwargs)

        monkeypatch.setattr(LogRepository, "__init__", _counting_init)
        barrier = threading.Barrier(8)
        results: list[LogRepository] = []

        def _worker() -> None:
            barrier.wait()
            results.append(get_repository(engine))

        threads = [threading.Thread(target=_worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(built) == 1
        assert len(results) == 8
        assert all(result is built[0] for result in results)

    def test_settings_timezone_is_applied(self, engine: Engine, monkeypatch):
        monkeypatch.setenv("TABLELOG_TIMEZONE", "UTC")
        get_settings(reload=True)

        local_zone = get_repository(engine).timezone
        assert datetime(2024, 1, 1, tzinfo=local_zone).utcoffset() == timedelta(0)
