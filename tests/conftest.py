"""Pytest configuration - no path manipulation, rely on proper package installation."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import Engine

from tablelog.models.base import create_engine_for_settings, reset_engine
from tablelog.models.repository import LogRepository, reset_repository
from tablelog.models.schema import SchemaManager
from tablelog.pipeline.registry import reset_registry
from tablelog.schemas.record import Level, Record
from tablelog.utils.config import get_settings


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[None]:
    """Point every test at its own SQLite file and drop cached singletons."""

    for key in list(os.environ):
        if key.startswith("TABLELOG_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("TABLELOG_DATABASE_URL", f"sqlite:///{tmp_path / 'tablelog.sqlite'}")

    get_settings(reload=True)
    yield
    reset_registry()
    reset_repository()
    reset_engine()
    monkeypatch.undo()
    get_settings(reload=True)


@pytest.fixture
def engine(tmp_path: Path) -> Iterator[Engine]:
    """Engine bound to a throwaway SQLite database."""

    engine = create_engine_for_settings(database_url=f"sqlite:///{tmp_path / 'records.sqlite'}")
    yield engine
    engine.dispose()


@pytest.fixture
def schema_manager(engine: Engine) -> SchemaManager:
    return SchemaManager(engine)


@pytest.fixture
def repository(engine: Engine, schema_manager: SchemaManager) -> LogRepository:
    """Repository over an installed schema, reporting local time in UTC."""

    schema_manager.ensure_schema()
    return LogRepository(engine, timezone="UTC")


@pytest.fixture
def make_record() -> Callable[..., Record]:
    """Factory producing records with sensible defaults."""

    def _make(
        message: str = "something happened",
        *,
        channel: str = "app",
        level: Level | int | str = Level.NOTICE,
        context: dict[str, Any] | None = None,
        extra: dict[str, Any] | None = None,
        created_at: datetime | None = None,
    ) -> Record:
        return Record(
            channel=channel,
            message=message,
            level=level,
            context=context or {},
            extra=extra or {},
            created_at=created_at or datetime.now(timezone.utc),
        )

    return _make
