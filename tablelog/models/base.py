"""Declarative base, engine construction and session helpers."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from threading import Lock
from typing import Any, Final

from sqlalchemy import Engine, create_engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..utils.config import DatabasePoolSettings, GlobalSettings, get_settings


class Base(DeclarativeBase):
    """Declarative base shared by the log table models."""


_shared_engine: Engine | None = None
_shared_engine_lock: Final = Lock()


def _engine_options(database_url: str, pool: DatabasePoolSettings) -> dict[str, Any]:
    """Keyword arguments for ``create_engine`` appropriate to the URL's backend."""

    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        options: dict[str, Any] = {
            "pool_size": pool.pool_size,
            "max_overflow": pool.max_overflow,
            "pool_timeout": pool.timeout,
            "pool_pre_ping": pool.pre_ping,
        }
        if pool.recycle_seconds > 0:
            options["pool_recycle"] = pool.recycle_seconds
        return options

    options = {"connect_args": {"check_same_thread": False}}
    if url.database in (None, "", ":memory:"):
        # Every checkout of an in-memory database would otherwise start empty.
        options["poolclass"] = StaticPool
    return options


def create_engine_for_settings(
    settings: GlobalSettings | None = None,
    *,
    database_url: str | None = None,
) -> Engine:
    """Build an engine for ``database_url``, or the configured database when omitted."""

    settings = settings or get_settings()
    target = database_url or settings.resolved_database_url()
    return create_engine(target, echo=False, **_engine_options(target, settings.database))


def get_engine() -> Engine:
    """Process-wide engine, created from the global settings on first call."""

    global _shared_engine
    with _shared_engine_lock:
        if _shared_engine is None:
            _shared_engine = create_engine_for_settings()
        return _shared_engine


def reset_engine() -> None:
    """Dispose the process-wide engine so the next ``get_engine`` rebuilds it."""

    global _shared_engine
    with _shared_engine_lock:
        engine, _shared_engine = _shared_engine, None
    if engine is not None:
        engine.dispose()


def make_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker[Session]) -> Iterator[Session]:
    """Yield a session that commits on success and rolls back on any error."""

    with factory() as session:
        try:
            yield session
        except Exception:
            session.rollback()
            raise
        session.commit()
