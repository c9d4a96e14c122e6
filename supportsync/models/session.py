"""Helpers for configuring the SQLAlchemy engine, sessions and units of work."""

from __future__ import annotations

import os
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Engine, create_engine, event, text
from sqlalchemy.orm import Session, sessionmaker

from . import Base

_SESSION_FACTORY: sessionmaker[Session] | None = None


def get_engine(database_url: str | None = None, **kwargs: object) -> Engine:
    """Create a SQLAlchemy engine.

    Args:
        database_url: Optional database URL. When ``None`` the ``DATABASE_URL``
            environment variable is used.
        **kwargs: Additional keyword arguments forwarded to
            :func:`sqlalchemy.create_engine`.

    Returns:
        Configured SQLAlchemy :class:`~sqlalchemy.engine.Engine` instance.
    """

    url = database_url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError("DATABASE_URL is not configured.")

    kwargs.setdefault("pool_pre_ping", True)
    engine = create_engine(url, **kwargs)

    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _configure_sqlite(dbapi_connection, _connection_record):  # pragma: no cover - dialect hook
            dbapi_connection.execute("PRAGMA foreign_keys=ON")

    return engine


def get_sessionmaker(
    database_url: str | None = None, *, engine: Engine | None = None, **kwargs: object
) -> sessionmaker[Session]:
    """Return a session factory bound to ``engine`` or the configured URL."""

    bind = engine or get_engine(database_url=database_url, **kwargs)
    return sessionmaker(bind=bind, expire_on_commit=False, future=True)


def get_session_factory() -> sessionmaker[Session]:
    """Return the process-wide session factory, creating it on first use."""

    global _SESSION_FACTORY
    if _SESSION_FACTORY is None:
        _SESSION_FACTORY = get_sessionmaker()
    return _SESSION_FACTORY


def apply_statement_timeout(session: Session, timeout_ms: int) -> None:
    """Bound every statement of the current transaction on PostgreSQL.

    ``SET LOCAL`` only lasts until commit/rollback, so the timeout never leaks
    into pooled connections. Other dialects are left untouched.
    """

    if timeout_ms <= 0 or session.get_bind().dialect.name != "postgresql":
        return
    session.execute(text(f"SET LOCAL statement_timeout = {int(timeout_ms)}"))


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Iterator[Session]:
    """Provide a transactional scope around a series of operations."""

    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


__all__ = [
    "Base",
    "apply_statement_timeout",
    "get_engine",
    "get_session_factory",
    "get_sessionmaker",
    "session_scope",
]
