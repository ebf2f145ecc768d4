from contextlib import contextmanager
from typing import Iterator
import logging
import os

from sqlalchemy.engine import make_url
from sqlalchemy.event import listen
from sqlmodel import SQLModel, Session, create_engine

# Ensure models are imported so SQLModel metadata is populated
from .. import models as _models  # noqa: F401
from .config import settings

log = logging.getLogger(__name__)


def _int_from_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        log.warning("[db] Invalid integer for %s=%s; using default %s", name, value, default)
        return default


def _engine_kwargs(url: str) -> dict:
    backend = make_url(url).get_backend_name()
    if backend == "sqlite":
        return {"echo": False, "connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_size": _int_from_env("DB_POOL_SIZE", 10),
        "max_overflow": _int_from_env("DB_MAX_OVERFLOW", 10),
        "pool_recycle": _int_from_env("DB_POOL_RECYCLE", 1800),
        "pool_timeout": _int_from_env("DB_POOL_TIMEOUT", 30),
        # Force ROLLBACK on all connections returned to pool
        "pool_reset_on_return": "rollback",
    }


def _create_engine():
    url = settings.database_url
    new_engine = create_engine(url, **_engine_kwargs(url))
    log.info("[db] Database engine created (%s)", make_url(url).get_backend_name())
    return new_engine


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _handle_invalidate(dbapi_connection, connection_record, exception):
    """Called when a connection is invalidated (stale/broken)."""
    log.warning("[db-pool] Connection invalidated due to: %s", exception)


def install_engine_listeners(target_engine) -> None:
    if target_engine.dialect.name == "sqlite":
        listen(target_engine, "connect", _enable_sqlite_foreign_keys)
    listen(target_engine.pool, "invalidate", _handle_invalidate)


engine = _create_engine()
install_engine_listeners(engine)


def create_db_and_tables():
    """Create all tables from SQLModel metadata."""
    SQLModel.metadata.create_all(engine)


def get_session():
    """Provide database session for FastAPI dependency injection.

    expire_on_commit=False keeps profile attributes readable after the
    ledger commits its atomic counter updates; callers refresh explicitly.
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        if session.in_transaction():
            session.rollback()
        session.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Provide a context manager for DB sessions outside FastAPI dependencies.

    Caller is responsible for commit(); any uncommitted work is rolled back.
    """
    session = Session(engine, expire_on_commit=False)
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        if session.in_transaction():
            session.rollback()
        session.close()
