# creditbook/db/engine.py
"""
SQLModel engine and session management.
Supports SQLite (default) and PostgreSQL via the DATABASE_URL environment variable.
On SQLite every transaction starts with BEGIN IMMEDIATE so concurrent
read-modify-write cycles on the same client serialize instead of racing.
"""
from typing import Generator

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from ..core.config import get_settings


def build_engine(database_url: str | None = None, timeout: float | None = None) -> Engine:
    """
    Create an engine for ``database_url`` with the store timeout applied.

    Args:
        database_url: SQLAlchemy URL. Defaults to the configured one.
        timeout: Seconds to wait for a lock or a pooled connection.
    """
    settings = get_settings()
    url = database_url or settings.resolved_database_url()
    timeout = settings.store_timeout_seconds if timeout is None else timeout
    is_sqlite = url.startswith("sqlite")

    if is_sqlite:
        kwargs = {"connect_args": {"check_same_thread": False, "timeout": timeout}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            # A single shared connection, otherwise every session sees an empty db
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=False, **kwargs)
        _install_sqlite_hooks(engine)
    else:
        engine = create_engine(url, echo=False, pool_timeout=timeout, pool_pre_ping=True)
    return engine


def _install_sqlite_hooks(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself (see below)
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL;")
        cursor.execute("PRAGMA foreign_keys=ON;")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


_engine: Engine | None = None


def get_engine() -> Engine:
    global _engine
    if _engine is None:
        _engine = build_engine()
    return _engine


def get_session() -> Generator[Session, None, None]:
    """
    Dependency for SQLModel session injection.
    Usage: session: Session = Depends(get_session)
    """
    with Session(get_engine()) as session:
        yield session


def create_db_and_tables(engine: Engine | None = None) -> None:
    """
    Create all tables defined in SQLModel models.
    Call this at application startup after importing all models.
    """
    from .. import models  # noqa: F401  (registers the tables)

    SQLModel.metadata.create_all(engine or get_engine())
