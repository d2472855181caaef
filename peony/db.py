"""
Database initialization and session helpers.
"""

from __future__ import annotations

import os
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import peony.config as config
from peony.migrations import migrate

READ_BEGIN = "BEGIN"
WRITE_BEGIN = "BEGIN IMMEDIATE"


class DB:
    """
    Database state holder (avoids global scoping issues).

    Reads start with a real ``BEGIN``, so a ``SessionLocal()`` session that has
    queried holds a SHARED lock until it commits, rolls back or closes, and
    writers on ``WriteSessionLocal`` wait on it.
    """

    engine = None
    SessionLocal = None
    WriteSessionLocal = None


def _install_sqlite_hooks(engine: Engine, busy_timeout_ms: int) -> None:
    # pysqlite defers BEGIN until the first DML statement; take control of
    # transaction start so PRAGMAs and DDL run inside the transaction and
    # writers can ask for BEGIN IMMEDIATE.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys = ON")
        cursor.execute(f"PRAGMA busy_timeout = {int(busy_timeout_ms)}")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql(conn.get_execution_options().get("sqlite_begin", READ_BEGIN))


def create_db_engine(
    database_url: str,
    busy_timeout_ms: Optional[int] = None,
    echo: Optional[bool] = None,
) -> Engine:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        raise RuntimeError(f"Unsupported database backend: {url.get_backend_name()}")

    engine_kwargs = {"echo": config.SQL_ECHO if echo is None else echo}
    if url.database in (None, "", ":memory:"):
        engine_kwargs["poolclass"] = StaticPool
        engine_kwargs["connect_args"] = {"check_same_thread": False}
    else:
        directory = os.path.dirname(os.path.abspath(url.database))
        os.makedirs(directory, exist_ok=True)

    engine = create_engine(url, **engine_kwargs)
    _install_sqlite_hooks(
        engine,
        config.BUSY_TIMEOUT_MS if busy_timeout_ms is None else busy_timeout_ms,
    )
    return engine


def init_db(database_url: Optional[str] = None) -> Engine:
    """Connect to the store, bring its schema up to date and bind sessions."""
    if database_url is None:
        config.validate_and_prepare_config()
        database_url = config.DATABASE_URL

    config.logger.debug("Connecting to database...", extra={"database_url": database_url})
    engine = create_db_engine(database_url)
    migrate(engine)

    DB.engine = engine
    DB.SessionLocal = sessionmaker(bind=engine)
    DB.WriteSessionLocal = sessionmaker(bind=engine.execution_options(sqlite_begin=WRITE_BEGIN))
    config.logger.debug("Database initialized")
    return engine


def dispose_db() -> None:
    if DB.engine is not None:
        DB.engine.dispose()
    DB.engine = None
    DB.SessionLocal = None
    DB.WriteSessionLocal = None
