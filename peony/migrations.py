"""
Forward-only schema migrator.

The applied version lives in ``schema_migrations``. ``migrate`` is safe to
call on every process start: when the recorded version is current it does
nothing, otherwise it creates every table and index and records the version
in the same transaction.
"""

from __future__ import annotations

from sqlalchemy import func, insert, inspect, select
from sqlalchemy.engine import Engine

import peony.config as config
from peony.models import Base, SchemaMigration

SCHEMA_VERSION = 1


def _recorded_version(conn) -> int:
    return conn.execute(select(func.coalesce(func.max(SchemaMigration.version), 0))).scalar_one()


def current_schema_version(engine: Engine) -> int:
    with engine.connect() as conn:
        if not inspect(conn).has_table(SchemaMigration.__tablename__):
            return 0
        return _recorded_version(conn)


def migrate(engine: Engine) -> bool:
    """Apply pending DDL. Returns True when the schema was changed."""
    with engine.connect().execution_options(sqlite_begin="BEGIN IMMEDIATE") as conn:
        with conn.begin():
            SchemaMigration.__table__.create(conn, checkfirst=True)
            current = _recorded_version(conn)
            if current >= SCHEMA_VERSION:
                return False

            Base.metadata.create_all(conn, checkfirst=True)
            conn.execute(insert(SchemaMigration).values(version=SCHEMA_VERSION))

    config.logger.debug(
        "schema_migrated",
        extra={"from_version": current, "to_version": SCHEMA_VERSION},
    )
    return True
