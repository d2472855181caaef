from datetime import datetime, timedelta, timezone

import pytest

from peony.context import StoreContext
from peony.db import DB, dispose_db, init_db


class FakeClock:
    """Manually driven clock; call it to read the current time."""

    def __init__(self, start: datetime):
        self.current = start

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current

    def set(self, moment: datetime) -> None:
        self.current = moment


@pytest.fixture
def server_db(tmp_path):
    engine = init_db(f"sqlite:///{tmp_path / 'peony.db'}")
    try:
        yield engine
    finally:
        dispose_db()


@pytest.fixture
def db_session(server_db):
    session = DB.SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 11, 9, 30, tzinfo=timezone.utc))


@pytest.fixture
def store_context(clock):
    def _make(settle_duration: timedelta = timedelta(0)) -> StoreContext:
        return StoreContext(settle_duration=settle_duration, clock=clock)

    return _make
