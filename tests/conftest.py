from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from app.settings import Settings
from store.db import close_database, open_database


FIXTURES = Path(__file__).resolve().parent / "fixtures"


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 11, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        DB_PATH=tmp_path / "test.db",
        SOURCE_URL="https://bulletin.test/",
        MIN_SCRAPE_INTERVAL_SECONDS=60,
        STALENESS_SECONDS=300,
        SCHEDULER_ENABLED=False,
        LOG_FORMAT="console",
    )


@pytest.fixture
def db(settings):
    database = open_database(settings.db_path)
    try:
        yield database
    finally:
        close_database(database)


@pytest.fixture
def bulletin_html() -> bytes:
    return (FIXTURES / "phivolcs.html").read_bytes()


@pytest.fixture
def garbage_html() -> bytes:
    return (FIXTURES / "partial_garbage.html").read_bytes()
