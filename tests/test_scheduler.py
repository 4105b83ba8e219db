import asyncio
import sqlite3

import pytest

from ingest import scheduler
from ingest.pipeline import CycleResult


class _Stop(Exception):
    pass


def test_scheduler_survives_store_errors_and_honours_retry_after(
    db, settings, monkeypatch
) -> None:
    outcomes = [
        CycleResult(success=False, started_at="", error="rate_limited", retry_after=7),
        sqlite3.OperationalError("database is locked"),
        CycleResult(success=True, started_at=""),
    ]
    cycles = []
    delays = []

    async def fake_cycle(client, db, settings):
        cycles.append(settings)
        outcome = outcomes[len(cycles) - 1]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def fake_sleep(seconds):
        delays.append(seconds)
        if len(delays) == len(outcomes):
            raise _Stop

    monkeypatch.setattr(scheduler, "run_cycle", fake_cycle)
    monkeypatch.setattr(scheduler.asyncio, "sleep", fake_sleep)

    with pytest.raises(_Stop):
        asyncio.run(scheduler.run_scheduler(settings=settings, db=db, client=None))

    assert len(cycles) == 3
    assert delays == [7, 300, 300]
