from __future__ import annotations

from dataclasses import dataclass

import httpx

from app.logger import get_logger
from app.settings import Settings
from health.health import last_success_at
from ingest.pipeline import SOURCE_ID, Clock, retention_cutoff, run_cycle
from normalize.timestamps import to_iso, utc_now
from store.db import Database
from store.events import query_recent_events


logger = get_logger(__name__)


@dataclass(frozen=True)
class RecentEvents:
    events: list[dict]
    last_updated: str
    refreshed: bool


def is_stale(db: Database, settings: Settings, *, clock: Clock = utc_now) -> bool:
    last = last_success_at(db, SOURCE_ID)
    if last is None:
        return True
    return (clock() - last).total_seconds() >= settings.staleness_seconds


async def list_recent_events(
    client: httpx.AsyncClient,
    db: Database,
    settings: Settings,
    *,
    clock: Clock = utc_now,
) -> RecentEvents:
    """Events from the retention window, newest first.

    A stale store triggers one scrape cycle first. A failed or gated cycle
    is logged and the stored rows are served as they are.
    """
    refreshed = False
    if is_stale(db, settings, clock=clock):
        try:
            result = await run_cycle(client, db, settings, clock=clock)
        except Exception:
            logger.exception("refresh aborted, serving stored events")
        else:
            refreshed = result.success
            if not result.success and result.error != "rate_limited":
                logger.warning(
                    "refresh failed, serving stored events", error=result.error
                )

    now = clock()
    rows = query_recent_events(
        db, since_iso=retention_cutoff(settings, now), limit=settings.max_events
    )
    last_updated = max((str(r["updated_at"]) for r in rows), default=to_iso(now))
    return RecentEvents(events=rows, last_updated=last_updated, refreshed=refreshed)
