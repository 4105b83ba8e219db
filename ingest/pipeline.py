from __future__ import annotations

import sqlite3
from collections import Counter
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

import httpx

from app.logger import get_logger
from app.settings import Settings
from cluster.identity import dedupe_events, event_id
from health.health import (
    get_scrape_state,
    record_cycle_error,
    record_cycle_success,
    try_claim_cycle,
)
from ingest.fetch import fetch
from ingest.parsers.html_table import extract_rows
from normalize.normalize import RowRejected, normalize_row
from normalize.timestamps import to_iso, utc_now
from store.db import Database
from store.events import count_events, sweep_expired, upsert_events


SOURCE_ID = "phivolcs"

Clock = Callable[[], datetime]

logger = get_logger(__name__)


@dataclass(frozen=True)
class ParsedBatch:
    events: list[dict]
    duplicates: int
    skipped: Counter

    @property
    def skipped_rows(self) -> int:
        return sum(self.skipped.values())


@dataclass
class CycleResult:
    success: bool
    started_at: str
    events_stored: int = 0
    events_inserted: int = 0
    events_updated: int = 0
    events_deleted: int = 0
    events_expired: int = 0
    duplicates_collapsed: int = 0
    skipped_rows: int = 0
    skipped_by_reason: dict[str, int] = field(default_factory=dict)
    not_modified: bool = False
    status_code: int | None = None
    fetch_ms: int | None = None
    error: str | None = None
    detail: str | None = None
    retry_after: int | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def process_document(data: bytes | str, settings: Settings) -> ParsedBatch:
    """Extract, validate, identify and dedupe every row of one bulletin page."""
    skipped: Counter = Counter()
    records: list[dict] = []
    bbox = settings.bbox
    for row in extract_rows(data, skipped):
        try:
            record = normalize_row(
                row, bbox=bbox, utc_offset_hours=settings.source_utc_offset_hours
            )
        except RowRejected as e:
            skipped[e.reason] += 1
            logger.debug("row rejected", reason=e.reason, row=list(row))
            continue
        record["id"] = event_id(
            record["occurred_at"],
            record["latitude"],
            record["longitude"],
            record["magnitude"] if settings.id_include_magnitude else None,
        )
        records.append(record)

    events, duplicates = dedupe_events(records)
    return ParsedBatch(events=events, duplicates=duplicates, skipped=skipped)


def retention_cutoff(settings: Settings, now: datetime) -> str:
    return to_iso(now - timedelta(hours=settings.retention_hours))


def run_cleanup(db: Database, settings: Settings, *, clock: Clock = utc_now) -> dict:
    cutoff_iso = retention_cutoff(settings, clock())
    before = count_events(db)
    deleted = sweep_expired(db, cutoff_iso=cutoff_iso)
    after = count_events(db)
    logger.info("cleanup complete", cutoff=cutoff_iso, deleted=deleted, remaining=after)
    return {
        "cutoff_time": cutoff_iso,
        "events_before": before,
        "events_deleted": deleted,
        "events_after": after,
    }


def _fail(
    db: Database,
    result: CycleResult,
    *,
    clock: Clock,
    error: str,
    detail: str | None = None,
) -> CycleResult:
    result.success = False
    result.error = error
    result.detail = detail
    try:
        failures = record_cycle_error(
            db,
            source_id=SOURCE_ID,
            now=clock(),
            status_code=result.status_code,
            fetch_ms=result.fetch_ms,
            error=error,
        )
    except sqlite3.Error as e:
        logger.error("could not record cycle error", error=error, store_error=str(e))
        failures = None
    logger.warning(
        "scrape cycle failed",
        error=error,
        detail=detail,
        status=result.status_code,
        consecutive_failures=failures,
    )
    return result


async def run_cycle(
    client: httpx.AsyncClient,
    db: Database,
    settings: Settings,
    *,
    clock: Clock = utc_now,
    min_interval_seconds: int | None = None,
) -> CycleResult:
    """Run one fetch, extract, validate, dedupe, upsert and sweep cycle.

    Safe to call repeatedly or concurrently: the upsert is keyed by the
    deterministic event id, and the min-interval claim in ``scrape_state``
    only keeps overlapping invocations from hammering the upstream site.
    """
    started = clock()
    result = CycleResult(success=False, started_at=to_iso(started))
    interval = (
        settings.min_scrape_interval_seconds
        if min_interval_seconds is None
        else min_interval_seconds
    )

    claimed, retry_after = try_claim_cycle(
        db,
        source_id=SOURCE_ID,
        url=settings.source_url,
        now=started,
        min_interval_seconds=interval,
    )
    if not claimed:
        result.error = "rate_limited"
        result.retry_after = retry_after
        logger.info("scrape cycle skipped", reason="rate_limited", retry_after=retry_after)
        return result

    state = get_scrape_state(db, SOURCE_ID) or {}
    etag = state.get("etag")
    last_modified = state.get("last_modified")

    try:
        status_code, content, headers, elapsed_ms = await fetch(
            client,
            url=settings.source_url,
            user_agent=settings.user_agent,
            timeout_seconds=settings.fetch_timeout_seconds,
            etag=etag,
            last_modified=last_modified,
        )
    except (httpx.TimeoutException, TimeoutError):
        return _fail(db, result, clock=clock, error="timeout")
    except httpx.RequestError as e:
        return _fail(
            db,
            result,
            clock=clock,
            error=f"request_error:{e.__class__.__name__}",
            detail=str(e),
        )

    result.status_code = status_code
    result.fetch_ms = elapsed_ms

    if status_code == 304:
        result.not_modified = True
        batch = ParsedBatch(events=[], duplicates=0, skipped=Counter())
    elif status_code != 200 or content is None:
        return _fail(db, result, clock=clock, error=f"http_{status_code}")
    else:
        try:
            batch = process_document(content, settings)
        except ValueError as e:
            return _fail(db, result, clock=clock, error="parse_error", detail=str(e))

    result.duplicates_collapsed = batch.duplicates
    result.skipped_rows = batch.skipped_rows
    result.skipped_by_reason = dict(batch.skipped)

    now = clock()
    cutoff_iso = retention_cutoff(settings, now)
    fresh = [e for e in batch.events if e["occurred_at"] >= cutoff_iso]
    result.events_expired = len(batch.events) - len(fresh)
    try:
        upserted = upsert_events(db, fresh, stored_at=to_iso(now))
    except sqlite3.Error as e:
        return _fail(
            db,
            result,
            clock=clock,
            error=f"store_error:{e.__class__.__name__}",
            detail=str(e),
        )

    result.events_stored = upserted.stored
    result.events_inserted = upserted.inserted
    result.events_updated = upserted.updated
    result.success = True

    # the batch is committed; a failed sweep is retried by the next cycle
    try:
        result.events_deleted = sweep_expired(db, cutoff_iso=cutoff_iso)
    except sqlite3.Error as e:
        logger.warning("retention sweep failed", cutoff=cutoff_iso, error=str(e))
    deleted = result.events_deleted

    try:
        record_cycle_success(
            db,
            source_id=SOURCE_ID,
            now=now,
            status_code=status_code,
            fetch_ms=elapsed_ms,
            etag=headers.get("etag") or etag,
            last_modified=headers.get("last-modified") or last_modified,
            stored=result.events_stored,
            deleted=deleted,
            duplicates=batch.duplicates,
            skipped_rows=batch.skipped_rows,
        )
    except sqlite3.Error as e:
        logger.error("could not record cycle success", store_error=str(e))
    logger.info(
        "scrape cycle complete",
        status=status_code,
        stored=result.events_stored,
        inserted=result.events_inserted,
        deleted=deleted,
        expired=result.events_expired,
        duplicates=batch.duplicates,
        skipped=result.skipped_by_reason,
        fetch_ms=elapsed_ms,
    )
    return result
