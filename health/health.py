from __future__ import annotations

import math
from datetime import datetime, timedelta

from normalize.timestamps import parse_iso, to_iso
from store.db import Database


def try_claim_cycle(
    db: Database,
    *,
    source_id: str,
    url: str,
    now: datetime,
    min_interval_seconds: int,
) -> tuple[bool, int]:
    """Claim the right to run a scrape cycle for ``source_id``.

    The claim lives in the database so every process sharing it sees the
    same gate. Returns ``(claimed, retry_after_seconds)``.
    """
    now_iso = to_iso(now)
    cutoff_iso = to_iso(now - timedelta(seconds=min_interval_seconds))
    with db.lock:
        cur = db.conn.execute(
            """
            INSERT INTO scrape_state(source_id, url, last_started_at)
            VALUES(?, ?, ?)
            ON CONFLICT(source_id) DO UPDATE SET
              url = excluded.url,
              last_started_at = excluded.last_started_at
            WHERE scrape_state.last_started_at IS NULL
               OR scrape_state.last_started_at <= ?;
            """,
            (source_id, url, now_iso, cutoff_iso),
        )
        claimed = cur.rowcount > 0
        row = None
        if not claimed:
            row = db.conn.execute(
                "SELECT last_started_at FROM scrape_state WHERE source_id = ?;",
                (source_id,),
            ).fetchone()
        db.conn.commit()

    if claimed:
        return True, 0
    retry_after = min_interval_seconds
    if row is not None and row["last_started_at"]:
        elapsed = (now - parse_iso(str(row["last_started_at"]))).total_seconds()
        retry_after = max(1, math.ceil(min_interval_seconds - elapsed))
    return False, retry_after


def record_cycle_success(
    db: Database,
    *,
    source_id: str,
    now: datetime,
    status_code: int,
    fetch_ms: int,
    etag: str | None,
    last_modified: str | None,
    stored: int,
    deleted: int,
    duplicates: int,
    skipped_rows: int,
) -> None:
    now_iso = to_iso(now)
    with db.lock:
        db.conn.execute(
            """
            UPDATE scrape_state
            SET last_success_at = ?,
                last_status_code = ?,
                last_fetch_ms = ?,
                consecutive_failures = 0,
                last_error = NULL,
                last_error_at = NULL,
                success_count = success_count + 1,
                etag = ?,
                last_modified = ?,
                last_events_stored = ?,
                last_events_deleted = ?,
                last_duplicates = ?,
                last_skipped_rows = ?
            WHERE source_id = ?;
            """,
            (
                now_iso,
                status_code,
                fetch_ms,
                etag,
                last_modified,
                stored,
                deleted,
                duplicates,
                skipped_rows,
                source_id,
            ),
        )
        db.conn.commit()


def record_cycle_error(
    db: Database,
    *,
    source_id: str,
    now: datetime,
    status_code: int | None,
    fetch_ms: int | None,
    error: str,
) -> int:
    now_iso = to_iso(now)
    with db.lock:
        db.conn.execute(
            """
            UPDATE scrape_state
            SET last_error_at = ?,
                last_status_code = COALESCE(?, last_status_code),
                last_fetch_ms = COALESCE(?, last_fetch_ms),
                consecutive_failures = consecutive_failures + 1,
                last_error = ?,
                error_count = error_count + 1
            WHERE source_id = ?;
            """,
            (now_iso, status_code, fetch_ms, error, source_id),
        )
        row = db.conn.execute(
            "SELECT consecutive_failures FROM scrape_state WHERE source_id = ?;",
            (source_id,),
        ).fetchone()
        db.conn.commit()
    return int(row["consecutive_failures"]) if row is not None else 0


def get_scrape_state(db: Database, source_id: str) -> dict | None:
    with db.lock:
        row = db.conn.execute(
            "SELECT * FROM scrape_state WHERE source_id = ?;", (source_id,)
        ).fetchone()
    if row is None:
        return None
    return {k: row[k] for k in row.keys()}


def last_success_at(db: Database, source_id: str) -> datetime | None:
    state = get_scrape_state(db, source_id)
    if state is None or not state["last_success_at"]:
        return None
    return parse_iso(str(state["last_success_at"]))
