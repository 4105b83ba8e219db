from __future__ import annotations

import sqlite3
from collections.abc import Sequence
from dataclasses import dataclass

from store.db import Database


_UPSERT_SQL = """
    INSERT INTO events(
      id, occurred_at, latitude, longitude, depth_km, magnitude, location_text, raw,
      created_at, updated_at
    )
    VALUES(
      :id, :occurred_at, :latitude, :longitude, :depth_km, :magnitude, :location_text, :raw,
      :stored_at, :stored_at
    )
    ON CONFLICT(id) DO UPDATE SET
      occurred_at = excluded.occurred_at,
      latitude = excluded.latitude,
      longitude = excluded.longitude,
      depth_km = excluded.depth_km,
      magnitude = excluded.magnitude,
      location_text = excluded.location_text,
      raw = excluded.raw,
      updated_at = excluded.updated_at;
"""


@dataclass(frozen=True)
class UpsertResult:
    inserted: int
    updated: int

    @property
    def stored(self) -> int:
        return self.inserted + self.updated


def upsert_events(
    db: Database, events: Sequence[dict], *, stored_at: str
) -> UpsertResult:
    """Insert or overwrite a deduplicated batch in one transaction.

    ``created_at`` survives an overwrite. Any sqlite error rolls the whole
    batch back and is re-raised; callers must dedupe by ``id`` first.
    """
    if not events:
        return UpsertResult(inserted=0, updated=0)

    ids = [str(e["id"]) for e in events]
    params = [{**e, "stored_at": stored_at} for e in events]
    with db.lock:
        try:
            db.conn.execute("BEGIN IMMEDIATE;")
            placeholders = ",".join("?" for _ in ids)
            row = db.conn.execute(
                f"SELECT COUNT(*) AS n FROM events WHERE id IN ({placeholders});",
                ids,
            ).fetchone()
            existing = int(row["n"])
            db.conn.executemany(_UPSERT_SQL, params)
            db.conn.commit()
        except sqlite3.Error:
            db.conn.rollback()
            raise
    return UpsertResult(inserted=len(ids) - existing, updated=existing)


def sweep_expired(db: Database, *, cutoff_iso: str) -> int:
    # retention runs on the physical event time, never on storage time
    with db.lock:
        cur = db.conn.execute(
            "DELETE FROM events WHERE occurred_at < ?;", (cutoff_iso,)
        )
        db.conn.commit()
    return cur.rowcount


def count_events(db: Database) -> int:
    with db.lock:
        row = db.conn.execute("SELECT COUNT(*) AS n FROM events;").fetchone()
    return int(row["n"])


def query_recent_events(db: Database, *, since_iso: str, limit: int) -> list[dict]:
    with db.lock:
        rows = db.conn.execute(
            """
            SELECT id, occurred_at, latitude, longitude, depth_km, magnitude,
                   location_text, created_at, updated_at
            FROM events
            WHERE occurred_at >= ?
            ORDER BY occurred_at DESC, id ASC
            LIMIT ?;
            """,
            (since_iso, limit),
        ).fetchall()
    return [{k: r[k] for k in r.keys()} for r in rows]
