from __future__ import annotations

import json
import math

from geo.bbox import BoundingBox
from ingest.parsers.html_table import RawRow
from normalize.timestamps import parse_source_datetime, to_iso


class RowRejected(ValueError):
    def __init__(self, reason: str, row: RawRow) -> None:
        super().__init__(f"{reason}: {row.date_time!r}")
        self.reason = reason
        self.row = row


def _finite_float(text: str) -> float | None:
    try:
        value = float(text)
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return value


def normalize_row(
    row: RawRow, *, bbox: BoundingBox, utc_offset_hours: int
) -> dict:
    """Turn one extracted bulletin row into an event record (without ``id``).

    Checks run in a fixed order so the rejection reason is stable:
    timestamp, numeric fields, then the bounding box. An unparseable depth
    is stored as NULL rather than rejecting the row.
    """
    occurred_at = parse_source_datetime(row.date_time, utc_offset_hours=utc_offset_hours)
    if occurred_at is None:
        raise RowRejected("bad_timestamp", row)

    lat = _finite_float(row.latitude)
    lon = _finite_float(row.longitude)
    mag = _finite_float(row.magnitude)
    if lat is None or lon is None or mag is None:
        raise RowRejected("non_numeric", row)

    if not bbox.contains(lat, lon):
        raise RowRejected("out_of_bounds", row)

    raw = {
        "date_time": row.date_time,
        "latitude": row.latitude,
        "longitude": row.longitude,
        "depth": row.depth,
        "magnitude": row.magnitude,
        "location": row.location,
    }
    return {
        "occurred_at": to_iso(occurred_at),
        "latitude": lat,
        "longitude": lon,
        "depth_km": _finite_float(row.depth),
        "magnitude": mag,
        "location_text": row.location,
        "raw": json.dumps(raw, ensure_ascii=False),
    }
