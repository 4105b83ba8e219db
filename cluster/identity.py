from __future__ import annotations

import re
from collections.abc import Iterable
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal

from normalize.timestamps import to_iso


_UNSAFE_RE = re.compile(r"[^0-9A-Za-z]")


def _scaled(value: float) -> str:
    # 14.6 and 14.60 must yield the same key
    scaled = Decimal(repr(float(value))).scaleb(2)
    return str(int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP)))


def event_id(
    occurred_at: datetime | str,
    latitude: float,
    longitude: float,
    magnitude: float | None = None,
) -> str:
    """Deterministic key for one physical event.

    Example: ``2025-11-01T08-12-00-000Z_1460_12098``. Two events at the same
    second and the same coordinates rounded to 0.01 degree share a key.
    """
    ts = occurred_at if isinstance(occurred_at, str) else to_iso(occurred_at)
    parts = [_UNSAFE_RE.sub("-", ts), _scaled(latitude), _scaled(longitude)]
    if magnitude is not None:
        parts.append(_scaled(magnitude))
    return "_".join(parts)


def dedupe_events(events: Iterable[dict]) -> tuple[list[dict], int]:
    """Keep the first record per ``id``; return it with the collapsed count."""
    seen: set[str] = set()
    unique: list[dict] = []
    collapsed = 0
    for event in events:
        if event["id"] in seen:
            collapsed += 1
            continue
        seen.add(event["id"])
        unique.append(event)
    return unique, collapsed
