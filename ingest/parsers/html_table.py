from __future__ import annotations

from collections import Counter
from collections.abc import Iterator
from typing import NamedTuple

from bs4 import BeautifulSoup, Tag


ROW_CELLS = 6


class RawRow(NamedTuple):
    date_time: str
    latitude: str
    longitude: str
    depth: str
    magnitude: str
    location: str


def _cell_text(cell: Tag) -> str:
    return " ".join(cell.get_text(" ").split())


def _data_cells(row: Tag) -> list[Tag]:
    return row.find_all("td", recursive=False)


def _own_rows(table: Tag) -> list[Tag]:
    return [row for row in table.find_all("tr") if row.find_parent("table") is table]


def find_event_table(soup: BeautifulSoup) -> Tag | None:
    """Pick the table holding the bulletin rows.

    Layout tables on the page rarely have six-cell rows, so the table with
    the most rows of exactly six data cells wins. Ties keep the first table.
    """
    best: Tag | None = None
    best_count = 0
    for table in soup.find_all("table"):
        count = sum(
            1 for row in _own_rows(table) if len(_data_cells(row)) == ROW_CELLS
        )
        if count > best_count:
            best, best_count = table, count
    return best


def extract_rows(data: bytes | str, skipped: Counter) -> Iterator[RawRow]:
    soup = BeautifulSoup(data, "html.parser")
    table = find_event_table(soup)
    if table is None:
        return

    for row in _own_rows(table):
        cells = _data_cells(row)
        if not cells:
            # header rows carry only <th>
            continue
        if len(cells) != ROW_CELLS:
            skipped["cell_count"] += 1
            continue

        raw = RawRow(*(_cell_text(c) for c in cells))
        if not (raw.date_time and raw.latitude and raw.longitude and raw.magnitude):
            skipped["empty_field"] += 1
            continue
        yield raw
