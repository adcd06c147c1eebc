# ui/tables.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, List, Sequence, Union

from rich import box
from rich.table import Table

from ..api.models import Job, Stage
from ..formatting import fmt_duration
from .console import CYAN, GRAY, INFO_BOLD, ORANGE

Row = Union[Job, Stage]

_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


@dataclass(frozen=True)
class StageTiming:
    name: str
    avg: float
    min: int
    max: int


def timing_table(rows: Sequence[StageTiming]) -> Table:
    """STAGE / AVG / MIN / MAX table for the ``timing`` command."""
    table = Table(
        box=box.HEAVY,
        border_style=ORANGE,
        header_style=INFO_BOLD,
        row_styles=["", "on #222222"],
    )
    table.add_column("STAGE", width=50)
    for title in ("AVG", "MIN", "MAX"):
        table.add_column(title, justify="right", width=11)
    for row in rows:
        table.add_row(row.name, fmt_duration(row.avg), fmt_duration(row.min), fmt_duration(row.max))
    return table


class SortColumn(str, Enum):
    NAME = "n"
    STATUS = "s"
    DURATION = "d"
    NONE = ""


COLUMNS = [("Name", 50), ("Status", 12), ("Duration", 10), ("ID", 10)]


def sort_rows(
    rows: Iterable[Row],
    column: SortColumn = SortColumn.NONE,
    ascending: bool = False,
    text_filter: str = "",
) -> List[Row]:
    """
    Order and filter jobs or stages for display.

    With no sort column rows are ordered by start time, newest first (or
    oldest first when ``ascending``). The filter is a case-insensitive
    substring match on name or status.
    """
    keys = {
        SortColumn.NAME: lambda r: r.name,
        SortColumn.STATUS: lambda r: r.status.value,
        SortColumn.DURATION: lambda r: r.duration_millis,
        SortColumn.NONE: lambda r: r.start_time or _EPOCH,
    }
    ordered = sorted(rows, key=keys[column], reverse=not ascending)

    needle = text_filter.lower()
    if needle:
        ordered = [r for r in ordered if needle in r.name.lower() or needle in r.status.value.lower()]
    return ordered


def listing_table(
    rows: Sequence[Row],
    title: str,
    column: SortColumn = SortColumn.NONE,
    ascending: bool = False,
) -> Table:
    """Name / Status / Duration / ID listing used by the stage browser."""
    table = Table(
        title=title,
        title_style=INFO_BOLD,
        box=box.SQUARE,
        border_style=ORANGE,
        header_style=INFO_BOLD,
    )
    sort_index = {SortColumn.NAME: 0, SortColumn.STATUS: 1, SortColumn.DURATION: 2}.get(column)
    for i, (name, width) in enumerate(COLUMNS):
        if i == sort_index:
            name += " ↓" if ascending else " ↑"
        table.add_column(name, width=width, justify="right" if i == 2 else "left")
    for row in rows:
        status_style = CYAN if row.status.is_failure else None
        table.add_row(row.name, row.status.value, fmt_duration(row.duration_millis), row.id, style=status_style)
    if not rows:
        table.caption = "(nothing to show)"
        table.caption_style = GRAY
    return table
