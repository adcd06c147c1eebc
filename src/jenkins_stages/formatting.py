# formatting.py
from __future__ import annotations

from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence, Tuple, Union

Number = Union[int, float]


def fmt_duration(millis: Number) -> str:
    """
    Format a duration given in milliseconds as ``MM:SS.mmm``.

    Fractional milliseconds are rounded half-up. Minutes are not wrapped into
    hours, so 75 minutes prints as ``75:30.000``. A negative duration keeps
    its sign in front: ``-00:01.500``.
    """
    total = int(Decimal(str(millis)).quantize(Decimal(1), rounding=ROUND_HALF_UP))
    sign = "-" if total < 0 else ""
    minutes, rest = divmod(abs(total), 60_000)
    seconds, ms = divmod(rest, 1000)
    return f"{sign}{minutes:02d}:{seconds:02d}.{ms:03d}"


def fmt_timedelta(delta: timedelta) -> str:
    return fmt_duration(delta / timedelta(milliseconds=1))


def avg(values: Iterable[Number]) -> float:
    """Arithmetic mean; 0 for an empty sequence."""
    values = list(values)
    if not values:
        return 0.0
    return sum(values) / len(values)


def duration_stats(values: Sequence[Number]) -> Tuple[float, Number, Number]:
    """Return (avg, min, max) of a list of durations, all zero when empty."""
    if not values:
        return 0.0, 0, 0
    return avg(values), min(values), max(values)
