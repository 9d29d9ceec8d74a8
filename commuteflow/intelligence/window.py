import math
from typing import Iterable, List

from .errors import EmptyQuery
from .geo import TimestampedPoint


MINUTE_MS = 60 * 1000


def in_window(ts: int, reference: int, window_ms: int) -> bool:
    # two-sided: early arrivals count as much as late ones
    return abs(ts - reference) <= window_ms


def check_window_ms(window_ms) -> None:
    if window_ms is None or not math.isfinite(window_ms) or window_ms < 0:
        raise EmptyQuery(f"window must be a number >= 0 ms, got {window_ms}")


def filter_window(points: Iterable[TimestampedPoint], reference: int, window_ms: int) -> List[TimestampedPoint]:
    check_window_ms(window_ms)
    return [p for p in points if in_window(p.timestamp, reference, window_ms)]


def minutes_to_ms(minutes: float) -> int:
    if minutes is None or not math.isfinite(minutes):
        raise EmptyQuery(f"window must be a finite number of minutes, got {minutes}")
    return int(round(minutes * MINUTE_MS))
