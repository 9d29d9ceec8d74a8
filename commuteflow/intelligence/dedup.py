"""
Presence Deduplication
Answers "how many distinct users pass near this point around this time"
- Query validation before any index lookup
- Radius lookup through the proximity grid
- Two-sided time window filter
- Fold by user identity, never by point identity
"""

import math
import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, Iterable, Optional, Set

from .errors import EmptyQuery
from .geo import GeoPoint, TimestampedPoint, validate_coordinate
from .grid import ProximityIndex
from .window import check_window_ms, filter_window


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Query:
    point: GeoPoint
    time: int
    radius_m: float
    window_ms: int

    @classmethod
    def build(cls, lat, lng, time: int, radius_m: float, window_ms: int) -> 'Query':
        point = validate_coordinate(lat, lng)
        if radius_m is None or not math.isfinite(radius_m) or radius_m <= 0:
            raise EmptyQuery(f"radius must be a positive number, got {radius_m}")
        check_window_ms(window_ms)
        return cls(point=point, time=int(time), radius_m=float(radius_m), window_ms=int(window_ms))


@dataclass
class PresenceResult:
    count: int = 0
    users: Set[str] = field(default_factory=set)
    first_seen: Dict[str, int] = field(default_factory=dict)

    @property
    def no_match(self) -> bool:
        return self.count == 0

    def to_dict(self) -> dict:
        return {
            'count': self.count,
            'users': sorted(self.users),
            'first_seen': {u: self.first_seen[u] for u in sorted(self.first_seen)},
        }


class PresenceAggregator:
    def __init__(self):
        self._stats_lock = Lock()
        self._stats = {
            'queries': 0,
            'no_match': 0,
            'points_scanned': 0
        }

    def count_distinct_users(self, points: Iterable[TimestampedPoint],
                             exclude_self: Optional[str] = None) -> PresenceResult:
        first_seen: Dict[str, int] = {}

        for point in points:
            if exclude_self is not None and point.user_id == exclude_self:
                continue
            seen = first_seen.get(point.user_id)
            if seen is None or point.timestamp < seen:
                first_seen[point.user_id] = point.timestamp

        users = set(first_seen)
        return PresenceResult(count=len(users), users=users, first_seen=first_seen)

    def check(self, index: ProximityIndex, query: Query,
              exclude_self: Optional[str] = None) -> PresenceResult:
        nearby = index.query(query.point, query.radius_m)
        in_time = filter_window(nearby, query.time, query.window_ms)
        result = self.count_distinct_users(in_time, exclude_self)

        with self._stats_lock:
            self._stats['queries'] += 1
            self._stats['points_scanned'] += len(nearby)
            if result.no_match:
                self._stats['no_match'] += 1

        logger.info(
            "Presence check at (%.5f, %.5f) t=%d r=%.0fm w=%dms: %d users",
            query.point.lat, query.point.lng, query.time, query.radius_m, query.window_ms, result.count
        )
        return result

    def get_stats(self) -> Dict:
        with self._stats_lock:
            return dict(self._stats)
