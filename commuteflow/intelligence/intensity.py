"""
Route Intensity Scoring
Counts historical points near each route sample around its estimated arrival
time and maps the count onto a bounded [0, 1] scale.
"""

import math
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .errors import EmptyQuery
from .geo import GeoPoint
from .grid import ProximityIndex
from .trajectory import BY_INDEX, estimate_arrival_times
from .window import filter_window, minutes_to_ms


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IntensitySample:
    point: GeoPoint
    estimated_time: int
    raw_count: int
    normalized_intensity: float

    def to_dict(self) -> dict:
        return {
            'lat': self.point.lat,
            'lng': self.point.lng,
            'estimated_time': self.estimated_time,
            'raw_count': self.raw_count,
            'intensity': self.normalized_intensity,
        }


def normalize_count(raw_count: int, saturation: int) -> float:
    if raw_count <= 0:
        return 0.0
    return min(raw_count / saturation, 1.0)


class IntensityScorer:
    SEARCH_RADIUS_M = 500
    WINDOW_MINUTES = 30
    SATURATION_COUNT = 10
    DEFAULT_SPEED_KMH = 50

    def __init__(self, index: ProximityIndex, radius_m: float = SEARCH_RADIUS_M,
                 window_minutes: float = WINDOW_MINUTES, saturation: int = SATURATION_COUNT,
                 arrival_strategy: str = BY_INDEX):
        if radius_m is None or not math.isfinite(radius_m) or radius_m <= 0:
            raise EmptyQuery(f"radius must be a positive number, got {radius_m}")
        if window_minutes is None or not math.isfinite(window_minutes) or window_minutes < 0:
            raise EmptyQuery(f"window must be >= 0, got {window_minutes}")
        if saturation <= 0:
            raise ValueError("saturation must be positive")

        self.index = index
        self.radius_m = radius_m
        self.window_ms = minutes_to_ms(window_minutes)
        self.saturation = saturation
        self.arrival_strategy = arrival_strategy

    def score(self, route_points: Sequence[GeoPoint], departure_time: int,
              speed_kmh: float = DEFAULT_SPEED_KMH,
              exclude_user: Optional[str] = None) -> List[IntensitySample]:
        times = estimate_arrival_times(route_points, departure_time, speed_kmh, self.arrival_strategy)

        samples = []
        for point, eta in zip(route_points, times):
            nearby = self.index.query(point, self.radius_m)
            in_time = filter_window(nearby, eta, self.window_ms)
            if exclude_user is not None:
                in_time = [p for p in in_time if p.user_id != exclude_user]

            raw_count = len(in_time)
            samples.append(IntensitySample(
                point=point,
                estimated_time=eta,
                raw_count=raw_count,
                normalized_intensity=normalize_count(raw_count, self.saturation)
            ))

        logger.debug(
            "Scored %d route points, %d with nearby traffic",
            len(samples), sum(1 for s in samples if s.raw_count > 0)
        )
        return samples
