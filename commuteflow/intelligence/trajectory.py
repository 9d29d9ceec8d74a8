"""
Route Trajectory Helpers
Turns a router geometry into the ordered, timestamped samples the engine scores
- Order-preserving thinning of long geometries
- Arrival time estimation along the route
"""

import math
from typing import List, Sequence

from .errors import EmptyQuery
from .geo import GeoPoint, haversine_m


BY_INDEX = 'by_index'
BY_DISTANCE = 'by_distance'

ARRIVAL_STRATEGIES = (BY_INDEX, BY_DISTANCE)


def sample_route(waypoints: Sequence[GeoPoint], max_points: int) -> List[GeoPoint]:
    n = len(waypoints)
    if max_points <= 0 or n <= max_points:
        return list(waypoints)
    if max_points == 1:
        return [waypoints[0]]

    stride = (n - 1) / (max_points - 1)
    indices = sorted({int(round(i * stride)) for i in range(max_points)})
    return [waypoints[i] for i in indices]


def cumulative_distances_m(waypoints: Sequence[GeoPoint]) -> List[float]:
    distances = [0.0] * len(waypoints)
    for i in range(1, len(waypoints)):
        a = waypoints[i - 1]
        b = waypoints[i]
        distances[i] = distances[i - 1] + haversine_m(a.lat, a.lng, b.lat, b.lng)
    return distances


def estimate_arrival_times(waypoints: Sequence[GeoPoint], departure_time: int,
                           speed_kmh: float = 50, strategy: str = BY_INDEX) -> List[int]:
    """
    Estimated arrival time (epoch ms) for each waypoint.

    by_index spreads n * 3600 / speed_kmh seconds of trip evenly over the
    points by position in the list, ignoring the spacing between them.
    by_distance spreads the same total duration in proportion to the
    distance travelled along the route.
    """
    if speed_kmh is None or not math.isfinite(speed_kmh) or speed_kmh <= 0:
        raise EmptyQuery(f"speed must be positive, got {speed_kmh}")
    if strategy not in ARRIVAL_STRATEGIES:
        raise ValueError(f"Unknown arrival strategy: {strategy}")

    n = len(waypoints)
    if n == 0:
        return []

    total_seconds = n * 3600 / speed_kmh

    if strategy == BY_INDEX:
        step_ms = total_seconds / n * 1000
        return [int(departure_time + i * step_ms) for i in range(n)]

    distances = cumulative_distances_m(waypoints)
    length = distances[-1]
    if length <= 0:
        return [int(departure_time)] * n
    return [int(departure_time + (d / length) * total_seconds * 1000) for d in distances]
