"""
Proximity Engine
Single service object owning the in-memory index and the point store
- Route submission: sample -> estimate arrival -> score -> persist -> index
- Wholesale route replacement and deletion
- Ad-hoc presence checks
- Synchronous point-inserted / route-removed subscriptions
"""

import math
import logging
from dataclasses import dataclass, field
from threading import Lock
from typing import Callable, Dict, List, Optional, Sequence

from .dedup import PresenceAggregator, PresenceResult, Query
from .errors import EmptyQuery, InvalidRoute, RouteNotFound, RouteOwnershipError
from .geo import GeoPoint, TimestampedPoint, make_point, validate_coordinate
from .grid import ProximityIndex
from .heatmap import HeatmapGrid, HeatmapGridBuilder
from .intensity import IntensitySample, IntensityScorer
from .trajectory import BY_INDEX, sample_route
from .window import minutes_to_ms


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SearchProfile:
    name: str
    radius_m: float
    window_minutes: float
    saturation: int = 10
    threshold: float = 0.4
    scale: str = 'five_band'


PROFILES: Dict[str, SearchProfile] = {
    'commute': SearchProfile('commute', radius_m=500, window_minutes=30, scale='five_band'),
    'street': SearchProfile('street', radius_m=50, window_minutes=30, scale='traffic'),
}


@dataclass
class Route:
    id: str
    user_id: str
    departure_time: int
    waypoints: List[GeoPoint] = field(default_factory=list)
    source_label: str = ''
    destination_label: str = ''

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'username': self.user_id,
            'departure_time': self.departure_time,
            'points': [p.to_dict() for p in self.waypoints],
            'source': self.source_label,
            'destination': self.destination_label,
        }


@dataclass
class RouteSubmission:
    route: Route
    points: List[TimestampedPoint]
    samples: List[IntensitySample]
    heatmap: HeatmapGrid

    def to_dict(self) -> dict:
        return {
            'route_id': self.route.id,
            'points_stored': len(self.points),
            'samples': [s.to_dict() for s in self.samples],
            'heatmap': self.heatmap.to_dict(),
        }


class ProximityEngine:
    DEFAULT_SPEED_KMH = 50
    MAX_ROUTE_POINTS = 200

    def __init__(self, store, profile: SearchProfile = PROFILES['commute'],
                 speed_kmh: float = DEFAULT_SPEED_KMH, max_route_points: int = MAX_ROUTE_POINTS,
                 arrival_strategy: str = BY_INDEX, cell_size_m: Optional[float] = None):
        self.store = store
        self.profile = profile
        self.speed_kmh = speed_kmh
        self.max_route_points = max_route_points

        self.index = ProximityIndex(cell_size_m or profile.radius_m)
        self.aggregator = PresenceAggregator()
        self.scorer = IntensityScorer(
            self.index,
            radius_m=profile.radius_m,
            window_minutes=profile.window_minutes,
            saturation=profile.saturation,
            arrival_strategy=arrival_strategy
        )
        self.heatmap_builder = HeatmapGridBuilder.for_scale(profile.scale, profile.threshold)

        self._write_lock = Lock()
        self._callbacks: Dict[str, List[Callable]] = {
            'on_point_inserted': [],
            'on_route_removed': []
        }
        self._stats = {
            'routes_submitted': 0,
            'routes_replaced': 0,
            'routes_removed': 0
        }

    def register_callback(self, event: str, callback: Callable):
        if event not in self._callbacks:
            raise ValueError(f"Unknown event: {event}")
        self._callbacks[event].append(callback)

    def on_point_inserted(self, callback: Callable[[TimestampedPoint], None]):
        self.register_callback('on_point_inserted', callback)

    def on_route_removed(self, callback: Callable[[str], None]):
        self.register_callback('on_route_removed', callback)

    def _emit(self, event: str, data):
        for callback in self._callbacks.get(event, []):
            try:
                callback(data)
            except Exception:
                logger.exception("Callback error for %s", event)

    def load(self) -> int:
        points = self.store.load_all()
        self.index.clear()
        count = self.index.insert_many(points)
        logger.info("Loaded %d points into proximity index (profile=%s)", count, self.profile.name)
        return count

    def _speed(self, speed_kmh: Optional[float]) -> float:
        speed = self.speed_kmh if speed_kmh is None else speed_kmh
        if not math.isfinite(speed) or speed <= 0:
            raise EmptyQuery(f"speed must be a positive number, got {speed}")
        return speed

    def _validate_route(self, route: Route) -> List[GeoPoint]:
        if not route.id:
            raise InvalidRoute("Route id is required")
        if not route.user_id or not route.user_id.strip():
            raise InvalidRoute("Route username is required")
        if not route.waypoints:
            raise InvalidRoute("Route has no points")
        return [validate_coordinate(p.lat, p.lng) for p in route.waypoints]

    def _check_owner(self, route_id: str, user_id: Optional[str]) -> Route:
        existing = self.store.get_route(route_id)
        if existing is None:
            raise RouteNotFound(f"Route {route_id} not found")
        if user_id is not None and existing.user_id != user_id:
            raise RouteOwnershipError(f"Route {route_id} belongs to another user")
        return existing

    def _prepare(self, route: Route, speed_kmh: Optional[float]):
        waypoints = self._validate_route(route)
        speed = self._speed(speed_kmh)
        sampled = sample_route(waypoints, self.max_route_points)

        # scored before insertion so a route never counts itself
        samples = self.scorer.score(sampled, route.departure_time, speed, exclude_user=route.user_id)
        points = [
            make_point(s.point.lat, s.point.lng, s.estimated_time, route.user_id, route.id)
            for s in samples
        ]
        return samples, points

    def _publish(self, route: Route, points: List[TimestampedPoint],
                 samples: List[IntensitySample]) -> RouteSubmission:
        for point in points:
            self._emit('on_point_inserted', point)

        heatmap = self.heatmap_builder.build(samples)
        logger.info(
            "Route %s by %s: %d points stored, %d heat points, %d flagged",
            route.id, route.user_id, len(points), len(heatmap.points), len(heatmap.flagged)
        )
        return RouteSubmission(route=route, points=points, samples=samples, heatmap=heatmap)

    def submit_route(self, route: Route, speed_kmh: Optional[float] = None) -> RouteSubmission:
        with self._write_lock:
            samples, points = self._prepare(route, speed_kmh)
            self.store.save_route(route, points)
            self.index.insert_many(points)
            self._stats['routes_submitted'] += 1
        return self._publish(route, points, samples)

    def replace_route(self, route: Route, speed_kmh: Optional[float] = None) -> RouteSubmission:
        """
        Replace a stored route wholesale.

        Everything that can reject the new route runs before anything is
        removed; the store swaps old for new in one commit and the index is
        only touched once that commit succeeded.
        """
        with self._write_lock:
            self._check_owner(route.id, route.user_id)
            samples, points = self._prepare(route, speed_kmh)
            self.store.replace_route(route, points)
            self.index.replace_route(route.id, points)
            self._stats['routes_replaced'] += 1
        return self._publish(route, points, samples)

    def delete_route(self, route_id: str, user_id: Optional[str] = None) -> int:
        with self._write_lock:
            self._check_owner(route_id, user_id)
            self.store.delete_route(route_id)
            removed = self.index.remove_route(route_id)
            self._stats['routes_removed'] += 1

        self._emit('on_route_removed', route_id)
        logger.info("Route %s removed (%d points)", route_id, removed)
        return removed

    def build_query(self, lat, lng, time: int, radius_m: Optional[float] = None,
                    window_minutes: Optional[float] = None) -> Query:
        radius = self.profile.radius_m if radius_m is None else radius_m
        window = self.profile.window_minutes if window_minutes is None else window_minutes
        return Query.build(lat, lng, time, radius, minutes_to_ms(window))

    def check_point(self, query: Query, exclude_self: Optional[str] = None) -> PresenceResult:
        return self.aggregator.check(self.index, query, exclude_self)

    def score_route(self, waypoints: Sequence[GeoPoint], departure_time: int,
                    speed_kmh: Optional[float] = None,
                    exclude_user: Optional[str] = None) -> List[IntensitySample]:
        points = [validate_coordinate(p.lat, p.lng) for p in waypoints]
        sampled = sample_route(points, self.max_route_points)
        return self.scorer.score(sampled, departure_time, self._speed(speed_kmh), exclude_user)

    def get_stats(self) -> Dict:
        with self._write_lock:
            routes = dict(self._stats)
        return {
            'profile': self.profile.name,
            'radius_m': self.profile.radius_m,
            'window_minutes': self.profile.window_minutes,
            'index': self.index.get_stats(),
            'presence': self.aggregator.get_stats(),
            'routes': routes,
        }
