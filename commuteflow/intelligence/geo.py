"""
Geo primitives shared by the proximity engine
- GeoPoint / TimestampedPoint value types
- Haversine distance on a 6,371 km sphere
- Coordinate validation used at every ingestion boundary
"""

import math
from dataclasses import dataclass
from typing import Optional

from .errors import InvalidCoordinate


EARTH_RADIUS_M = 6371000

LAT_MIN, LAT_MAX = -90.0, 90.0
LNG_MIN, LNG_MAX = -180.0, 180.0


@dataclass(frozen=True)
class GeoPoint:
    lat: float
    lng: float

    def to_dict(self) -> dict:
        return {'lat': self.lat, 'lng': self.lng}


@dataclass(frozen=True)
class TimestampedPoint:
    lat: float
    lng: float
    timestamp: int
    user_id: str
    route_id: Optional[str] = None

    @property
    def point(self) -> GeoPoint:
        return GeoPoint(self.lat, self.lng)

    def to_dict(self) -> dict:
        return {
            'lat': self.lat,
            'lng': self.lng,
            'timestamp': self.timestamp,
            'userId': self.user_id,
        }


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in metres, symmetric and zero for identical points."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    half_dphi = math.radians(lat2 - lat1) / 2
    half_dlambda = math.radians(lng2 - lng1) / 2

    h = math.sin(half_dphi) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(half_dlambda) ** 2
    # float error can push h just past 1 for antipodal pairs
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(min(h, 1.0)))


def distance_m(a: GeoPoint, b: GeoPoint) -> float:
    return haversine_m(a.lat, a.lng, b.lat, b.lng)


def validate_coordinate(lat, lng) -> GeoPoint:
    """Coerce lat/lng to floats and reject anything outside WGS-84 ranges."""
    try:
        lat_f = float(lat)
        lng_f = float(lng)
    except (TypeError, ValueError):
        raise InvalidCoordinate(lat, lng, "not a number")

    if not (math.isfinite(lat_f) and math.isfinite(lng_f)):
        raise InvalidCoordinate(lat, lng, "not finite")
    if not LAT_MIN <= lat_f <= LAT_MAX:
        raise InvalidCoordinate(lat, lng, "latitude out of range")
    if not LNG_MIN <= lng_f <= LNG_MAX:
        raise InvalidCoordinate(lat, lng, "longitude out of range")

    return GeoPoint(lat_f, lng_f)


def make_point(lat, lng, timestamp, user_id, route_id: Optional[str] = None) -> TimestampedPoint:
    geo = validate_coordinate(lat, lng)
    if not user_id or not str(user_id).strip():
        raise ValueError("user_id must be a non-empty string")
    return TimestampedPoint(
        lat=geo.lat,
        lng=geo.lng,
        timestamp=int(timestamp),
        user_id=str(user_id).strip(),
        route_id=route_id
    )
