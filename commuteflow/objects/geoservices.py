import re
import logging
from dataclasses import dataclass, field
from typing import List, Optional

import requests

from commuteflow import cache
from commuteflow.intelligence.errors import CollaboratorError, LocationNotFound, RouteNotFound
from commuteflow.intelligence.geo import GeoPoint, validate_coordinate


logger = logging.getLogger(__name__)

COORDINATE_TEXT = re.compile(r'^\s*(-?\d+(?:\.\d+)?)\s*,\s*(-?\d+(?:\.\d+)?)\s*$')


@dataclass
class RouteGeometry:
    points: List[GeoPoint] = field(default_factory=list)
    distance_m: float = 0.0
    duration_s: float = 0.0

    def to_dict(self) -> dict:
        return {
            'points': [p.to_dict() for p in self.points],
            'distance_m': self.distance_m,
            'duration_s': self.duration_s,
        }


def parse_coordinates(text: str) -> Optional[GeoPoint]:
    """Accept "lat, lng" text as typed or prefilled from the browser's position."""
    match = COORDINATE_TEXT.match(text or '')
    if not match:
        return None
    return validate_coordinate(match.group(1), match.group(2))


class GeoServices:
    def __init__(self, nominatim_url: str, osrm_url: str, user_agent: str, timeout: float = 10):
        self.nominatim_url = nominatim_url
        self.osrm_url = osrm_url.rstrip('/')
        self.headers = {'User-Agent': user_agent, 'Accept': 'application/json'}
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> 'GeoServices':
        return cls(
            nominatim_url=config['NOMINATIM_URL'],
            osrm_url=config['OSRM_URL'],
            user_agent=config['GEO_USER_AGENT'],
            timeout=config['HTTP_TIMEOUT_SEC']
        )

    def _get_json(self, url: str, params: dict, service: str, coded_errors: bool = False):
        """
        GET and decode JSON. With coded_errors, a 4xx whose body carries a
        `code` field is returned to the caller instead of raised.
        """
        try:
            response = requests.get(url, params=params, headers=self.headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning("%s request failed: %s", service, e)
            raise CollaboratorError(f"{service} request failed: {e}") from e

        client_error = 400 <= response.status_code < 500
        if not response.ok and not (coded_errors and client_error):
            logger.warning("%s returned HTTP %s", service, response.status_code)
            raise CollaboratorError(f"{service} returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise CollaboratorError(f"{service} returned invalid JSON") from e

        if not response.ok and not (isinstance(data, dict) and data.get('code')):
            logger.warning("%s returned HTTP %s", service, response.status_code)
            raise CollaboratorError(f"{service} returned HTTP {response.status_code}")
        return data

    def _fetch_location(self, query: str) -> GeoPoint:
        params = {
            'format': 'json',
            'q': query,
            'limit': 1,
        }
        data = self._get_json(self.nominatim_url, params, 'Geocoder')
        if not data:
            raise LocationNotFound(query)
        return validate_coordinate(data[0]['lat'], data[0]['lon'])

    def geocode(self, query: str) -> GeoPoint:
        if not query or not query.strip():
            raise LocationNotFound(query or '')

        point = parse_coordinates(query)
        if point is not None:
            return point

        return cache.get_geocode(query, lambda: self._fetch_location(query))

    def _fetch_route(self, source: GeoPoint, destination: GeoPoint) -> RouteGeometry:
        url = f"{self.osrm_url}/{source.lng},{source.lat};{destination.lng},{destination.lat}"
        params = {
            'overview': 'full',
            'geometries': 'geojson',
        }
        data = self._get_json(url, params, 'Router', coded_errors=True)

        routes = data.get('routes') or []
        if data.get('code') != 'Ok' or not routes:
            reason = data.get('message') or data.get('code')
            raise RouteNotFound(f"No route between {source.to_dict()} and {destination.to_dict()}: {reason}")

        best = routes[0]
        coordinates = best.get('geometry', {}).get('coordinates', [])
        # GeoJSON order is [lng, lat]
        points = [validate_coordinate(lat, lng) for lng, lat in coordinates]
        if not points:
            raise RouteNotFound("Router returned an empty geometry")

        return RouteGeometry(
            points=points,
            distance_m=float(best.get('distance', 0.0)),
            duration_s=float(best.get('duration', 0.0))
        )

    def route(self, source: GeoPoint, destination: GeoPoint) -> RouteGeometry:
        return cache.get_route(source, destination, lambda: self._fetch_route(source, destination))
