import pytest

from commuteflow import cache
from commuteflow.intelligence.errors import StoreUnavailable
from commuteflow.intelligence.geo import TimestampedPoint, haversine_m
from commuteflow.main import create_app


T0 = 1_700_000_000_000
MINUTE = 60 * 1000


class MemoryPointStore:
    def __init__(self):
        self.routes = {}
        self.points = []
        self.offline = False

    def _check(self):
        if self.offline:
            raise StoreUnavailable("point store offline")

    def insert(self, point):
        self.insert_many([point])

    def insert_many(self, points):
        self._check()
        self.points.extend(points)

    def save_route(self, route, points):
        self._check()
        self.routes[route.id] = route
        self.points.extend(points)

    def replace_route(self, route, points):
        self._check()
        self.routes[route.id] = route
        self.points = [p for p in self.points if p.route_id != route.id] + list(points)

    def get_route(self, route_id):
        self._check()
        return self.routes.get(route_id)

    def list_routes(self):
        self._check()
        return list(self.routes.values())

    def delete_route(self, route_id):
        self._check()
        existed = self.routes.pop(route_id, None) is not None
        self.points = [p for p in self.points if p.route_id != route_id]
        return existed

    def load_all(self):
        self._check()
        return list(self.points)


def brute_force(points, center, radius_m):
    return {p for p in points if haversine_m(center.lat, center.lng, p.lat, p.lng) <= radius_m}


def point(lat, lng, ts=T0, user='alice', route_id=None):
    return TimestampedPoint(lat=lat, lng=lng, timestamp=ts, user_id=user, route_id=route_id)


@pytest.fixture(autouse=True)
def clear_cache():
    cache.invalidate_cache()
    yield
    cache.invalidate_cache()


@pytest.fixture
def memory_store():
    return MemoryPointStore()


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'SQLALCHEMY_DATABASE_URI': 'sqlite://',
        'SQLALCHEMY_ENGINE_OPTIONS': {},
        'SOCKETIO_ASYNC_MODE': 'threading',
        'COMMUTEFLOW_PROFILE': 'commute',
        'COMMUTEFLOW_SPEED_KMH': 50.0,
        'COMMUTEFLOW_ARRIVAL_STRATEGY': 'by_index',
    })
    yield app
    with app.app_context():
        from commuteflow.models import db
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def services(app):
    return app.extensions['commuteflow']
