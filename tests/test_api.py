import pytest

from commuteflow.intelligence.errors import CollaboratorError, LocationNotFound, StoreUnavailable
from commuteflow.intelligence.geo import GeoPoint
from commuteflow.main import NO_MATCH_MESSAGE
from commuteflow.objects.geoservices import RouteGeometry

from conftest import MINUTE, T0, MemoryPointStore


PLACES = {
    'home': GeoPoint(52.0, 13.0),
    'office': GeoPoint(52.0, 13.01),
}

ROUTE_POINTS = [{'lat': 52.0, 'lng': 13.0}, {'lat': 52.0, 'lng': 13.005}, {'lat': 52.0, 'lng': 13.01}]


class FakeGeo:
    def __init__(self):
        self.routed = []

    def geocode(self, query):
        if query == 'down':
            raise CollaboratorError("Geocoder returned HTTP 503")
        try:
            return PLACES[query.strip().lower()]
        except KeyError:
            raise LocationNotFound(query)

    def route(self, source, destination):
        self.routed.append((source, destination))
        return RouteGeometry(points=[source, destination], distance_m=686.0, duration_s=60.0)


@pytest.fixture
def geo(services):
    fake = FakeGeo()
    services.geo = fake
    return fake


def share(client, username, departure=T0, **extra):
    body = {'username': username, 'departure_time': departure, 'points': ROUTE_POINTS}
    body.update(extra)
    return client.post('/api/routes', json=body)


def test_share_route_with_points(client):
    response = share(client, 'alice')
    assert response.status_code == 201

    data = response.get_json()
    assert data['status'] == 'success'
    assert data['points_stored'] == 3
    assert [s['estimated_time'] for s in data['samples']] == [T0, T0 + 72_000, T0 + 144_000]
    assert data['heatmap'] == {'points': [], 'flagged': []}

    routes = client.get('/api/routes').get_json()['routes']
    assert [r['id'] for r in routes] == [data['route_id']]
    assert routes[0]['username'] == 'alice'


def test_share_route_by_place_names(client, geo):
    body = {'username': 'alice', 'departure_time': '2023-11-14T22:13:20Z',
            'source': 'Home', 'destination': 'Office'}
    response = client.post('/api/routes', json=body)

    assert response.status_code == 201
    assert geo.routed == [(PLACES['home'], PLACES['office'])]

    route_id = response.get_json()['route_id']
    route = client.get(f'/api/routes/{route_id}').get_json()['route']
    assert route['departure_time'] == T0
    assert route['source'] == 'Home'


def test_share_route_validation(client, geo):
    assert client.post('/api/routes', json={'departure_time': T0, 'points': ROUTE_POINTS}).status_code == 400
    assert client.post('/api/routes', json={'username': 'alice', 'points': ROUTE_POINTS}).status_code == 400
    assert client.post('/api/routes', json={'username': 'alice', 'departure_time': T0}).status_code == 400
    assert share(client, 'alice', departure='yesterday-ish').status_code == 400
    assert share(client, 'alice', speed_kmh=0).status_code == 400
    assert share(client, 'alice', points=[{'lat': 95, 'lng': 13}]).status_code == 400
    assert share(client, 'alice', points=[]).status_code == 400

    response = client.post('/api/routes', json={
        'username': 'alice', 'departure_time': T0, 'source': 'Nowhere', 'destination': 'Office'
    })
    assert response.status_code == 404

    response = client.post('/api/routes', json={
        'username': 'alice', 'departure_time': T0, 'source': 'down', 'destination': 'Office'
    })
    assert response.status_code == 502
    assert response.get_json()['status'] == 'error'


def test_check_point_counts_distinct_users(client):
    share(client, 'alice')
    share(client, 'bob', departure=T0 + 5 * MINUTE)
    share(client, 'carol', departure=T0 + 10 * MINUTE)

    response = client.post('/api/check-point', json={
        'lat': 52.0, 'lng': 13.0, 'check_time': T0 + 5 * MINUTE
    })
    data = response.get_json()
    assert response.status_code == 200
    assert data['status'] == 'success'
    assert data['count'] == 3
    assert data['users'] == ['alice', 'bob', 'carol']
    assert data['radius_m'] == 500
    assert data['window_minutes'] == 30


def test_check_point_no_match_is_not_an_error(client):
    share(client, 'alice')

    response = client.post('/api/check-point', json={'lat': 52.009, 'lng': 13.0, 'check_time': T0})
    data = response.get_json()
    assert response.status_code == 200
    assert data['status'] == 'no_match'
    assert data['message'] == NO_MATCH_MESSAGE
    assert data['count'] == 0


def test_check_point_excludes_asking_user(client):
    share(client, 'alice')
    response = client.post('/api/check-point', json={
        'lat': 52.0, 'lng': 13.0, 'check_time': T0, 'username': 'alice'
    })
    assert response.get_json()['status'] == 'no_match'


@pytest.mark.parametrize("body", [
    {'lat': 91, 'lng': 13.0, 'check_time': T0},
    {'lat': 52.0, 'check_time': T0},
    {'lat': 52.0, 'lng': 13.0},
    {'lat': 52.0, 'lng': 13.0, 'check_time': T0, 'radius_m': 0},
    {'lat': 52.0, 'lng': 13.0, 'check_time': T0, 'window_minutes': -1},
])
def test_check_point_rejects_bad_queries(client, body):
    response = client.post('/api/check-point', json=body)
    assert response.status_code == 400
    assert response.get_json()['status'] == 'error'


def test_check_point_accepts_zero_coordinates(client):
    response = client.post('/api/check-point', json={'lat': 0, 'lng': 0, 'check_time': T0})
    assert response.status_code == 200


def test_replace_route(client):
    route_id = share(client, 'alice').get_json()['route_id']

    response = client.put(f'/api/routes/{route_id}', json={
        'username': 'alice', 'departure_time': T0, 'points': [{'lat': 48.0, 'lng': 11.0}]
    })
    assert response.status_code == 200
    assert response.get_json()['points_stored'] == 1

    route = client.get(f'/api/routes/{route_id}').get_json()['route']
    assert route['points'] == [{'lat': 48.0, 'lng': 11.0}]

    response = client.put(f'/api/routes/{route_id}', json={
        'username': 'mallory', 'departure_time': T0, 'points': ROUTE_POINTS
    })
    assert response.status_code == 403

    response = client.put('/api/routes/missing', json={
        'username': 'alice', 'departure_time': T0, 'points': ROUTE_POINTS
    })
    assert response.status_code == 404


def test_delete_route(client):
    route_id = share(client, 'alice').get_json()['route_id']

    assert client.delete(f'/api/routes/{route_id}').status_code == 400
    assert client.delete(f'/api/routes/{route_id}?username=bob').status_code == 403

    response = client.delete(f'/api/routes/{route_id}?username=alice')
    assert response.status_code == 200
    assert response.get_json()['points_removed'] == 3

    assert client.get(f'/api/routes/{route_id}').status_code == 404
    assert client.get('/api/routes').get_json()['routes'] == []


def test_heatmap_preview_does_not_store(client):
    for i in range(5):
        share(client, f'user{i}')

    response = client.post('/api/heatmap', json={'departure_time': T0, 'points': ROUTE_POINTS[:1]})
    data = response.get_json()

    assert response.status_code == 200
    assert data['samples'][0]['raw_count'] == 10
    assert data['heatmap']['flagged'][0]['severity'] == 'very-high'
    assert client.get('/api/stats').get_json()['index']['points'] == 15

    assert client.post('/api/heatmap', json={'departure_time': T0}).status_code == 400


def test_geocode_and_route_preview(client, geo):
    response = client.post('/api/geocode', json={'query': 'Home'})
    assert response.get_json() == {'status': 'success', 'lat': 52.0, 'lng': 13.0}

    assert client.post('/api/geocode', json={'query': 'Atlantis'}).status_code == 404
    assert client.post('/api/geocode', json={}).status_code == 400

    response = client.post('/api/route/preview', json={'source': 'home', 'destination': 'office'})
    assert response.get_json()['route']['distance_m'] == 686.0


def test_severity_scale(client):
    data = client.get('/api/severity-scale').get_json()
    assert data['threshold'] == 0.4
    assert [b['name'] for b in data['buckets']] == ['very-low', 'low', 'moderate', 'high', 'very-high']


def test_store_outage_returns_503(client, services, monkeypatch):
    offline = MemoryPointStore()
    offline.offline = True
    monkeypatch.setattr(services.engine, 'store', offline)

    response = share(client, 'alice')
    assert response.status_code == 503
    assert services.engine.index.get_stats()['points'] == 0


def test_stats(client):
    share(client, 'alice')
    client.post('/api/check-point', json={'lat': 10.0, 'lng': 10.0, 'check_time': T0})

    data = client.get('/api/stats').get_json()
    assert data['profile'] == 'commute'
    assert data['routes']['routes_submitted'] == 1
    assert data['presence']['no_match'] == 1


def test_engine_reloads_points_from_store(app, client):
    share(client, 'alice')
    engine = app.extensions['commuteflow'].engine
    engine.index.clear()

    with app.app_context():
        assert engine.load() == 3
    response = client.post('/api/check-point', json={'lat': 52.0, 'lng': 13.0, 'check_time': T0})
    assert response.get_json()['users'] == ['alice']


@pytest.mark.parametrize("extra", [
    {'radius_m': float('nan')},
    {'radius_m': 5_000_000},
    {'window_minutes': float('nan')},
    {'window_minutes': 10 * 24 * 60},
])
def test_check_point_rejects_unbounded_parameters(client, extra):
    body = {'lat': 52.0, 'lng': 13.0, 'check_time': T0}
    body.update(extra)

    response = client.post('/api/check-point', json=body)
    assert response.status_code == 400
    assert response.get_json()['status'] == 'error'


def test_failed_replace_keeps_shared_route(client, services, monkeypatch):
    route_id = share(client, 'alice').get_json()['route_id']

    response = client.put(f'/api/routes/{route_id}', json={
        'username': 'alice', 'departure_time': 'not a time', 'points': [{'lat': 48.0, 'lng': 11.0}]
    })
    assert response.status_code == 400

    def offline(route, points):
        raise StoreUnavailable("point store offline")

    monkeypatch.setattr(services.store, 'replace_route', offline)
    response = client.put(f'/api/routes/{route_id}', json={
        'username': 'alice', 'departure_time': T0, 'points': [{'lat': 48.0, 'lng': 11.0}]
    })
    assert response.status_code == 503

    route = client.get(f'/api/routes/{route_id}').get_json()['route']
    assert len(route['points']) == 3
    data = client.post('/api/check-point', json={'lat': 52.0, 'lng': 13.0, 'check_time': T0}).get_json()
    assert data['users'] == ['alice']
