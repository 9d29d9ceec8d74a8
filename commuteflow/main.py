import uuid
import logging
from dataclasses import dataclass

from flask import Blueprint, Flask, current_app, jsonify, request
from flask_socketio import SocketIO, emit

from commuteflow.config import Config, get_secret_key, validate_config
from commuteflow.forms import (
    CheckPointForm, GeocodeForm, HeatmapPreviewForm, RoutePreviewForm, ShareRouteForm, parse_points
)
from commuteflow.intelligence.engine import PROFILES, ProximityEngine, Route
from commuteflow.intelligence.errors import (
    CollaboratorError, EmptyQuery, InvalidCoordinate, InvalidRoute, LocationNotFound,
    RouteNotFound, RouteOwnershipError, StoreUnavailable
)
from commuteflow.models import db
from commuteflow.objects.geoservices import GeoServices
from commuteflow.store import SqlPointStore


logger = logging.getLogger(__name__)

socketio = SocketIO()
api = Blueprint('api', __name__, url_prefix='/api')

NO_MATCH_MESSAGE = 'No users found passing through this point at the selected time'

ERROR_STATUS = (
    (InvalidCoordinate, 400),
    (EmptyQuery, 400),
    (InvalidRoute, 400),
    (LocationNotFound, 404),
    (RouteNotFound, 404),
    (RouteOwnershipError, 403),
    (StoreUnavailable, 503),
    (CollaboratorError, 502),
)


@dataclass
class AppContext:
    engine: ProximityEngine
    store: SqlPointStore
    geo: GeoServices


def services() -> AppContext:
    return current_app.extensions['commuteflow']


def create_app(overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    logging.basicConfig(
        level=app.config['LOG_LEVEL'],
        format='%(asctime)s %(levelname)s %(name)s: %(message)s'
    )
    validate_config(app.config)
    app.secret_key = app.config.get('SECRET_KEY') or get_secret_key()

    db.init_app(app)
    socketio.init_app(app, cors_allowed_origins="*", async_mode=app.config['SOCKETIO_ASYNC_MODE'])

    store = SqlPointStore(db)
    engine = ProximityEngine(
        store,
        profile=PROFILES[app.config['COMMUTEFLOW_PROFILE']],
        speed_kmh=app.config['COMMUTEFLOW_SPEED_KMH'],
        max_route_points=app.config['COMMUTEFLOW_MAX_ROUTE_POINTS'],
        arrival_strategy=app.config['COMMUTEFLOW_ARRIVAL_STRATEGY']
    )
    engine.on_point_inserted(lambda point: socketio.emit('point_inserted', point.to_dict()))
    engine.on_route_removed(lambda route_id: socketio.emit('route_removed', {'route_id': route_id}))

    app.extensions['commuteflow'] = AppContext(
        engine=engine,
        store=store,
        geo=GeoServices.from_config(app.config)
    )

    app.register_blueprint(api)
    for exc_type, status in ERROR_STATUS:
        app.register_error_handler(exc_type, _error_handler(status))

    with app.app_context():
        db.create_all()
        engine.load()

    return app


def _error_handler(status):
    def handle(error):
        if status >= 500:
            logger.error("Request failed: %s", error)
        return jsonify(status="error", message=str(error)), status
    return handle


def _form_error(form):
    return jsonify(status="error", message="Invalid request", errors=form.errors), 400


def _resolve_location(text):
    return services().geo.geocode(text)


def _build_route(route_id, form, payload):
    raw_points = payload.get('points')
    if raw_points is not None:
        waypoints = parse_points(raw_points)
    elif form.source.data and form.destination.data:
        source = _resolve_location(form.source.data)
        destination = _resolve_location(form.destination.data)
        waypoints = services().geo.route(source, destination).points
    else:
        raise InvalidRoute("Provide route points or both source and destination")

    return Route(
        id=route_id,
        user_id=form.username.data.strip(),
        departure_time=form.departure_time.data,
        waypoints=waypoints,
        source_label=form.source.data or '',
        destination_label=form.destination.data or ''
    )


@api.route('/geocode', methods=['POST'])
def geocode():
    form = GeocodeForm()
    if not form.validate():
        return _form_error(form)
    point = _resolve_location(form.query.data)
    return jsonify(status="success", lat=point.lat, lng=point.lng)


@api.route('/route/preview', methods=['POST'])
def route_preview():
    form = RoutePreviewForm()
    if not form.validate():
        return _form_error(form)
    source = _resolve_location(form.source.data)
    destination = _resolve_location(form.destination.data)
    geometry = services().geo.route(source, destination)
    return jsonify(status="success", route=geometry.to_dict())


@api.route('/routes', methods=['GET'])
def list_routes():
    routes = services().store.list_routes()
    return jsonify(status="success", routes=[r.to_dict() for r in routes])


@api.route('/routes/<route_id>', methods=['GET'])
def get_route(route_id):
    route = services().store.get_route(route_id)
    if route is None:
        raise RouteNotFound(f"Route {route_id} not found")
    return jsonify(status="success", route=route.to_dict())


@api.route('/routes', methods=['POST'])
def share_route():
    form = ShareRouteForm()
    if not form.validate():
        return _form_error(form)

    payload = request.get_json(silent=True) or {}
    route = _build_route(str(uuid.uuid4()), form, payload)
    submission = services().engine.submit_route(route, form.speed_kmh.data)
    return jsonify(status="success", **submission.to_dict()), 201


@api.route('/routes/<route_id>', methods=['PUT'])
def replace_route(route_id):
    form = ShareRouteForm()
    if not form.validate():
        return _form_error(form)

    payload = request.get_json(silent=True) or {}
    route = _build_route(route_id, form, payload)
    submission = services().engine.replace_route(route, form.speed_kmh.data)
    return jsonify(status="success", **submission.to_dict())


@api.route('/routes/<route_id>', methods=['DELETE'])
def delete_route(route_id):
    payload = request.get_json(silent=True) or {}
    username = (request.args.get('username') or payload.get('username') or '').strip()
    if not username:
        return jsonify(status="error", message="username is required"), 400

    removed = services().engine.delete_route(route_id, username)
    return jsonify(status="success", route_id=route_id, points_removed=removed)


@api.route('/check-point', methods=['POST'])
def check_point():
    form = CheckPointForm()
    if not form.validate():
        return _form_error(form)

    engine = services().engine
    query = engine.build_query(
        form.lat.data, form.lng.data, form.check_time.data,
        radius_m=form.radius_m.data,
        window_minutes=form.window_minutes.data
    )
    exclude_self = (form.username.data or '').strip() or None
    result = engine.check_point(query, exclude_self=exclude_self)

    body = dict(
        result.to_dict(),
        lat=query.point.lat,
        lng=query.point.lng,
        radius_m=query.radius_m,
        window_minutes=query.window_ms / 60000
    )
    if result.no_match:
        return jsonify(status="no_match", message=NO_MATCH_MESSAGE, **body)
    return jsonify(status="success", **body)


@api.route('/heatmap', methods=['POST'])
def heatmap_preview():
    form = HeatmapPreviewForm()
    if not form.validate():
        return _form_error(form)

    payload = request.get_json(silent=True) or {}
    waypoints = parse_points(payload.get('points'))
    engine = services().engine
    samples = engine.score_route(
        waypoints, form.departure_time.data, form.speed_kmh.data,
        exclude_user=(form.username.data or '').strip() or None
    )
    grid = engine.heatmap_builder.build(samples)
    return jsonify(status="success", samples=[s.to_dict() for s in samples], heatmap=grid.to_dict())


@api.route('/severity-scale', methods=['GET'])
def severity_scale():
    builder = services().engine.heatmap_builder
    return jsonify(
        status="success",
        threshold=builder.threshold,
        buckets=[b.to_dict() for b in builder.buckets]
    )


@api.route('/stats', methods=['GET'])
def stats():
    return jsonify(status="success", **services().engine.get_stats())


@socketio.on('connect')
def handle_connect():
    routes = services().store.list_routes()
    logger.debug("Socket connected, sending %d shared routes", len(routes))
    emit('shared_routes', [r.to_dict() for r in routes])
