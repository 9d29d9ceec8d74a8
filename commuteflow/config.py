import os
import logging
import secrets

from commuteflow.intelligence.engine import PROFILES
from commuteflow.intelligence.trajectory import ARRIVAL_STRATEGIES, BY_INDEX


logger = logging.getLogger(__name__)

DEFAULT_DATABASE_URL = 'sqlite:///commuteflow.db'


def get_database_url():
    db_url = os.environ.get("DATABASE_URL")
    if not db_url:
        return DEFAULT_DATABASE_URL
    if db_url.startswith('postgres://'):
        db_url = db_url.replace('postgres://', 'postgresql://', 1)
    return db_url


def get_secret_key():
    secret = os.environ.get("FLASK_SECRET_KEY")
    if not secret:
        secret = secrets.token_hex(32)
        logger.warning("FLASK_SECRET_KEY not set. Using generated key for this session.")
    return secret


def _env_float(name, default):
    raw = os.environ.get(name)
    if raw is None or raw == '':
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


class Config:
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')

    SQLALCHEMY_DATABASE_URI = get_database_url()
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_recycle": 300,
        "pool_pre_ping": True,
    }

    # JSON API, no browser forms to protect
    WTF_CSRF_ENABLED = False

    SOCKETIO_ASYNC_MODE = os.environ.get('SOCKETIO_ASYNC_MODE', 'threading')

    COMMUTEFLOW_PROFILE = os.environ.get('COMMUTEFLOW_PROFILE', 'commute')
    COMMUTEFLOW_SPEED_KMH = _env_float('COMMUTEFLOW_SPEED_KMH', 50.0)
    COMMUTEFLOW_MAX_ROUTE_POINTS = int(_env_float('COMMUTEFLOW_MAX_ROUTE_POINTS', 200))
    COMMUTEFLOW_ARRIVAL_STRATEGY = os.environ.get('COMMUTEFLOW_ARRIVAL_STRATEGY', BY_INDEX)

    NOMINATIM_URL = os.environ.get('NOMINATIM_URL', 'https://nominatim.openstreetmap.org/search')
    OSRM_URL = os.environ.get('OSRM_URL', 'https://router.project-osrm.org/route/v1/driving')
    GEO_USER_AGENT = os.environ.get('GEO_USER_AGENT', 'commuteflow/0.1 (route sharing)')
    HTTP_TIMEOUT_SEC = _env_float('HTTP_TIMEOUT_SEC', 10.0)


def validate_config(settings) -> None:
    profile = settings.get('COMMUTEFLOW_PROFILE')
    if profile not in PROFILES:
        raise ValueError(f"Unknown COMMUTEFLOW_PROFILE {profile!r}, expected one of {sorted(PROFILES)}")
    strategy = settings.get('COMMUTEFLOW_ARRIVAL_STRATEGY')
    if strategy not in ARRIVAL_STRATEGIES:
        raise ValueError(f"Unknown COMMUTEFLOW_ARRIVAL_STRATEGY {strategy!r}")
    if settings.get('COMMUTEFLOW_SPEED_KMH', 0) <= 0:
        raise ValueError("COMMUTEFLOW_SPEED_KMH must be positive")
