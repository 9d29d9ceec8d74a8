import time
from threading import Lock

_cache = {}
_lock = Lock()

CACHE_TTL = {
    'geocode': 24 * 3600,
    'route': 600,
}

def _get_cache_key(data_type, key):
    return f"{data_type}:{key}"

def get_cached(data_type, key):
    cache_key = _get_cache_key(data_type, key)
    with _lock:
        if cache_key in _cache:
            entry = _cache[cache_key]
            ttl = CACHE_TTL.get(data_type, 60)
            if time.time() - entry['timestamp'] < ttl:
                return entry['data']
            del _cache[cache_key]
    return None

def set_cached(data_type, key, data):
    cache_key = _get_cache_key(data_type, key)
    with _lock:
        _cache[cache_key] = {
            'data': data,
            'timestamp': time.time()
        }

def invalidate_cache(data_type=None):
    with _lock:
        if data_type:
            keys_to_delete = [k for k in _cache if k.startswith(f"{data_type}:")]
            for k in keys_to_delete:
                del _cache[k]
        else:
            _cache.clear()

def _get_or_fetch(data_type, key, fetch_func):
    cached = get_cached(data_type, key)
    if cached is not None:
        return cached
    data = fetch_func()
    set_cached(data_type, key, data)
    return data

def get_geocode(query, fetch_func):
    return _get_or_fetch('geocode', query.strip().lower(), fetch_func)

def get_route(source, destination, fetch_func):
    key = f"{source.lat:.5f},{source.lng:.5f};{destination.lat:.5f},{destination.lng:.5f}"
    return _get_or_fetch('route', key, fetch_func)
