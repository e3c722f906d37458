import json
import hashlib
import logging
from functools import wraps
from flask import request, jsonify, Response
import redis

logger = logging.getLogger(__name__)

# Use DB 1 for cache so it stays apart from anything else sharing the server
redis_client = None
redis_available = False


def init_cache(app):
    """Connect to Redis using REDIS_URL; fall back to no-cache mode when unreachable."""
    global redis_client, redis_available

    redis_client = None
    redis_available = False
    if not app.config.get('CACHE_ENABLED', True):
        logger.info("[Cache] Disabled by configuration")
        return

    redis_url = app.config.get('REDIS_URL', 'redis://localhost:6379/1')
    try:
        _temp_client = redis.from_url(redis_url, socket_connect_timeout=1)
        _temp_client.ping()
        redis_client = _temp_client
        redis_available = True
        logger.info("[Cache] Redis connected successfully")
    except redis.RedisError as e:
        logger.warning("[Cache] Redis not available: %s", e)
        logger.warning("[Cache] Running in no-cache mode")


def get_cache_version(prefix):
    """Get the current version for a cache prefix."""
    if not redis_available:
        return "0"
    try:
        v = redis_client.get(f"version:{prefix}")
        if not v:
            # Unset reads as 0 so the first incr() moves every key
            return "0"
        return v.decode('utf-8')
    except redis.RedisError:
        return "0"


def generate_cache_key(prefix, *args, **kwargs):
    """Generate a consistent cache key based on request path, args and version."""
    version = get_cache_version(prefix)
    key_parts = [prefix, version, request.path]

    if request.args:
        key_parts.append(json.dumps(dict(request.args), sort_keys=True))

    for arg in args:
        key_parts.append(str(arg))
    if kwargs:
        key_parts.append(json.dumps(kwargs, sort_keys=True))

    key_str = "|".join(key_parts)
    return f"cache:{hashlib.sha256(key_str.encode()).hexdigest()}"


def invalidate_cache(*prefixes):
    """Invalidate all cache keys under the given prefixes by incrementing their versions."""
    if not redis_available:
        return
    for prefix in prefixes:
        try:
            redis_client.incr(f"version:{prefix}")
            logger.info("[Cache] Invalidated prefix: %s", prefix)
        except redis.RedisError as e:
            logger.warning("[Cache] Invalidation failed: %s", e)


def cache_response(ttl=300, prefix='view'):
    """
    Decorator to cache successful JSON GET responses.
    Error responses (status >= 400) are never stored.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not redis_available or request.method != 'GET' or 'profile' in request.args:
                return f(*args, **kwargs)

            cache_key = generate_cache_key(prefix, *args, **kwargs)

            try:
                cached_data = redis_client.get(cache_key)
                if cached_data:
                    data = json.loads(cached_data)
                    if data['content_type'] == 'application/json':
                        return jsonify(data['content'])
                    return Response(data['content'], mimetype=data['content_type'])
            except (redis.RedisError, ValueError, KeyError) as e:
                logger.warning("Cache read error: %s", e)

            response = f(*args, **kwargs)

            body = response
            status = getattr(response, 'status_code', 200)
            if isinstance(response, tuple):
                body, status = response[0], response[1]
            if status >= 400:
                return response

            try:
                if hasattr(body, 'get_json') and body.get_json(silent=True) is not None:
                    payload = {'content': body.get_json(), 'content_type': 'application/json'}
                elif isinstance(body, (dict, list)):
                    payload = {'content': body, 'content_type': 'application/json'}
                else:
                    return response
                redis_client.setex(cache_key, ttl, json.dumps(payload))
            except (redis.RedisError, TypeError) as e:
                logger.warning("Cache write error: %s", e)

            return response
        return decorated_function
    return decorator
