"""
Redis-based rate limiting for API endpoints.

Guards the coupon validate/apply endpoints against code enumeration with a
fixed-window counter per client IP. The Redis client is created on first
use; when Redis is unreachable requests are let through.
"""
import logging
from functools import wraps
from typing import Optional

import redis
from django.conf import settings
from rest_framework import status
from rest_framework.response import Response

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None
_redis_checked = False


def get_redis_client() -> Optional[redis.Redis]:
    """Return a connected Redis client, or None if Redis is unavailable."""
    global _redis_client, _redis_checked
    if _redis_checked:
        return _redis_client

    _redis_checked = True
    try:
        client = redis.Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2
        )
        client.ping()
        _redis_client = client
    except (redis.ConnectionError, redis.TimeoutError) as e:
        logger.warning(f"Redis connection failed: {e}. Rate limiting will be disabled.")
        _redis_client = None
    return _redis_client


def get_client_ip(request):
    """Extract client IP address from request."""
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        return x_forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR', 'unknown')


def _limit_headers(max_requests: int, remaining: int, ttl: int) -> dict:
    return {
        'X-RateLimit-Limit': str(max_requests),
        'X-RateLimit-Remaining': str(remaining),
        'X-RateLimit-Reset': str(ttl),
    }


def rate_limit(max_requests: int = 20, window_seconds: int = 60, scope: Optional[str] = None):
    """
    Rate limiting decorator for DRF view methods.

    Args:
        max_requests: Maximum number of requests allowed in the window
        window_seconds: Time window in seconds
        scope: Counter name shared by several views (defaults to the view name)

    Usage:
        @rate_limit(10, 60, scope='coupons')
        def post(self, request):
            ...
    """
    def decorator(view_func):
        @wraps(view_func)
        def wrapper(self, request, *args, **kwargs):
            if not getattr(settings, 'RATE_LIMIT_ENABLED', True):
                return view_func(self, request, *args, **kwargs)

            client = get_redis_client()
            if client is None:
                return view_func(self, request, *args, **kwargs)

            key = f"rate_limit:{scope or view_func.__qualname__}:{get_client_ip(request)}"
            try:
                current_count = client.incr(key)
                if current_count == 1:
                    client.expire(key, window_seconds)
                ttl = client.ttl(key)
            except redis.RedisError as e:
                logger.error(f"Redis error in rate limiting: {e}")
                return view_func(self, request, *args, **kwargs)

            if current_count > max_requests:
                headers = _limit_headers(max_requests, 0, ttl)
                headers['Retry-After'] = str(ttl)
                return Response(
                    {
                        'error': 'Rate limit exceeded',
                        'detail': f'Maximum {max_requests} requests per {window_seconds} seconds allowed.',
                        'retry_after': ttl
                    },
                    status=status.HTTP_429_TOO_MANY_REQUESTS,
                    headers=headers
                )

            response = view_func(self, request, *args, **kwargs)
            remaining = max(0, max_requests - current_count)
            for header, value in _limit_headers(max_requests, remaining, ttl).items():
                response[header] = value
            return response

        return wrapper
    return decorator
