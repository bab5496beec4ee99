# rate_limiter.py - Rate limiting for auth and marketplace write endpoints
from functools import wraps
from flask import current_app, request, g
from flask_login import current_user

import db
from error_handling import RateLimitError
from utils import get_client_ip, logger


# Rate limit configurations (requests per minute)
RATE_LIMITS = {
    'api': 60,
    'marketplace_write': 30,
    'login': 10,
    'register': 5,
    'password_reset': 5,
}


def get_rate_limit_identifier():
    """Authenticated callers are limited per user, everyone else per client IP."""
    if current_user.is_authenticated:
        return f"user:{current_user.id}"
    return f"ip:{get_client_ip(request)}"


def rate_limit(endpoint_type, max_requests=None, window_minutes=1):
    """
    Rate limiting decorator

    Usage:
        @rate_limit('login')
        def login():
            ...
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_app.config.get('RATE_LIMIT_ENABLED', True):
                return f(*args, **kwargs)

            limit = max_requests if max_requests is not None else RATE_LIMITS.get(endpoint_type, RATE_LIMITS['api'])
            identifier = get_rate_limit_identifier()
            is_allowed, remaining = db.check_rate_limit(identifier, endpoint_type, limit, window_minutes)

            if not is_allowed:
                logger.warning(f"Rate limit exceeded for {identifier} on {endpoint_type} (limit: {limit})")
                raise RateLimitError(f"Too many requests. Please try again in {window_minutes} minute(s).")

            g.rate_limit_remaining = remaining
            g.rate_limit_limit = limit
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def add_rate_limit_headers(response):
    """Expose the remaining budget of the endpoint that served this request"""
    if hasattr(g, 'rate_limit_remaining'):
        response.headers['X-RateLimit-Remaining'] = str(g.rate_limit_remaining)
        response.headers['X-RateLimit-Limit'] = str(g.rate_limit_limit)
    return response
