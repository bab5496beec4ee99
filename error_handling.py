# error_handling.py
"""
Error types and helpers shared by the Book Bazaar API.

Domain modules raise the APIError family below; the Flask app turns them into
``{"error": message}`` JSON bodies with the matching status code.
"""

import threading
import traceback
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from functools import wraps
from typing import Any, Callable, Dict, Iterable, Optional
import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from utils import logger

# Thread-local guard so a failing logger cannot re-enter log_errors
_error_handling_lock = threading.local()

_CENTS = Decimal("0.01")


class APIError(Exception):
    """Base class for errors that map directly to an HTTP response."""

    status_code = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}


class ValidationError(APIError):
    status_code = 400


class AuthenticationError(APIError):
    status_code = 401


class ForbiddenError(APIError):
    status_code = 403


class NotFoundError(APIError):
    status_code = 404


class RateLimitError(APIError):
    status_code = 429


class DatabaseError(Exception):
    """Custom exception for database-related errors."""
    pass


def log_errors(logger_instance: Optional[logging.Logger] = None):
    """Decorator to log errors with context and re-raise them.

    APIError subclasses are expected outcomes and pass through unlogged.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except APIError:
                raise
            except Exception as e:
                if getattr(_error_handling_lock, 'in_error_handler', False):
                    raise
                _error_handling_lock.in_error_handler = True
                try:
                    log = logger_instance or logger
                    log.error(f"Error in {func.__name__}: {e}")
                finally:
                    _error_handling_lock.in_error_handler = False
                raise
        return wrapper
    return decorator


def require_fields(data: Dict[str, Any], fields: Iterable[str], message: Optional[str] = None) -> None:
    """Raise ValidationError when any of ``fields`` is missing or blank."""
    missing = []
    for field in fields:
        value = data.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(field)
    if missing:
        raise ValidationError(message or f"Missing required fields: {', '.join(missing)}")


def parse_price(value: Any, field_name: str = "price", required: bool = True) -> Optional[float]:
    """Coerce a client supplied amount into a positive two-decimal float."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field_name} is required")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field_name} must be a positive number")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field_name} must be a positive number")
    if not amount.is_finite() or amount <= 0:
        raise ValidationError(f"{field_name} must be a positive number")
    return float(amount.quantize(_CENTS, rounding=ROUND_HALF_UP))


def parse_int(value: Any, field_name: str, required: bool = True, minimum: Optional[int] = None) -> Optional[int]:
    """Coerce ids and counters that may arrive as strings."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field_name} is required")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field_name}")
    try:
        number = int(str(value).strip())
    except ValueError:
        raise ValidationError(f"Invalid {field_name}")
    if minimum is not None and number < minimum:
        raise ValidationError(f"{field_name} must be at least {minimum}")
    return number


def validate_choice(value: Any, choices, field_name: str, message: Optional[str] = None) -> str:
    if not isinstance(value, str) or value not in choices:
        raise ValidationError(message or f"Invalid {field_name}. Must be one of: {', '.join(sorted(choices))}")
    return value


def json_body() -> Dict[str, Any]:
    """The request's JSON object, or an empty dict when no body was sent."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def register_error_handlers(app):
    """Install JSON error handlers on the Flask app."""

    @app.errorhandler(APIError)
    def handle_api_error(error):
        if error.status_code >= 500:
            logger.error(f"API error: {error.message}")
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(error):
        return jsonify({"error": error.description or error.name}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        logger.error(f"Unhandled error: {error}")
        logger.debug(traceback.format_exc())
        return jsonify({"error": str(error) or "Internal server error"}), 500
