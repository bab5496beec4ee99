# observability.py - Structured JSON event records for the Book Bazaar API
"""
Every record is one JSON line on the ``bookbazaar`` logger. HTTP hooks in
app.py and the marketplace state changes are the main producers.
"""
import json
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from utils import logger

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _serialize(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    return str(value)


def log_event(event_type: str, *, severity: str = "info", **fields: Any) -> Dict[str, Any]:
    """Log ``event_type`` with ``fields``; None values are left out of the record."""
    severity = (severity or "info").lower()
    record = {
        "event_id": uuid.uuid4().hex,
        "event_type": event_type,
        "severity": severity,
        "observed_at": datetime.now(timezone.utc).isoformat(),
    }
    record.update((key, value) for key, value in fields.items() if value is not None)
    logger.log(_LEVELS.get(severity, logging.INFO), json.dumps(record, default=_serialize, ensure_ascii=False))
    return record


def log_alert(alert_code: str, message: str, *, severity: str = "warning", **fields: Any) -> Dict[str, Any]:
    return log_event("alert", severity=severity, alert_code=alert_code, message=message, **fields)


def log_marketplace_event(action: str, *, listing_id: Optional[int] = None, user_id: Optional[int] = None,
                          **fields: Any) -> Dict[str, Any]:
    """Record a state change of a listing, exchange request, negotiation or transaction."""
    return log_event(f"marketplace.{action}", listing_id=listing_id, user_id=user_id, **fields)


def log_http_request(*, request_id: str, method: str, path: str, **fields: Any) -> Dict[str, Any]:
    return log_event("http.request", severity="debug", request_id=request_id, method=method, path=path, **fields)


def log_http_response(*, request_id: str, method: str, path: str, status_code: int, **fields: Any) -> Dict[str, Any]:
    if status_code >= 500:
        severity = "error"
    elif status_code >= 400:
        severity = "warning"
    else:
        severity = "info"
    return log_event("http.response", severity=severity, request_id=request_id, method=method, path=path,
                     status_code=status_code, **fields)
