# utils.py
import os, logging, sys
import ipaddress
from typing import Optional
from pathlib import Path

LOG_DIR = Path(os.getenv("LOG_DIR", "logs"))
LOG_DIR.mkdir(exist_ok=True)

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def setup_logger(name="bookbazaar", level=None):
    """Setup the application logger (stdout plus a file under logs/)"""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    if level is None:
        level = _LOG_LEVELS.get(os.getenv("LOG_LEVEL", "info").lower(), logging.INFO)

    # Keep records out of the root logger so gunicorn does not print them twice
    logger.propagate = False
    logger.setLevel(level)

    fmt = logging.Formatter("%(asctime)s [%(levelname)s] %(message)s",
                            datefmt="%Y-%m-%d %H:%M:%S")

    try:
        sh = logging.StreamHandler(sys.stdout)
        sh.setFormatter(fmt)
        sh.setLevel(level)
        logger.addHandler(sh)
    except Exception as e:
        print(f"Warning: Could not setup stream handler: {e}", file=sys.stderr, flush=True)

    try:
        log_file = LOG_DIR / f"{name}.log"
        fh = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        fh.setFormatter(fmt)
        fh.setLevel(level)
        logger.addHandler(fh)
    except Exception as e:
        print(f"Warning: Could not setup file handler: {e}", file=sys.stderr, flush=True)

    return logger

logger = setup_logger()


def env_flag(name: str, default: bool = False) -> bool:
    """Read a true/false style environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def is_private_ip(ip_address: str) -> bool:
    """Return True if the given IP address is private or reserved.

    This treats RFC1918, loopback, link-local, and reserved ranges as private.
    """
    try:
        ip_obj = ipaddress.ip_address(ip_address)
        return (
            ip_obj.is_private
            or ip_obj.is_loopback
            or ip_obj.is_link_local
            or ip_obj.is_reserved
            or ip_obj.is_multicast
        )
    except ValueError:
        return True


def get_client_ip(request) -> Optional[str]:
    """Best-effort extraction of the real client IP from a proxied request.

    Preference order:
    1) First public IP in X-Forwarded-For (left-most)
    2) X-Real-IP if public
    3) request.remote_addr (may be proxy IP)
    """
    xff = request.headers.get('X-Forwarded-For', '')
    if xff:
        parts = [p.strip() for p in xff.split(',') if p.strip()]
        for part in parts:
            if not is_private_ip(part):
                return part
        if parts:
            return parts[0]

    xri = request.headers.get('X-Real-IP')
    if xri and not is_private_ip(xri):
        return xri

    return getattr(request, 'remote_addr', None)
