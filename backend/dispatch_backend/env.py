"""Small helpers for reading typed values out of the environment."""

import os
import re
from datetime import timedelta

from django.core.exceptions import ImproperlyConfigured

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS = {
    "": "seconds",
    "s": "seconds",
    "m": "minutes",
    "h": "hours",
    "d": "days",
}

MIN_SECRET_BYTES = 32


def env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def env_list(name: str, default: str = "") -> list:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


def env_duration(name: str, default: str) -> timedelta:
    """
    Parse durations written the way the mobile team writes them: "15m", "7d", "3600".

    A bare number is read as seconds.
    """
    raw = os.getenv(name, default)
    match = _DURATION_RE.match(raw)
    if not match:
        raise ImproperlyConfigured(f"{name} must look like 15m, 1h or 7d (got {raw!r})")
    amount, unit = match.groups()
    return timedelta(**{_DURATION_UNITS[unit]: int(amount)})


def require_secret(name: str, fallback: str = None) -> str:
    """
    Return a signing secret, refusing anything shorter than 32 bytes.

    ``fallback`` is only used for local development and tests; production
    settings call this without one.
    """
    value = os.getenv(name) or fallback
    if not value:
        raise ImproperlyConfigured(f"{name} is required")
    if len(value.encode("utf-8")) < MIN_SECRET_BYTES:
        raise ImproperlyConfigured(f"{name} must be at least {MIN_SECRET_BYTES} bytes long")
    return value
