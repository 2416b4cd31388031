"""
Shared plumbing for outbound HTTP calls.

Transport failures are turned into ExternalServiceError so callers only
deal with one error type. Timeouts, connection errors and 5xx replies are
retryable; everything else is terminal.
"""

import logging
from typing import Any, Callable, Dict, Optional, TypeVar

import requests
from django.conf import settings

from .exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_degraded_warned = set()


def warn_degraded(feature: str, fallback: str) -> None:
    """Log once per process that ``feature`` is unconfigured and what replaces it."""
    if feature in _degraded_warned:
        return
    _degraded_warned.add(feature)
    logger.warning("degraded mode feature=%s fallback=%s", feature, fallback)


def http_timeout() -> float:
    return float(getattr(settings, "EXTERNAL_HTTP_TIMEOUT", 10))


def request_json(
    service: str,
    method: str,
    url: str,
    session: Optional[requests.Session] = None,
    **kwargs,
) -> Dict[str, Any]:
    """Perform one HTTP call and return the decoded JSON body."""
    kwargs.setdefault("timeout", http_timeout())
    sender = session or requests
    try:
        response = sender.request(method, url, **kwargs)
    except requests.Timeout as exc:
        raise ExternalServiceError(f"{service} timed out", service=service, retryable=True) from exc
    except requests.ConnectionError as exc:
        raise ExternalServiceError(f"{service} is unreachable", service=service, retryable=True) from exc
    except requests.RequestException as exc:
        raise ExternalServiceError(f"{service} request failed: {exc}", service=service) from exc

    if response.status_code >= 500:
        raise ExternalServiceError(
            f"{service} returned HTTP {response.status_code}", service=service, retryable=True
        )
    if response.status_code >= 400:
        raise ExternalServiceError(
            f"{service} rejected the request (HTTP {response.status_code})", service=service
        )
    try:
        return response.json()
    except ValueError as exc:
        raise ExternalServiceError(f"{service} returned a non-JSON body", service=service) from exc


def call_with_retry(func: Callable[[], T], service: str, attempts: int = 2) -> T:
    """
    Run an idempotent read, retrying once on a retryable failure.

    Never use this for writes such as payment charges.
    """
    for attempt in range(1, attempts + 1):
        try:
            return func()
        except ExternalServiceError as exc:
            if not exc.retryable or attempt == attempts:
                raise
            logger.warning("retrying service=%s attempt=%s error=%s", service, attempt, exc.message)
    raise ExternalServiceError(f"{service} failed", service=service)
