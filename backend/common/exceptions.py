"""Base service error and the DRF exception handler that renders the envelope."""

import logging

from rest_framework.views import exception_handler

from .responses import error_response

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Base class for errors raised by the service layer."""

    status_code = 400
    reason = "BAD_REQUEST"

    def __init__(self, message: str = "", reason: str = None, current_status: str = None):
        super().__init__(message)
        self.message = message or self.__class__.__doc__ or ""
        if reason:
            self.reason = reason
        self.current_status = current_status

    def as_errors(self) -> dict:
        errors = {"reason": self.reason}
        if self.current_status:
            errors["current_status"] = self.current_status
        return errors


def _flatten_detail(detail) -> str:
    if isinstance(detail, dict):
        for value in detail.values():
            return _flatten_detail(value)
        return ""
    if isinstance(detail, (list, tuple)):
        return _flatten_detail(detail[0]) if detail else ""
    return str(detail)


def envelope_exception_handler(exc, context):
    """
    Render service errors and DRF errors as {success: false, message, errors?}.

    Anything else returns None so Django produces its usual 500.
    """
    if isinstance(exc, ServiceError):
        logger.info(
            "service error reason=%s status=%s message=%s",
            exc.reason, exc.status_code, exc.message,
        )
        return error_response(exc.message, status=exc.status_code, errors=exc.as_errors())

    response = exception_handler(exc, context)
    if response is None:
        return None

    detail = response.data
    if isinstance(detail, dict) and set(detail.keys()) == {"detail"}:
        message = str(detail["detail"])
        errors = None
    else:
        message = _flatten_detail(detail) or "Validation failed"
        errors = detail

    enveloped = error_response(message, status=response.status_code, errors=errors)
    for header, value in response.items():
        enveloped[header] = value
    return enveloped
