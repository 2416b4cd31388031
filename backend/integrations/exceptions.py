"""Errors raised at the boundary with third-party services."""

from common.exceptions import ServiceError


class ExternalServiceError(ServiceError):
    """An external service could not complete the request."""
    status_code = 502
    reason = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, message: str = "", service: str = "", retryable: bool = False):
        super().__init__(message)
        self.service = service
        self.retryable = retryable

    def as_errors(self) -> dict:
        errors = super().as_errors()
        errors["service"] = self.service
        return errors


class IntegrationNotConfigured(ExternalServiceError):
    """The integration has no credentials configured."""
    status_code = 503
    reason = "INTEGRATION_NOT_CONFIGURED"
