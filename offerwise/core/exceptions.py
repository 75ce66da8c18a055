"""Custom exceptions for the OfferWise analytics core."""


class OfferWiseException(Exception):
    """Base exception for the analytics core."""

    error_code = "internal_error"


class NotAuthenticated(OfferWiseException):
    """Raised when no agent identity is active."""

    error_code = "not_authenticated"


class SessionNotFound(OfferWiseException):
    """Raised internally when a tracking session id is unknown or expired."""

    error_code = "session_not_found"


class UpstreamFailure(OfferWiseException):
    """Raised when the record store or cache cannot be reached."""

    error_code = "upstream_failure"


class ValidationFailure(OfferWiseException):
    """Raised when filter, context, or record input is malformed."""

    error_code = "validation_failure"

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


class ConfigurationError(OfferWiseException):
    """Raised when configuration is invalid."""

    error_code = "configuration_error"
