"""
Error taxonomy for the signing / API key / rate limit pipeline.

Core components raise these; the FastAPI dependencies in placegate.deps map
them onto HTTP status codes per route.
"""


class PlacegateError(Exception):
    detail = "Internal error"

    def __init__(self, detail: str | None = None):
        super().__init__(detail or self.detail)
        self.detail = detail or self.detail


class ConfigurationError(PlacegateError):
    detail = "Invalid configuration"


class AuthError(PlacegateError):
    """Terminal rejection of a request by the auth pipeline."""

    reason = "auth_error"


class MissingCredentials(AuthError):
    reason = "missing_credentials"
    detail = "Missing credentials"


class SignatureExpired(AuthError):
    reason = "expired"
    detail = "Request expired"


class SignatureInvalid(AuthError):
    reason = "invalid"
    detail = "Invalid signature"


class KeyNotFound(AuthError):
    reason = "not_found"
    detail = "Invalid API key"


class KeyExpired(AuthError):
    reason = "expired"
    detail = "API key expired"


class RateExceeded(AuthError):
    reason = "rate_exceeded"
    detail = "Too many requests. Please try again later."


class ValidationError(PlacegateError):
    reason = "validation_error"
    detail = "Invalid request body"


class MissingName(ValidationError):
    reason = "missing_name"
    detail = 'The "name" field is required'


class StorageFailure(PlacegateError):
    reason = "storage_failure"
    detail = "Storage failure"


class NameTooLong(ValidationError):
    reason = "name_too_long"
    detail = 'The "name" field must be at most 200 characters'
