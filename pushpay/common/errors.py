"""Typed failures raised by gateway flows and mapped to HTTP responses."""

from typing import Any


class GatewayError(Exception):
    """Base failure with a machine-stable kind and a client-safe message."""

    kind = "internal_error"
    status_code = 500

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_response(self) -> dict[str, Any]:
        return {"error": self.kind, "message": self.message, **self.details}


class ValidationFailed(GatewayError):
    kind = "validation_failed"
    status_code = 400

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message, {"missing": missing} if missing else None)
        self.missing = missing or []


class RateLimited(GatewayError):
    kind = "rate_limited"
    status_code = 429


class UserBlocked(GatewayError):
    kind = "user_blocked"
    status_code = 403


class NotFound(GatewayError):
    kind = "not_found"
    status_code = 404


class MalformedCallback(GatewayError):
    kind = "malformed_callback"
    status_code = 400


class TokenAcquisitionFailed(GatewayError):
    """Credential refresh failed; `__cause__` holds the underlying error."""

    kind = "token_acquisition_failed"
    status_code = 500


class ProviderCallFailed(GatewayError):
    """Remote issuer error or timeout. Durable state is left as last written."""

    kind = "provider_call_failed"
    status_code = 502


class InitiationIncomplete(GatewayError):
    """Provider answered without a correlation key; needs manual reconciliation."""

    kind = "internal_error"
    status_code = 500
