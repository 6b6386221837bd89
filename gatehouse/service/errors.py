from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    """Base class for service-layer exceptions mapped to HTTP responses.

    Each exception class defines both an HTTP status_code and a stable
    error_code rendered in the error envelope:
    - unauthorized (401)
    - protocol_error (401)
    - unknown_account (403)
    - disabled_account (403)
    - not_found (404)
    - configuration_error (500)
    - upstream_unavailable (503)
    """

    status_code: int = 400
    error_code: str = "validation_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        detail: Optional[dict] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error_code is not None:
            self.error_code = error_code
        self.detail = detail or {}


class ValidationError(ServiceError):
    """Request validation failed (400)."""
    status_code = 400
    error_code = "validation_error"


class AuthenticationError(ServiceError):
    """Authentication failed or missing (401)."""
    status_code = 401
    error_code = "unauthorized"


class ProtocolError(AuthenticationError):
    """The SSO round trip was malformed: provider error, bad nonce, bad token response."""
    error_code = "protocol_error"


class UnknownAccount(ServiceError):
    """The identity provider vouched for someone the directory does not know (403)."""
    status_code = 403
    error_code = "unknown_account"


class DisabledAccount(ServiceError):
    """The directory knows the account but it is not active (403)."""
    status_code = 403
    error_code = "disabled_account"


class NotFoundError(ServiceError):
    """Requested resource not found (404)."""
    status_code = 404
    error_code = "not_found"


class ConfigurationError(ServiceError):
    """The gateway is misconfigured; never treated as 'unauthenticated' (500)."""
    status_code = 500
    error_code = "configuration_error"


class ProviderNotFound(ConfigurationError):
    """No login provider could be resolved for the request."""


class UpstreamUnavailable(ServiceError):
    """An identity provider or directory call failed or timed out (503)."""
    status_code = 503
    error_code = "upstream_unavailable"


class DirectoryUnavailable(UpstreamUnavailable):
    """The user directory could not be queried."""


__all__ = [
    "ServiceError",
    "ValidationError",
    "AuthenticationError",
    "ProtocolError",
    "UnknownAccount",
    "DisabledAccount",
    "NotFoundError",
    "ConfigurationError",
    "ProviderNotFound",
    "UpstreamUnavailable",
    "DirectoryUnavailable",
]
