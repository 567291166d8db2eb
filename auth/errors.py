"""
auth/errors.py -- Error codes and typed failures for the auth core.

Taxonomy:
  validation      -- bad email / weak password / missing consent / duplicate
                     email. User-correctable, reported with field detail.
  authentication  -- wrong credentials, invalid / expired / reused token.
                     Always reported with a uniform message; the real cause
                     goes to the audit log only.
  security        -- device fingerprint mismatch. Same shape as an
                     authentication failure, plus the revoke-all side effect.
  session         -- logout-all without an authenticated user; revoking a
                     session id the caller does not own or that is gone.
  dependency      -- email dispatch failure. Typed, non-fatal.
  configuration   -- missing or short signing secret. Fatal at startup.

Services raise the exception classes below; only the orchestrator turns them
into ErrorResponse envelopes.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    INVALID_CREDENTIALS = "AUTH_INVALID_CREDENTIALS"
    EMAIL_EXISTS = "AUTH_EMAIL_EXISTS"
    INVALID_EMAIL = "AUTH_INVALID_EMAIL"
    WEAK_PASSWORD = "AUTH_WEAK_PASSWORD"
    CONSENT_REQUIRED = "AUTH_CONSENT_REQUIRED"
    TOKEN_EXPIRED = "AUTH_TOKEN_EXPIRED"
    TOKEN_INVALID = "AUTH_TOKEN_INVALID"
    SESSION_INVALID = "AUTH_SESSION_INVALID"
    SESSION_NOT_FOUND = "AUTH_SESSION_NOT_FOUND"
    DEVICE_MISMATCH = "AUTH_DEVICE_MISMATCH"
    RATE_LIMITED = "AUTH_RATE_LIMITED"
    EMAIL_SERVICE_ERROR = "EMAIL_SERVICE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


_HTTP_STATUS: dict[ErrorCode, int] = {
    ErrorCode.INVALID_CREDENTIALS: 401,
    ErrorCode.EMAIL_EXISTS: 409,
    ErrorCode.INVALID_EMAIL: 400,
    ErrorCode.WEAK_PASSWORD: 400,
    ErrorCode.CONSENT_REQUIRED: 400,
    ErrorCode.TOKEN_EXPIRED: 401,
    ErrorCode.TOKEN_INVALID: 401,
    ErrorCode.SESSION_INVALID: 401,
    ErrorCode.SESSION_NOT_FOUND: 404,
    ErrorCode.DEVICE_MISMATCH: 401,
    ErrorCode.RATE_LIMITED: 429,
    ErrorCode.EMAIL_SERVICE_ERROR: 503,
    ErrorCode.INTERNAL_ERROR: 500,
}


def http_status_for(code: ErrorCode | str) -> int:
    """Map an error code to the HTTP status the API layer should send. Unknown codes map to 500."""
    try:
        return _HTTP_STATUS[ErrorCode(code)]
    except ValueError:
        return 500


class ConfigurationError(RuntimeError):
    """Raised at construction time when a component is misconfigured (e.g. short signing secret)."""


class AuthError(Exception):
    """Base class for failures raised by the token services."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR


class TokenInvalidError(AuthError):
    """Token unknown, already revoked, or lost a concurrent rotation."""

    code = ErrorCode.TOKEN_INVALID


class TokenExpiredError(AuthError):
    code = ErrorCode.TOKEN_EXPIRED


class DeviceMismatchError(AuthError):
    """Refresh token presented from a different device. All of the user's sessions are already revoked."""

    code = ErrorCode.DEVICE_MISMATCH


class EmailDeliveryError(AuthError):
    """Outbound email could not be handed to the transport."""

    code = ErrorCode.EMAIL_SERVICE_ERROR


class EmailExistsError(AuthError):
    """Email already registered (case-insensitive). Raised by the user directory on a UNIQUE violation."""

    code = ErrorCode.EMAIL_EXISTS
