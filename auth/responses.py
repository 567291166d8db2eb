"""
auth/responses.py -- Result envelopes returned by every orchestrator flow.

Three shapes leave the core:
    AuthResponse     {success, user{id,email,email_verified}, expires_at}
    GenericResponse  {success, message}
    ErrorResponse    {success: false, error{code, message, fields?}, request_id}

Uniform messages live here as constants so each enumeration-safe flow can
reach exactly one of them from both of its branches.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime

from auth.errors import ErrorCode
from auth.models import UserPublic

# ---------------------------------------------------------------------------
# Uniform messages
# ---------------------------------------------------------------------------

LOGIN_FAILURE_MESSAGE = "The email or password you entered is incorrect."
MAGIC_LINK_REQUEST_MESSAGE = "If an account with that email exists, a magic link has been sent."
MAGIC_LINK_INVALID_MESSAGE = "The magic link is invalid or has expired. Please request a new one."
EMAIL_SERVICE_UNAVAILABLE_MESSAGE = (
    "Unable to send magic link at this time. Please try logging in with your password instead."
)
PASSWORD_RESET_REQUEST_MESSAGE = "If an account with that email exists, a password reset link has been sent."
PASSWORD_RESET_EMAIL_UNAVAILABLE_MESSAGE = "Unable to send password reset email at this time. Please try again later."
PASSWORD_RESET_INVALID_MESSAGE = "The password reset link is invalid or has expired. Please request a new one."
PASSWORD_RESET_SUCCESS_MESSAGE = "Your password has been reset successfully."
REFRESH_TOKEN_INVALID_MESSAGE = "Refresh token is missing or invalid."
REFRESH_TOKEN_EXPIRED_MESSAGE = "Refresh token has expired. Please log in again."
DEVICE_MISMATCH_MESSAGE = "Device fingerprint mismatch. All sessions have been revoked for security."
LOGOUT_MESSAGE = "Logged out successfully."
LOGOUT_ALL_MESSAGE = "Logged out from all devices successfully."
SESSION_INVALID_MESSAGE = "No active session found."
SESSION_NOT_FOUND_MESSAGE = "Session not found or already ended."
SESSION_REVOKED_MESSAGE = "Session revoked successfully."
INVALID_EMAIL_MESSAGE = "Invalid email address"
WEAK_PASSWORD_MESSAGE = "Password does not meet requirements"
CONSENT_REQUIRED_MESSAGE = "You must accept the terms of service and privacy policy to register"
EMAIL_EXISTS_MESSAGE = "An account with this email already exists"


def new_request_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Envelopes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AuthResponse:
    user: UserPublic
    expires_at: datetime
    success: bool = True

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "user": {
                "id": self.user.id,
                "email": self.user.email,
                "email_verified": self.user.email_verified,
            },
            "expires_at": self.expires_at.isoformat(),
        }


@dataclass(frozen=True)
class GenericResponse:
    message: str
    success: bool = True

    def to_dict(self) -> dict:
        return {"success": self.success, "message": self.message}


@dataclass(frozen=True)
class ErrorResponse:
    code: ErrorCode
    message: str
    request_id: str
    fields: dict[str, list[str]] | None = None
    success: bool = field(default=False, init=False)

    def to_dict(self) -> dict:
        error: dict = {"code": self.code.value, "message": self.message}
        if self.fields:
            error["fields"] = self.fields
        return {"success": False, "error": error, "request_id": self.request_id}


def error_response(
    code: ErrorCode,
    message: str,
    request_id: str,
    fields: dict[str, list[str]] | None = None,
) -> ErrorResponse:
    return ErrorResponse(code=ErrorCode(code), message=message, request_id=request_id, fields=fields)
