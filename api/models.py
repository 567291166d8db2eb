"""
API request and response models for the authcore REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
auth/responses.py, which own the internal representation. Route handlers map
between the two.

Request models only enforce transport-level shape (types, lengths, the
fingerprint format). Email-format and password-strength policy stays in the
orchestrator so that failures come back in the uniform error envelope with
per-field detail, not as a 422.
"""

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from auth.models import Session

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# SHA-256 hex digest computed client-side from stable device attributes.
FINGERPRINT_PATTERN = r"^[0-9a-fA-F]{64}$"
MAX_PASSWORD_LENGTH = 128  # bcrypt only reads 72 bytes; reject absurd inputs early
MAX_EMAIL_LENGTH = 320
MAX_TOKEN_LENGTH = 256

_Fingerprint = Annotated[str, Field(pattern=FINGERPRINT_PATTERN, description="64 hex chars")]
_Email = Annotated[str, Field(max_length=MAX_EMAIL_LENGTH)]
# Only the address is trimmed; passwords are hashed exactly as typed.
_TrimmedEmail = Annotated[str, StringConstraints(strip_whitespace=True, max_length=MAX_EMAIL_LENGTH)]
_Password = Annotated[str, Field(max_length=MAX_PASSWORD_LENGTH)]
_LinkToken = Annotated[str, Field(min_length=1, max_length=MAX_TOKEN_LENGTH)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignupRequest(BaseModel):
    """Request body for POST /api/v1/auth/signup."""

    email: _TrimmedEmail
    password: _Password
    consent_to_terms: bool = False
    consent_to_privacy: bool = False


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    email: _Email
    password: _Password
    device_fingerprint: _Fingerprint


class MagicLinkRequest(BaseModel):
    """Request body for POST /api/v1/auth/magic-link and /password/reset-request."""

    email: _TrimmedEmail


class MagicLinkVerifyRequest(BaseModel):
    token: _LinkToken
    device_fingerprint: _Fingerprint


class PasswordResetRequest(BaseModel):
    """Request body for POST /api/v1/auth/password/reset."""

    token: _LinkToken
    new_password: _Password


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh.

    The refresh token itself travels in the httpOnly cookie, never in the body.
    """

    device_fingerprint: _Fingerprint


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserView(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    email_verified: bool


class AuthSuccessResponse(BaseModel):
    """Successful signup / login / magic-link verify / refresh."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    user: UserView
    expires_at: datetime


class MessageResponse(BaseModel):
    """Generic success (request flows, reset complete, logout)."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str


class SessionResponse(BaseModel):
    """One active session (refresh token) of the current user."""

    model_config = ConfigDict(frozen=True)

    id: str
    device_fingerprint: str
    created_at: Optional[datetime] = None
    expires_at: datetime

    @classmethod
    def from_session(cls, session: Session) -> "SessionResponse":
        return cls(
            id=session.id,
            device_fingerprint=session.device_fingerprint,
            created_at=session.created_at,
            expires_at=session.expires_at,
        )


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope for failures raised outside the auth flows (422, 429, 500)."""

    model_config = ConfigDict(frozen=True)

    success: bool = False
    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = {}
