"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these classes only own the shape.

Timestamps are timezone-aware UTC datetimes in memory. The stores persist
them as ISO 8601 strings and convert on the way in and out.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    DELETED = "DELETED"


class ConsentType(str, Enum):
    TERMS_OF_SERVICE = "TERMS_OF_SERVICE"
    PRIVACY_POLICY = "PRIVACY_POLICY"
    DATA_PROCESSING = "DATA_PROCESSING"


class AuthEventType(str, Enum):
    SIGNUP = "SIGNUP"
    LOGIN_PASSWORD = "LOGIN_PASSWORD"
    LOGIN_MAGIC_LINK = "LOGIN_MAGIC_LINK"
    LOGOUT = "LOGOUT"
    LOGOUT_ALL = "LOGOUT_ALL"
    PASSWORD_RESET_REQUEST = "PASSWORD_RESET_REQUEST"
    PASSWORD_RESET_COMPLETE = "PASSWORD_RESET_COMPLETE"
    TOKEN_REFRESH = "TOKEN_REFRESH"


class RevokedReason(str, Enum):
    ROTATION = "rotation"
    LOGOUT = "logout"
    LOGOUT_ALL = "logout_all"
    DEVICE_MISMATCH = "device_mismatch"
    PASSWORD_RESET = "password_reset"


class LinkTokenKind(str, Enum):
    MAGIC_LINK = "magic_link"
    PASSWORD_RESET = "password_reset"


@dataclass
class User:
    """An identity record owned by the user directory.

    email is stored lower-cased; lookups compare lower(email) on both sides.
    password_hash is None for magic-link-only accounts.
    """

    id: str
    email: str
    password_hash: str | None = None
    email_verified: bool = False
    status: UserStatus = UserStatus.ACTIVE
    created_at: datetime | None = None
    updated_at: datetime | None = None
    last_login_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE


@dataclass(frozen=True)
class UserPublic:
    """The only user view that leaves the core."""

    id: str
    email: str
    email_verified: bool

    @classmethod
    def from_user(cls, user: User) -> "UserPublic":
        return cls(id=user.id, email=user.email, email_verified=user.email_verified)


@dataclass(frozen=True)
class AccessTokenClaims:
    """Decoded claims of a valid access token. Never persisted."""

    user_id: str
    issued_at: int
    expires_at: int
    type: str = "access"


@dataclass(frozen=True)
class TokenPair:
    """A freshly minted access + refresh credential pair.

    refresh_token is the raw value. It exists only in this object and in the
    one response that carries it to the client.
    """

    access_token: str
    refresh_token: str
    access_token_expires_at: datetime
    refresh_token_expires_at: datetime


@dataclass
class RefreshTokenRecord:
    """Persisted refresh token. Only the SHA-256 of the raw token is stored.

    revoked_at/revoked_reason are None while the token is active. A record is
    terminal once revoked_at is set; expiry is detected, not stored.
    """

    id: str
    user_id: str
    token_hash: str
    device_fingerprint: str
    expires_at: datetime
    created_at: datetime | None = None
    revoked_at: datetime | None = None
    revoked_reason: str | None = None


@dataclass
class LinkTokenRecord:
    """Persisted magic-link or password-reset token (single use, no device binding)."""

    id: str
    kind: LinkTokenKind
    user_id: str
    token_hash: str
    expires_at: datetime
    created_at: datetime | None = None
    used_at: datetime | None = None


@dataclass(frozen=True)
class LinkTokenPayload:
    user_id: str
    token_id: str


@dataclass(frozen=True)
class Session:
    """Read-only view of an active refresh token, for session listings."""

    id: str
    user_id: str
    device_fingerprint: str
    created_at: datetime | None
    expires_at: datetime

    @classmethod
    def from_record(cls, record: RefreshTokenRecord) -> "Session":
        return cls(
            id=record.id,
            user_id=record.user_id,
            device_fingerprint=record.device_fingerprint,
            created_at=record.created_at,
            expires_at=record.expires_at,
        )


@dataclass
class ConsentRecord:
    id: str
    user_id: str
    consent_type: ConsentType
    consent_version: str
    ip_address: str
    user_agent: str
    granted_at: datetime | None = None


@dataclass
class AuditEvent:
    """One audit-log entry. Every orchestrator flow writes exactly one."""

    event_type: AuthEventType
    user_id: str | None
    ip_address: str
    user_agent: str
    request_id: str
    success: bool
    error_code: str | None = None
    metadata: dict | None = None


@dataclass(frozen=True)
class RequestContext:
    """Caller facts needed for audit and consent records."""

    ip_address: str
    user_agent: str = ""
