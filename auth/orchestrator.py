"""
auth/orchestrator.py -- Authentication flows with enumeration-safe responses.

Every public method is one flow:
  - takes a RequestContext (ip, user agent),
  - mints a request_id,
  - writes EXACTLY ONE audit entry (success or failure),
  - returns a FlowOutcome; it never raises for an expected failure.

Step order inside each flow is fixed. Cheap rejections (format, strength,
consent) come before anything that touches the store or burns bcrypt time,
and no user or consent row is written on a failed path.

Uniform failures:
  login             "no user", "no password", "wrong password" and "account
                    not ACTIVE" all reach the same _fail() call.
  magic-link / reset request
                    known and unknown emails fall through to the same return
                    statement; only the audit entry differs.
  link verify       not found / used / expired / lost race / user gone share
                    one message.

Collaborators are injected. The Protocols below are the contract; the
defaults in auth/store.py, auth/validators.py and auth/email.py satisfy it.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol, Union

from auth.errors import (
    AuthError,
    DeviceMismatchError,
    EmailDeliveryError,
    EmailExistsError,
    ErrorCode,
    TokenExpiredError,
    http_status_for,
)
from auth.hashing import PasswordHasher
from auth.links import LinkTokenService
from auth.models import (
    AuditEvent,
    AuthEventType,
    ConsentRecord,
    ConsentType,
    RequestContext,
    RevokedReason,
    Session,
    TokenPair,
    User,
    UserPublic,
)
from auth.responses import (
    CONSENT_REQUIRED_MESSAGE,
    DEVICE_MISMATCH_MESSAGE,
    EMAIL_EXISTS_MESSAGE,
    EMAIL_SERVICE_UNAVAILABLE_MESSAGE,
    INVALID_EMAIL_MESSAGE,
    LOGIN_FAILURE_MESSAGE,
    LOGOUT_ALL_MESSAGE,
    LOGOUT_MESSAGE,
    MAGIC_LINK_INVALID_MESSAGE,
    MAGIC_LINK_REQUEST_MESSAGE,
    PASSWORD_RESET_EMAIL_UNAVAILABLE_MESSAGE,
    PASSWORD_RESET_INVALID_MESSAGE,
    PASSWORD_RESET_REQUEST_MESSAGE,
    PASSWORD_RESET_SUCCESS_MESSAGE,
    REFRESH_TOKEN_EXPIRED_MESSAGE,
    REFRESH_TOKEN_INVALID_MESSAGE,
    SESSION_INVALID_MESSAGE,
    SESSION_NOT_FOUND_MESSAGE,
    SESSION_REVOKED_MESSAGE,
    WEAK_PASSWORD_MESSAGE,
    AuthResponse,
    ErrorResponse,
    GenericResponse,
    error_response,
    new_request_id,
)
from auth.sessions import SessionRotationEngine
from auth.validators import ValidationResult, validate_email, validate_password

logger = logging.getLogger("authcore.auth")

CONSENT_VERSION = "1.0"
SIGNUP_EXPIRY = timedelta(minutes=15)

# ---------------------------------------------------------------------------
# Collaborator contracts
# ---------------------------------------------------------------------------


class UserDirectory(Protocol):
    def find_by_email(self, email: str) -> User | None: ...

    def find_by_id(self, user_id: str) -> User | None: ...

    def create_user(self, email: str, password_hash: str | None) -> User: ...

    def update_password(self, user_id: str, password_hash: str) -> bool: ...

    def update_last_login(self, user_id: str) -> None: ...


class ConsentLedger(Protocol):
    def create_consent(
        self,
        user_id: str,
        consent_type: ConsentType,
        consent_version: str,
        ip_address: str,
        user_agent: str,
    ) -> ConsentRecord: ...


class AuditSink(Protocol):
    def create_audit_log(self, event: AuditEvent) -> str: ...


class EmailDispatcher(Protocol):
    def send_magic_link(self, email: str, token: str) -> None: ...

    def send_password_reset(self, email: str, token: str) -> None: ...


Validator = Callable[[str], ValidationResult]

FlowResponse = Union[AuthResponse, GenericResponse, ErrorResponse]


@dataclass(frozen=True)
class FlowOutcome:
    """What a flow hands back to the transport layer.

    tokens is set only when new credentials were minted. clear_credentials
    tells the transport to drop whatever credentials the client holds.
    """

    response: FlowResponse
    tokens: TokenPair | None = None
    clear_credentials: bool = False

    @property
    def success(self) -> bool:
        return self.response.success

    @property
    def status_code(self) -> int:
        if isinstance(self.response, ErrorResponse):
            return http_status_for(self.response.code)
        return 200


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class AuthOrchestrator:
    """Runs the authentication flows over injected collaborators.

    Usage:
        auth = AuthOrchestrator(users=..., consents=..., audit=..., mailer=...,
                                hasher=..., sessions=..., magic_links=..., password_resets=...)
        outcome = auth.login("bob@x.com", "pass1234", fingerprint, RequestContext("10.0.0.1"))
        outcome.response.to_dict(); outcome.tokens
    """

    def __init__(
        self,
        *,
        users: UserDirectory,
        consents: ConsentLedger,
        audit: AuditSink,
        mailer: EmailDispatcher,
        hasher: PasswordHasher,
        sessions: SessionRotationEngine,
        magic_links: LinkTokenService,
        password_resets: LinkTokenService,
        email_validator: Validator = validate_email,
        password_validator: Validator = validate_password,
    ) -> None:
        self.users = users
        self.consents = consents
        self.audit = audit
        self.mailer = mailer
        self.hasher = hasher
        self.sessions = sessions
        self.magic_links = magic_links
        self.password_resets = password_resets
        self.email_validator = email_validator
        self.password_validator = password_validator

    # ------------------------------------------------------------------
    # Signup
    # ------------------------------------------------------------------

    def signup(
        self,
        email: str,
        password: str,
        consent_to_terms: bool,
        consent_to_privacy: bool,
        ctx: RequestContext,
    ) -> FlowOutcome:
        request_id = new_request_id()
        event = AuthEventType.SIGNUP

        email_check = self.email_validator(email)
        if not email_check.valid:
            return self._fail(
                ctx, request_id, event, None,
                ErrorCode.INVALID_EMAIL, INVALID_EMAIL_MESSAGE,
                fields={"email": email_check.errors}, reason="invalid_email",
            )

        password_check = self.password_validator(password)
        if not password_check.valid:
            return self._fail(
                ctx, request_id, event, None,
                ErrorCode.WEAK_PASSWORD, WEAK_PASSWORD_MESSAGE,
                fields={"password": password_check.errors}, reason="weak_password",
            )

        if not (consent_to_terms and consent_to_privacy):
            return self._fail(
                ctx, request_id, event, None,
                ErrorCode.CONSENT_REQUIRED, CONSENT_REQUIRED_MESSAGE,
                reason="missing_consent",
            )

        if self.users.find_by_email(email) is not None:
            return self._email_exists(ctx, request_id, reason="email_exists")

        password_hash = self.hasher.hash(password)
        try:
            user = self.users.create_user(email, password_hash)
        except EmailExistsError:
            # Lost a race against a concurrent signup for the same address.
            return self._email_exists(ctx, request_id, reason="email_exists_on_insert")

        for consent_type in (ConsentType.TERMS_OF_SERVICE, ConsentType.PRIVACY_POLICY, ConsentType.DATA_PROCESSING):
            self.consents.create_consent(user.id, consent_type, CONSENT_VERSION, ctx.ip_address, ctx.user_agent)

        self._audit(ctx, request_id, event, user.id, success=True)
        logger.info("User %s signed up", user.id)
        expires_at = datetime.now(timezone.utc) + SIGNUP_EXPIRY
        return FlowOutcome(AuthResponse(user=UserPublic.from_user(user), expires_at=expires_at))

    def _email_exists(self, ctx: RequestContext, request_id: str, reason: str) -> FlowOutcome:
        return self._fail(
            ctx, request_id, AuthEventType.SIGNUP, None,
            ErrorCode.EMAIL_EXISTS, EMAIL_EXISTS_MESSAGE,
            fields={"email": [EMAIL_EXISTS_MESSAGE]}, reason=reason,
        )

    # ------------------------------------------------------------------
    # Password login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, device_fingerprint: str, ctx: RequestContext) -> FlowOutcome:
        request_id = new_request_id()
        user = self.users.find_by_email(email) if email else None

        if user is None or not user.password_hash:
            self.hasher.verify_dummy(password)
            reason = "user_not_found" if user is None else "no_password_set"
        elif not self.hasher.verify(password, user.password_hash):
            reason = "invalid_password"
        elif not user.is_active:
            reason = "account_not_active"
        else:
            reason = None

        if reason is not None:
            return self._fail(
                ctx, request_id, AuthEventType.LOGIN_PASSWORD, user.id if user else None,
                ErrorCode.INVALID_CREDENTIALS, LOGIN_FAILURE_MESSAGE, reason=reason,
            )

        tokens = self.sessions.issue(user.id, device_fingerprint)
        self.users.update_last_login(user.id)
        self._audit(ctx, request_id, AuthEventType.LOGIN_PASSWORD, user.id, success=True)
        return FlowOutcome(
            AuthResponse(user=UserPublic.from_user(user), expires_at=tokens.access_token_expires_at),
            tokens=tokens,
        )

    # ------------------------------------------------------------------
    # Magic link
    # ------------------------------------------------------------------

    def request_magic_link(self, email: str, ctx: RequestContext) -> FlowOutcome:
        request_id = new_request_id()
        event = AuthEventType.LOGIN_MAGIC_LINK
        user = self.users.find_by_email(email) if email else None

        if user is None or not user.is_active:
            reason = "user_not_found" if user is None else "account_not_active"
            self._audit(ctx, request_id, event, None, success=False, stage="request", reason=reason)
        else:
            raw_token = self.magic_links.issue(user.id)
            try:
                self.mailer.send_magic_link(user.email, raw_token)
            except EmailDeliveryError:
                return self._fail(
                    ctx, request_id, event, user.id,
                    ErrorCode.EMAIL_SERVICE_ERROR, EMAIL_SERVICE_UNAVAILABLE_MESSAGE,
                    stage="request", reason="email_service_failure",
                )
            self._audit(ctx, request_id, event, user.id, success=True, stage="request")

        return FlowOutcome(GenericResponse(MAGIC_LINK_REQUEST_MESSAGE))

    def verify_magic_link(self, token: str, device_fingerprint: str, ctx: RequestContext) -> FlowOutcome:
        request_id = new_request_id()
        event = AuthEventType.LOGIN_MAGIC_LINK

        payload = self.magic_links.validate(token)
        if payload is None:
            return self._magic_link_invalid(ctx, request_id, None, "invalid_magic_token")
        # Burn the token before acting on it.
        if not self.magic_links.invalidate(token):
            return self._magic_link_invalid(ctx, request_id, payload.user_id, "magic_token_already_used")

        user = self.users.find_by_id(payload.user_id)
        if user is None or not user.is_active:
            reason = "user_not_found_for_token" if user is None else "account_not_active"
            return self._magic_link_invalid(ctx, request_id, payload.user_id, reason)

        tokens = self.sessions.issue(user.id, device_fingerprint)
        self.users.update_last_login(user.id)
        self._audit(ctx, request_id, event, user.id, success=True, stage="verify")
        return FlowOutcome(
            AuthResponse(user=UserPublic.from_user(user), expires_at=tokens.access_token_expires_at),
            tokens=tokens,
        )

    def _magic_link_invalid(
        self, ctx: RequestContext, request_id: str, user_id: str | None, reason: str
    ) -> FlowOutcome:
        return self._fail(
            ctx, request_id, AuthEventType.LOGIN_MAGIC_LINK, user_id,
            ErrorCode.TOKEN_INVALID, MAGIC_LINK_INVALID_MESSAGE,
            stage="verify", reason=reason,
        )

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str, ctx: RequestContext) -> FlowOutcome:
        request_id = new_request_id()
        event = AuthEventType.PASSWORD_RESET_REQUEST
        user = self.users.find_by_email(email) if email else None

        if user is None or not user.is_active:
            reason = "user_not_found" if user is None else "account_not_active"
            self._audit(ctx, request_id, event, None, success=False, reason=reason)
        else:
            raw_token = self.password_resets.issue(user.id)
            try:
                self.mailer.send_password_reset(user.email, raw_token)
            except EmailDeliveryError:
                return self._fail(
                    ctx, request_id, event, user.id,
                    ErrorCode.EMAIL_SERVICE_ERROR, PASSWORD_RESET_EMAIL_UNAVAILABLE_MESSAGE,
                    reason="email_service_failure",
                )
            self._audit(ctx, request_id, event, user.id, success=True)

        return FlowOutcome(GenericResponse(PASSWORD_RESET_REQUEST_MESSAGE))

    def reset_password(self, token: str, new_password: str, ctx: RequestContext) -> FlowOutcome:
        request_id = new_request_id()
        event = AuthEventType.PASSWORD_RESET_COMPLETE

        payload = self.password_resets.validate(token)
        if payload is None:
            return self._reset_invalid(ctx, request_id, None, "invalid_reset_token")

        password_check = self.password_validator(new_password)
        if not password_check.valid:
            # Token stays usable so the user can retry with a stronger password.
            return self._fail(
                ctx, request_id, event, payload.user_id,
                ErrorCode.WEAK_PASSWORD, WEAK_PASSWORD_MESSAGE,
                fields={"password": password_check.errors}, reason="weak_password",
            )

        if not self.password_resets.invalidate(token):
            return self._reset_invalid(ctx, request_id, payload.user_id, "reset_token_already_used")

        if not self.users.update_password(payload.user_id, self.hasher.hash(new_password)):
            return self._reset_invalid(ctx, request_id, payload.user_id, "user_not_found_for_token")

        revoked = self.sessions.revoke_all(payload.user_id, RevokedReason.PASSWORD_RESET)
        self._audit(ctx, request_id, event, payload.user_id, success=True, sessions_revoked=revoked)
        logger.info("Password reset for user %s, %d session(s) revoked", payload.user_id, revoked)
        return FlowOutcome(GenericResponse(PASSWORD_RESET_SUCCESS_MESSAGE), clear_credentials=True)

    def _reset_invalid(self, ctx: RequestContext, request_id: str, user_id: str | None, reason: str) -> FlowOutcome:
        return self._fail(
            ctx, request_id, AuthEventType.PASSWORD_RESET_COMPLETE, user_id,
            ErrorCode.TOKEN_INVALID, PASSWORD_RESET_INVALID_MESSAGE, reason=reason,
        )

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str | None, device_fingerprint: str, ctx: RequestContext) -> FlowOutcome:
        request_id = new_request_id()
        event = AuthEventType.TOKEN_REFRESH

        if not refresh_token:
            return self._fail(
                ctx, request_id, event, None,
                ErrorCode.TOKEN_INVALID, REFRESH_TOKEN_INVALID_MESSAGE,
                clear_credentials=True, reason="missing_refresh_token",
            )

        try:
            result = self.sessions.rotate(refresh_token, device_fingerprint)
        except DeviceMismatchError as exc:
            return self._fail(
                ctx, request_id, event, None, exc.code, DEVICE_MISMATCH_MESSAGE,
                clear_credentials=True, reason="device_mismatch",
            )
        except TokenExpiredError as exc:
            return self._fail(
                ctx, request_id, event, None, exc.code, REFRESH_TOKEN_EXPIRED_MESSAGE,
                clear_credentials=True, reason="token_expired",
            )
        except AuthError as exc:
            return self._fail(
                ctx, request_id, event, None, exc.code, REFRESH_TOKEN_INVALID_MESSAGE,
                clear_credentials=True, reason="token_refresh_failed",
            )

        user = self.users.find_by_id(result.user_id)
        if user is None or not user.is_active:
            # The successor was already minted; take it back.
            self.sessions.revoke_one(result.tokens.refresh_token)
            return self._fail(
                ctx, request_id, event, result.user_id,
                ErrorCode.TOKEN_INVALID, REFRESH_TOKEN_INVALID_MESSAGE,
                clear_credentials=True, reason="user_not_found" if user is None else "account_not_active",
            )

        self._audit(ctx, request_id, event, user.id, success=True)
        return FlowOutcome(
            AuthResponse(user=UserPublic.from_user(user), expires_at=result.tokens.access_token_expires_at),
            tokens=result.tokens,
        )

    # ------------------------------------------------------------------
    # Logout
    # ------------------------------------------------------------------

    def logout(self, refresh_token: str | None, ctx: RequestContext) -> FlowOutcome:
        request_id = new_request_id()
        user_id = self.sessions.revoke_one(refresh_token) if refresh_token else None
        if refresh_token:
            self._audit(ctx, request_id, AuthEventType.LOGOUT, user_id, success=True)
        else:
            self._audit(ctx, request_id, AuthEventType.LOGOUT, None, success=True, reason="no_refresh_token")
        return FlowOutcome(GenericResponse(LOGOUT_MESSAGE), clear_credentials=True)

    def logout_all(self, user_id: str | None, ctx: RequestContext) -> FlowOutcome:
        request_id = new_request_id()
        if not user_id:
            return self._fail(
                ctx, request_id, AuthEventType.LOGOUT_ALL, None,
                ErrorCode.SESSION_INVALID, SESSION_INVALID_MESSAGE, reason="no_authenticated_user",
            )

        revoked = self.sessions.revoke_all(user_id, RevokedReason.LOGOUT_ALL)
        self._audit(
            ctx, request_id, AuthEventType.LOGOUT_ALL, user_id, success=True,
            reason="user_requested_logout_all", sessions_revoked=revoked,
        )
        return FlowOutcome(GenericResponse(LOGOUT_ALL_MESSAGE), clear_credentials=True)

    def revoke_session(self, user_id: str | None, session_id: str, ctx: RequestContext) -> FlowOutcome:
        """End one session picked from list_sessions().

        Unknown ids, ids owned by someone else and already-revoked ids all get
        the same not-found response, so session ids of other users stay undiscoverable.
        """
        request_id = new_request_id()
        event = AuthEventType.LOGOUT
        if not user_id:
            return self._fail(
                ctx, request_id, event, None,
                ErrorCode.SESSION_INVALID, SESSION_INVALID_MESSAGE,
                scope="session", reason="no_authenticated_user",
            )

        if not self.sessions.revoke_session(user_id, session_id):
            return self._fail(
                ctx, request_id, event, user_id,
                ErrorCode.SESSION_NOT_FOUND, SESSION_NOT_FOUND_MESSAGE,
                scope="session", session_id=session_id, reason="session_not_found",
            )

        self._audit(ctx, request_id, event, user_id, success=True, scope="session", session_id=session_id)
        return FlowOutcome(GenericResponse(SESSION_REVOKED_MESSAGE))

    # ------------------------------------------------------------------
    # Session listing (read-only, not audited)
    # ------------------------------------------------------------------

    def list_sessions(self, user_id: str) -> list[Session]:
        return self.sessions.active_sessions(user_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _audit(
        self,
        ctx: RequestContext,
        request_id: str,
        event_type: AuthEventType,
        user_id: str | None,
        success: bool,
        error_code: ErrorCode | None = None,
        **metadata,
    ) -> None:
        self.audit.create_audit_log(
            AuditEvent(
                event_type=event_type,
                user_id=user_id,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
                request_id=request_id,
                success=success,
                error_code=error_code.value if error_code is not None else None,
                metadata=metadata,
            )
        )

    def _fail(
        self,
        ctx: RequestContext,
        request_id: str,
        event_type: AuthEventType,
        user_id: str | None,
        code: ErrorCode,
        message: str,
        fields: dict[str, list[str]] | None = None,
        clear_credentials: bool = False,
        **metadata,
    ) -> FlowOutcome:
        """Audit a failure and build its ErrorResponse. The one exit for every failed flow."""
        self._audit(ctx, request_id, event_type, user_id, success=False, error_code=code, **metadata)
        logger.info("%s failed: %s (%s) request_id=%s", event_type.value, code.value, metadata.get("reason"), request_id)
        return FlowOutcome(
            error_response(code, message, request_id, fields=fields),
            clear_credentials=clear_credentials,
        )
