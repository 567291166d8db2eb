"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/signup                 -- create account (no credentials issued)
  POST /api/v1/auth/login                  -- password login; sets both cookies
  POST /api/v1/auth/magic-link             -- email a sign-in link (enumeration-safe)
  POST /api/v1/auth/magic-link/verify      -- consume link; sets both cookies
  POST /api/v1/auth/password/reset-request -- email a reset link (enumeration-safe)
  POST /api/v1/auth/password/reset         -- consume reset link; ends every session
  POST /api/v1/auth/refresh                -- rotate refresh cookie; sets both cookies
  POST /api/v1/auth/logout                 -- revoke this session; clears cookies
  POST /api/v1/auth/logout-all             -- revoke every session (requires auth)
  GET  /api/v1/auth/me                     -- current user (requires auth)
  GET  /api/v1/auth/sessions               -- active sessions (requires auth)
  DELETE /api/v1/auth/sessions/{id}        -- end one of the caller's sessions (requires auth)

Every handler is a thin adapter: build a RequestContext, call one
AuthOrchestrator flow, translate the FlowOutcome into a JSONResponse. Status
codes come from auth.errors.http_status_for; no policy lives here.

Security:
  Login and the two email-sending routes are rate limited per IP.
  Cache-Control: no-store on every response from this router.
  Handlers are plain def so bcrypt runs in the threadpool, not on the event loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, link_request_limit, login_limit
from api.models import (
    AuthSuccessResponse,
    LoginRequest,
    MagicLinkRequest,
    MagicLinkVerifyRequest,
    MessageResponse,
    PasswordResetRequest,
    RefreshRequest,
    SessionResponse,
    SignupRequest,
    UserView,
)
from auth.dependencies import (
    REFRESH_COOKIE,
    clear_auth_cookies,
    get_current_user,
    set_auth_cookies,
    try_get_current_user,
)
from auth.models import RequestContext, User
from auth.orchestrator import AuthOrchestrator, FlowOutcome

# Auth policy:
# - signup, login, magic-link*, password/*, refresh, logout: public
# - logout-all, me, sessions, sessions/{id}:                  requires auth
router = APIRouter(prefix="/auth")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _orchestrator(request: Request) -> AuthOrchestrator:
    return request.app.state.orchestrator


def _context(request: Request) -> RequestContext:
    return RequestContext(
        ip_address=request.client.host if request.client else "unknown",
        user_agent=request.headers.get("user-agent", ""),
    )


def _respond(request: Request, outcome: FlowOutcome) -> JSONResponse:
    """Turn a FlowOutcome into the HTTP response, cookies included."""
    secure = request.app.state.settings.secure_cookies
    resp = JSONResponse(status_code=outcome.status_code, content=outcome.response.to_dict())
    if outcome.tokens is not None:
        set_auth_cookies(resp, outcome.tokens, secure=secure)
    elif outcome.clear_credentials:
        clear_auth_cookies(resp, secure=secure)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/signup", response_model=AuthSuccessResponse)
def signup(request: Request, body: SignupRequest) -> JSONResponse:
    """Register an account. Does not log the user in."""
    outcome = _orchestrator(request).signup(
        body.email,
        body.password,
        body.consent_to_terms,
        body.consent_to_privacy,
        _context(request),
    )
    return _respond(request, outcome)


@limiter.limit(login_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/login", response_model=AuthSuccessResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Password login.

    Unknown email, wrong password and inactive account all return the same
    401 body. The real reason is in the audit log only.
    """
    outcome = _orchestrator(request).login(body.email, body.password, body.device_fingerprint, _context(request))
    return _respond(request, outcome)


@limiter.limit(link_request_limit)
@router.post("/magic-link", response_model=MessageResponse)
def request_magic_link(request: Request, body: MagicLinkRequest) -> JSONResponse:
    outcome = _orchestrator(request).request_magic_link(body.email, _context(request))
    return _respond(request, outcome)


@router.post("/magic-link/verify", response_model=AuthSuccessResponse)
def verify_magic_link(request: Request, body: MagicLinkVerifyRequest) -> JSONResponse:
    outcome = _orchestrator(request).verify_magic_link(body.token, body.device_fingerprint, _context(request))
    return _respond(request, outcome)


@limiter.limit(link_request_limit)
@router.post("/password/reset-request", response_model=MessageResponse)
def request_password_reset(request: Request, body: MagicLinkRequest) -> JSONResponse:
    outcome = _orchestrator(request).request_password_reset(body.email, _context(request))
    return _respond(request, outcome)


@router.post("/password/reset", response_model=MessageResponse)
def reset_password(request: Request, body: PasswordResetRequest) -> JSONResponse:
    """Set a new password from a reset link. Every existing session is revoked."""
    outcome = _orchestrator(request).reset_password(body.token, body.new_password, _context(request))
    return _respond(request, outcome)


@router.post("/refresh", response_model=AuthSuccessResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Rotate the refresh cookie. The old refresh token is dead after this call."""
    outcome = _orchestrator(request).refresh(
        request.cookies.get(REFRESH_COOKIE), body.device_fingerprint, _context(request)
    )
    return _respond(request, outcome)


@router.post("/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Revoke the current session if there is one. Always 200, always clears cookies."""
    outcome = _orchestrator(request).logout(request.cookies.get(REFRESH_COOKIE), _context(request))
    return _respond(request, outcome)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/logout-all", response_model=MessageResponse)
def logout_all(request: Request) -> JSONResponse:
    """Revoke every session of the caller.

    Not wired through get_current_user: an unauthenticated call is a flow
    failure (AUTH_SESSION_INVALID) and must be audited like one.
    """
    user = try_get_current_user(request)
    outcome = _orchestrator(request).logout_all(user.id if user else None, _context(request))
    return _respond(request, outcome)


@router.get("/me", response_model=UserView)
def me(user: User = Depends(get_current_user)) -> UserView:
    return UserView(id=user.id, email=user.email, email_verified=user.email_verified)


@router.get("/sessions", response_model=list[SessionResponse])
def list_sessions(request: Request, user: User = Depends(get_current_user)) -> list[SessionResponse]:
    """Active (non-revoked, non-expired) sessions of the caller, newest first."""
    return [SessionResponse.from_session(s) for s in _orchestrator(request).list_sessions(user.id)]


@router.delete("/sessions/{session_id}", response_model=MessageResponse)
def revoke_session(request: Request, session_id: str) -> JSONResponse:
    """End one session from the listing, e.g. an unfamiliar device.

    Audited like logout-all, so an unauthenticated call goes through the flow
    instead of get_current_user.
    """
    user = try_get_current_user(request)
    outcome = _orchestrator(request).revoke_session(user.id if user else None, session_id, _context(request))
    return _respond(request, outcome)
