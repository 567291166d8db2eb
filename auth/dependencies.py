"""
auth/dependencies.py -- FastAPI Depends() helpers and credential cookies.

The access token is looked for in priority order:
  1. "access_token" httpOnly cookie -- set by the login / refresh routes.
  2. Authorization: Bearer <token> header -- API clients.

The refresh token only ever travels in the "refresh_token" cookie, which is
scoped to the /api/v1/auth path so it is not sent with ordinary API calls.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: no imports from core/ or api/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request/Response)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import HTTPException, Request, Response

from auth.models import TokenPair, User
from auth.tokens import TokenCodec

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
REFRESH_COOKIE_PATH = "/api/v1/auth"


def try_get_current_user(request: Request) -> User | None:
    """Resolve the authenticated, ACTIVE user from cookie or Bearer header.

    Returns None on any failure. Never raises.
    """
    token: str | None = request.cookies.get(ACCESS_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    if not token:
        return None

    codec: TokenCodec = request.app.state.token_codec
    claims = codec.validate_access(token)
    if claims is None:
        return None
    user = request.app.state.user_store.find_by_id(claims.user_id)
    if user is None or not user.is_active:
        return None
    return user


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "AUTH_SESSION_INVALID", "message": "Authentication required."},
        )
    return user


# ---------------------------------------------------------------------------
# Cookies
# ---------------------------------------------------------------------------


def _max_age(expires_at: datetime) -> int:
    return max(0, int((expires_at - datetime.now(timezone.utc)).total_seconds()))


def set_auth_cookies(response: Response, tokens: TokenPair, secure: bool) -> None:
    """Attach both credentials as httpOnly, SameSite=strict cookies."""
    response.set_cookie(
        key=ACCESS_COOKIE,
        value=tokens.access_token,
        max_age=_max_age(tokens.access_token_expires_at),
        httponly=True,
        secure=secure,
        samesite="strict",
        path="/",
    )
    response.set_cookie(
        key=REFRESH_COOKIE,
        value=tokens.refresh_token,
        max_age=_max_age(tokens.refresh_token_expires_at),
        httponly=True,
        secure=secure,
        samesite="strict",
        path=REFRESH_COOKIE_PATH,
    )


def clear_auth_cookies(response: Response, secure: bool) -> None:
    response.delete_cookie(ACCESS_COOKIE, path="/", httponly=True, secure=secure, samesite="strict")
    response.delete_cookie(
        REFRESH_COOKIE, path=REFRESH_COOKIE_PATH, httponly=True, secure=secure, samesite="strict"
    )
