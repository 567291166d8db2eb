"""
auth/tokens.py -- Access-token codec and raw secret-token helpers.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry userId, type, iat and exp only.
       Validation returns None on any failure -- wrong secret, expiry,
       malformed input, wrong type, bad userId -- so callers cannot build an
       oracle out of the failure reason. The route layer turns None into 401.

  Secret tokens (refresh, magic link, password reset): secrets.token_hex(32)
       gives 256 bits of entropy. Only sha256(raw) is persisted, which makes
       lookup O(1) by index. bcrypt's intentional slowness is unnecessary for
       high-entropy values.

  Signing secret: TokenCodec refuses to construct with a missing or short
       secret. core.config applies the same rule when the process starts,
       so a bad key never reaches request handling.

Layer rule: no imports from api/ or core/. The caller passes the secret in.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from datetime import datetime, timezone

from jose import JWTError, jwt

from auth.errors import ConfigurationError
from auth.models import AccessTokenClaims

logger = logging.getLogger("authcore.auth")

_ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"
ACCESS_TOKEN_TTL_SECONDS = 15 * 60
MIN_SECRET_LENGTH = 32

# ---------------------------------------------------------------------------
# Raw secret tokens
# ---------------------------------------------------------------------------


def generate_raw_token() -> str:
    """Return 32 cryptographically random bytes as 64 hex characters."""
    return secrets.token_hex(32)


def hash_token(raw_token: str) -> str:
    """Return the SHA-256 hex digest of a raw token. This is the only form that is stored."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Access token codec
# ---------------------------------------------------------------------------


class TokenCodec:
    """Issue and validate signed, stateless access tokens.

    Usage:
        codec = TokenCodec(settings.secret_key)
        token, expires_at = codec.issue_access(user.id)
        claims = codec.validate_access(token)   # AccessTokenClaims or None
    """

    def __init__(self, secret_key: str, ttl_seconds: int = ACCESS_TOKEN_TTL_SECONDS) -> None:
        if not secret_key or len(secret_key) < MIN_SECRET_LENGTH:
            raise ConfigurationError(f"Access-token signing secret must be at least {MIN_SECRET_LENGTH} characters.")
        self._secret_key = secret_key
        self.ttl_seconds = ttl_seconds

    def issue_access(self, user_id: str) -> tuple[str, datetime]:
        """Sign {userId, type, iat, exp} and return (token, expires_at).

        iat and exp are integer epoch seconds; expires_at is the same instant
        as a UTC datetime for the caller's response payload.
        """
        issued_at = int(datetime.now(timezone.utc).timestamp())
        expires = issued_at + self.ttl_seconds
        payload = {
            "userId": user_id,
            "type": ACCESS_TOKEN_TYPE,
            "iat": issued_at,
            "exp": expires,
        }
        token = jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        return token, datetime.fromtimestamp(expires, tz=timezone.utc)

    def validate_access(self, token: str) -> AccessTokenClaims | None:
        """Verify signature, expiry, type and userId. Returns the claims or None on any failure."""
        if not token or not isinstance(token, str):
            return None
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError as exc:
            logger.debug("Access token rejected: %s", type(exc).__name__)
            return None
        if payload.get("type") != ACCESS_TOKEN_TYPE:
            return None
        user_id = payload.get("userId")
        if not isinstance(user_id, str) or not user_id:
            return None
        issued_at = payload.get("iat")
        expires_at = payload.get("exp")
        if not isinstance(issued_at, int) or not isinstance(expires_at, int):
            return None
        return AccessTokenClaims(user_id=user_id, issued_at=issued_at, expires_at=expires_at)
