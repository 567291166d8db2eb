"""
auth/sessions.py -- Refresh-token issuance, rotation and revocation.

State machine per refresh token:

    active --rotate()--------> rotated  (revoked_reason = rotation)
    active --revoke*()-------> revoked  (logout / logout_all / device_mismatch / password_reset)
    active --time passes-----> expired  (detected on read, never stored)

rotated, revoked and expired are terminal. A successor token is minted only
by the caller whose conditional revoke of the predecessor actually flipped
the row, so one refresh token can never produce two successors.

Device binding: a refresh token is bound to the fingerprint it was issued
with. Presenting it from any other fingerprint is treated as theft and
revokes EVERY session of the user, not just the presented one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from auth.errors import DeviceMismatchError, TokenExpiredError, TokenInvalidError
from auth.models import RevokedReason, Session, TokenPair
from auth.token_store import SecretTokenStore
from auth.tokens import TokenCodec, generate_raw_token, hash_token

logger = logging.getLogger("authcore.sessions")

REFRESH_TOKEN_TTL = timedelta(days=7)


@dataclass(frozen=True)
class RotationResult:
    user_id: str
    tokens: TokenPair


class SessionRotationEngine:
    def __init__(
        self,
        store: SecretTokenStore,
        codec: TokenCodec,
        refresh_ttl: timedelta = REFRESH_TOKEN_TTL,
    ) -> None:
        self.store = store
        self.codec = codec
        self.refresh_ttl = refresh_ttl

    def issue(self, user_id: str, device_fingerprint: str) -> TokenPair:
        """Mint a new access + refresh pair bound to device_fingerprint."""
        access_token, access_expires_at = self.codec.issue_access(user_id)
        raw_refresh = generate_raw_token()
        refresh_expires_at = datetime.now(timezone.utc) + self.refresh_ttl
        self.store.insert_refresh_token(user_id, hash_token(raw_refresh), device_fingerprint, refresh_expires_at)
        return TokenPair(
            access_token=access_token,
            refresh_token=raw_refresh,
            access_token_expires_at=access_expires_at,
            refresh_token_expires_at=refresh_expires_at,
        )

    def rotate(self, raw_token: str, device_fingerprint: str) -> RotationResult:
        """Exchange a refresh token for a fresh pair.

        Raises:
            TokenInvalidError:   unknown, already revoked, or lost a concurrent rotation.
            TokenExpiredError:   past expires_at.
            DeviceMismatchError: fingerprint differs; all of the user's tokens are revoked first.
        """
        record = self.store.find_refresh_token(hash_token(raw_token))
        if record is None:
            raise TokenInvalidError("refresh token not found")
        if record.revoked_at is not None:
            logger.info("Refresh token %s presented after revocation (%s)", record.id, record.revoked_reason)
            raise TokenInvalidError("refresh token revoked")
        if record.expires_at <= datetime.now(timezone.utc):
            raise TokenExpiredError("refresh token expired")
        if record.device_fingerprint != device_fingerprint:
            revoked = self.store.revoke_all_for_user(record.user_id, RevokedReason.DEVICE_MISMATCH)
            logger.warning(
                "Device fingerprint mismatch on refresh token %s -- revoked %d session(s) for user %s",
                record.id,
                revoked,
                record.user_id,
            )
            raise DeviceMismatchError("device fingerprint mismatch")

        if not self.store.revoke_refresh_token(record.id, RevokedReason.ROTATION):
            # Another request revoked this row between our read and our update.
            logger.warning("Lost rotation race on refresh token %s", record.id)
            raise TokenInvalidError("refresh token already rotated")

        return RotationResult(user_id=record.user_id, tokens=self.issue(record.user_id, device_fingerprint))

    def revoke_one(self, raw_token: str) -> str | None:
        """Revoke the session behind raw_token (logout).

        Returns the owning user id when the token is known, None otherwise.
        Revoking an already-revoked token is a no-op.
        """
        record = self.store.find_refresh_token(hash_token(raw_token))
        if record is None:
            return None
        self.store.revoke_refresh_token(record.id, RevokedReason.LOGOUT)
        return record.user_id

    def revoke_session(self, user_id: str, session_id: str) -> bool:
        """Revoke one of user_id's sessions by id (the id shown in session listings).

        False when the id is unknown, belongs to another user, or is already revoked.
        """
        return self.store.revoke_user_refresh_token(user_id, session_id, RevokedReason.LOGOUT)

    def revoke_all(self, user_id: str, reason: RevokedReason = RevokedReason.LOGOUT_ALL) -> int:
        """Revoke every active session for user_id. Returns how many were still active."""
        return self.store.revoke_all_for_user(user_id, reason)

    def active_sessions(self, user_id: str) -> list[Session]:
        return [Session.from_record(r) for r in self.store.list_active_refresh_tokens(user_id)]
