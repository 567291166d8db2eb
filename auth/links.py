"""
auth/links.py -- Single-use, short-lived tokens delivered by email.

One LinkTokenService per purpose:
    magic link      15 minutes
    password reset  1 hour

Same storage primitives as refresh tokens (hash-only persistence), minus the
device binding. validate() collapses "not found", "already used" and
"expired" into one None so callers cannot leak which it was.

Callers must invalidate() right after a successful validate(), before doing
the thing the token authorizes. A token burned without its action completing
is recoverable (request a new link); a replayable token is not.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from auth.models import LinkTokenKind, LinkTokenPayload
from auth.token_store import SecretTokenStore
from auth.tokens import generate_raw_token, hash_token

logger = logging.getLogger("authcore.links")

MAGIC_LINK_TTL = timedelta(minutes=15)
PASSWORD_RESET_TTL = timedelta(hours=1)


class LinkTokenService:
    """Issue, validate and consume one kind of link token.

    Usage:
        magic_links = LinkTokenService(store, LinkTokenKind.MAGIC_LINK, MAGIC_LINK_TTL)
        raw = magic_links.issue(user.id)
        payload = magic_links.validate(raw)      # LinkTokenPayload or None
        if payload and magic_links.invalidate(raw): ...
    """

    def __init__(self, store: SecretTokenStore, kind: LinkTokenKind, ttl: timedelta) -> None:
        self.store = store
        self.kind = LinkTokenKind(kind)
        self.ttl = ttl

    def issue(self, user_id: str, ttl: timedelta | None = None) -> str:
        """Create a token for user_id and return the raw value. Only its hash is stored."""
        raw_token = generate_raw_token()
        expires_at = datetime.now(timezone.utc) + (ttl if ttl is not None else self.ttl)
        self.store.insert_link_token(self.kind, user_id, hash_token(raw_token), expires_at)
        return raw_token

    def validate(self, raw_token: str) -> LinkTokenPayload | None:
        if not raw_token:
            return None
        record = self.store.find_link_token(self.kind, hash_token(raw_token))
        if record is None:
            logger.debug("%s token rejected: not found", self.kind.value)
            return None
        if record.used_at is not None:
            logger.debug("%s token %s rejected: already used", self.kind.value, record.id)
            return None
        if record.expires_at <= datetime.now(timezone.utc):
            logger.debug("%s token %s rejected: expired", self.kind.value, record.id)
            return None
        return LinkTokenPayload(user_id=record.user_id, token_id=record.id)

    def invalidate(self, raw_token: str) -> bool:
        """Mark the token used. Returns False if it was unknown or somebody consumed it first."""
        record = self.store.find_link_token(self.kind, hash_token(raw_token))
        if record is None:
            return False
        return self.store.mark_link_token_used(self.kind, record.id)
