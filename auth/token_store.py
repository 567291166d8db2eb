"""
auth/token_store.py -- SQLAlchemy Core persistence for secret tokens.

Holds refresh tokens, magic-link tokens and password-reset tokens. Every row
is keyed by sha256(raw_token); the raw value never reaches this module.

Concurrency contract:
  Every "mark" operation is ONE conditional UPDATE:
      revoke      ... WHERE id = :id AND revoked_at IS NULL
      revoke all  ... WHERE user_id = :uid AND revoked_at IS NULL
      mark used   ... WHERE id = :id AND used_at IS NULL
  The returned row count tells the caller whether it won. Two processes
  rotating the same refresh token both read an active row, but only one
  UPDATE matches; the other sees rowcount == 0. Do not replace this with a
  read-then-write guarded by an in-process lock -- that does not hold across
  workers.

Records are never deleted here. Retention is somebody else's job.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, MetaData, String, Table
from sqlalchemy.engine import Engine

from auth.models import LinkTokenKind, LinkTokenRecord, RefreshTokenRecord, RevokedReason
from auth.store import _DEFAULT_DB_URL, create_store_engine, from_iso, new_id, now_iso, to_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # SHA-256 hex
    Column("device_fingerprint", String(64), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("revoked_at", String(32)),
    Column("revoked_reason", String(32)),
)


def _link_table(name: str) -> Table:
    return Table(
        name,
        _metadata,
        Column("id", String(36), primary_key=True),
        Column("user_id", String(36), nullable=False, index=True),
        Column("token_hash", String(64), nullable=False, unique=True),
        Column("expires_at", String(32), nullable=False),
        Column("created_at", String(32), nullable=False),
        Column("used_at", String(32)),
    )


_link_tables: dict[LinkTokenKind, Table] = {
    LinkTokenKind.MAGIC_LINK: _link_table("magic_link_tokens"),
    LinkTokenKind.PASSWORD_RESET: _link_table("password_reset_tokens"),
}


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SecretTokenStore:
    """Repository for hashed refresh and link tokens.

    Usage:
        store = SecretTokenStore("sqlite:///:memory:")
        record = store.insert_refresh_token(user_id, hash_token(raw), fingerprint, expires_at)
        store.find_refresh_token(hash_token(raw))
        store.revoke_refresh_token(record.id, RevokedReason.ROTATION)  # True once, then False
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = create_store_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Refresh tokens
    # ------------------------------------------------------------------

    def insert_refresh_token(
        self,
        user_id: str,
        token_hash: str,
        device_fingerprint: str,
        expires_at: datetime,
    ) -> RefreshTokenRecord:
        record = RefreshTokenRecord(
            id=new_id(),
            user_id=user_id,
            token_hash=token_hash,
            device_fingerprint=device_fingerprint,
            expires_at=expires_at,
        )
        stamp = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _refresh_tokens.insert().values(
                    id=record.id,
                    user_id=user_id,
                    token_hash=token_hash,
                    device_fingerprint=device_fingerprint,
                    expires_at=to_iso(expires_at),
                    created_at=stamp,
                )
            )
            conn.commit()
        record.created_at = from_iso(stamp)
        return record

    def find_refresh_token(self, token_hash: str) -> RefreshTokenRecord | None:
        """Look up a refresh token by hash regardless of state. O(1) via UNIQUE index."""
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.token_hash == token_hash)).fetchone()
        return _row_to_refresh_token(row) if row is not None else None

    def revoke_refresh_token(self, token_id: str, reason: RevokedReason) -> bool:
        """Revoke one token. Returns True only for the caller whose UPDATE flipped the row."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.id == token_id) & (_refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=now_iso(), revoked_reason=RevokedReason(reason).value)
            )
            conn.commit()
        return result.rowcount > 0

    def revoke_user_refresh_token(self, user_id: str, token_id: str, reason: RevokedReason) -> bool:
        """Revoke one token only if it belongs to user_id and is still active."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where(
                    (_refresh_tokens.c.id == token_id)
                    & (_refresh_tokens.c.user_id == user_id)
                    & (_refresh_tokens.c.revoked_at.is_(None))
                )
                .values(revoked_at=now_iso(), revoked_reason=RevokedReason(reason).value)
            )
            conn.commit()
        return result.rowcount > 0

    def revoke_all_for_user(self, user_id: str, reason: RevokedReason) -> int:
        """Revoke every still-active token of a user. Returns the number of rows revoked."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update()
                .where((_refresh_tokens.c.user_id == user_id) & (_refresh_tokens.c.revoked_at.is_(None)))
                .values(revoked_at=now_iso(), revoked_reason=RevokedReason(reason).value)
            )
            conn.commit()
        return result.rowcount

    def list_active_refresh_tokens(self, user_id: str) -> list[RefreshTokenRecord]:
        """Return non-revoked, non-expired tokens for a user, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _refresh_tokens.select()
                .where(
                    (_refresh_tokens.c.user_id == user_id)
                    & (_refresh_tokens.c.revoked_at.is_(None))
                    & (_refresh_tokens.c.expires_at > to_iso(datetime.now(timezone.utc)))
                )
                .order_by(_refresh_tokens.c.created_at.desc())
            ).fetchall()
        return [_row_to_refresh_token(r) for r in rows]

    # ------------------------------------------------------------------
    # Link tokens (magic link, password reset)
    # ------------------------------------------------------------------

    def insert_link_token(
        self,
        kind: LinkTokenKind,
        user_id: str,
        token_hash: str,
        expires_at: datetime,
    ) -> LinkTokenRecord:
        table = _link_tables[LinkTokenKind(kind)]
        record = LinkTokenRecord(
            id=new_id(),
            kind=LinkTokenKind(kind),
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
        )
        stamp = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                table.insert().values(
                    id=record.id,
                    user_id=user_id,
                    token_hash=token_hash,
                    expires_at=to_iso(expires_at),
                    created_at=stamp,
                )
            )
            conn.commit()
        record.created_at = from_iso(stamp)
        return record

    def find_link_token(self, kind: LinkTokenKind, token_hash: str) -> LinkTokenRecord | None:
        table = _link_tables[LinkTokenKind(kind)]
        with self.engine.connect() as conn:
            row = conn.execute(table.select().where(table.c.token_hash == token_hash)).fetchone()
        return _row_to_link_token(row, LinkTokenKind(kind)) if row is not None else None

    def mark_link_token_used(self, kind: LinkTokenKind, token_id: str) -> bool:
        """Stamp used_at. Returns True only for the caller that consumed the token."""
        table = _link_tables[LinkTokenKind(kind)]
        with self.engine.connect() as conn:
            result = conn.execute(
                table.update().where((table.c.id == token_id) & (table.c.used_at.is_(None))).values(used_at=now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_refresh_token(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        user_id=row.user_id,
        token_hash=row.token_hash,
        device_fingerprint=row.device_fingerprint,
        expires_at=from_iso(row.expires_at),
        created_at=from_iso(row.created_at),
        revoked_at=from_iso(row.revoked_at),
        revoked_reason=row.revoked_reason,
    )


def _row_to_link_token(row, kind: LinkTokenKind) -> LinkTokenRecord:
    return LinkTokenRecord(
        id=row.id,
        kind=kind,
        user_id=row.user_id,
        token_hash=row.token_hash,
        expires_at=from_iso(row.expires_at),
        created_at=from_iso(row.created_at),
        used_at=from_iso(row.used_at),
    )
