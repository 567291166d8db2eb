"""
auth/store.py -- SQLAlchemy Core persistence for users, consents and audit logs.

Pattern: Repository + Data Mapper (same as auth/token_store.py).
UserStore, ConsentStore and AuditStore are the repositories; the _row_to_*
functions are the mappers. Services never touch SQL directly.

These are the default implementations of the collaborators the orchestrator
consumes (user directory, consent ledger, audit sink). Any object with the
same methods can be injected instead.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Email uniqueness is case-insensitive: the value is lower-cased by the
  database on insert (func.lower) and compared as lower(email) = lower(:email)
  on lookup, so two concurrent signups for "A@x.com" and "a@X.com" collide on
  the UNIQUE index instead of racing an application-side check.

Timestamps are stored as ISO 8601 UTC strings with fixed microsecond precision
so that lexicographic comparison in SQL matches chronological order.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, MetaData, String, Table, Text, create_engine, event, func
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import EmailExistsError
from auth.models import AuditEvent, AuthEventType, ConsentRecord, ConsentType, User, UserStatus

_DEFAULT_DB_URL = "sqlite:///./authcore.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),  # always lower-cased
    Column("password_hash", String(255)),  # NULL for magic-link-only accounts
    Column("email_verified", Boolean, nullable=False, server_default="0"),
    Column("status", String(20), nullable=False, server_default=UserStatus.ACTIVE.value),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login_at", String(32)),
)

_consents = Table(
    "consent_records",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("consent_type", String(50), nullable=False),
    Column("consent_version", String(20), nullable=False),
    Column("ip_address", String(45), nullable=False),
    Column("user_agent", Text),
    Column("granted_at", String(32), nullable=False),
)

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("event_type", String(50), nullable=False, index=True),
    Column("user_id", String(36), index=True),
    Column("ip_address", String(45), nullable=False),
    Column("user_agent", Text),
    Column("request_id", String(36), nullable=False),
    Column("success", Boolean, nullable=False),
    Column("error_code", String(50)),
    Column("event_metadata", Text),  # JSON object serialized as text
    Column("created_at", String(32), nullable=False, index=True),
)


# ---------------------------------------------------------------------------
# Engine + time helpers (shared with auth/token_store.py)
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_store_engine(db_url: str) -> Engine:
    """Create an Engine with the SQLite tweaks every auth store needs."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# User directory
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user = store.create_user("bob@x.com", hasher.hash("pass1234"))
        store.find_by_email("BOB@x.com")  # same user
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = create_store_engine(db_url)
        _metadata.create_all(self.engine)

    def create_user(self, email: str, password_hash: str | None) -> User:
        """Insert a new user and return it.

        Raises EmailExistsError if the email (case-insensitive) already exists.
        The UNIQUE index is the authoritative check when two signups race past
        find_by_email().
        """
        user_id = new_id()
        stamp = now_iso()
        with self.engine.connect() as conn:
            try:
                conn.execute(
                    _users.insert().values(
                        id=user_id,
                        email=func.lower(email.strip()),
                        password_hash=password_hash,
                        email_verified=False,
                        status=UserStatus.ACTIVE.value,
                        created_at=stamp,
                        updated_at=stamp,
                    )
                )
                conn.commit()
            except IntegrityError as exc:
                conn.rollback()
                raise EmailExistsError("email already registered") from exc
        created = self.find_by_id(user_id)
        if created is None:  # pragma: no cover - insert just succeeded
            raise RuntimeError("User not found after insert.")
        return created

    def find_by_email(self, email: str) -> User | None:
        """Case-insensitive lookup. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(func.lower(_users.c.email) == func.lower(email.strip()))
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_password(self, user_id: str, password_hash: str) -> bool:
        """Replace the stored hash. Returns True if a row was updated."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(password_hash=password_hash, updated_at=now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: str) -> None:
        """Stamp the current UTC timestamp as last_login_at for the given user."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login_at=now_iso()))
            conn.commit()

    def set_status(self, user_id: str, status: UserStatus) -> bool:
        """Change account status (operator action). Returns True if a row was updated."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(status=status.value, updated_at=now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Consent ledger
# ---------------------------------------------------------------------------


class ConsentStore:
    """Append-only consent grants recorded at signup."""

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = create_store_engine(db_url)
        _metadata.create_all(self.engine)

    def create_consent(
        self,
        user_id: str,
        consent_type: ConsentType,
        consent_version: str,
        ip_address: str,
        user_agent: str,
    ) -> ConsentRecord:
        record = ConsentRecord(
            id=new_id(),
            user_id=user_id,
            consent_type=consent_type,
            consent_version=consent_version,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        stamp = now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _consents.insert().values(
                    id=record.id,
                    user_id=user_id,
                    consent_type=consent_type.value,
                    consent_version=consent_version,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    granted_at=stamp,
                )
            )
            conn.commit()
        record.granted_at = from_iso(stamp)
        return record

    def list_for_user(self, user_id: str) -> list[ConsentRecord]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _consents.select().where(_consents.c.user_id == user_id).order_by(_consents.c.granted_at)
            ).fetchall()
        return [_row_to_consent(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Audit sink
# ---------------------------------------------------------------------------


class AuditStore:
    """Write-only audit log (list_events exists for operators and tests)."""

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = create_store_engine(db_url)
        _metadata.create_all(self.engine)

    def create_audit_log(self, event: AuditEvent) -> str:
        """Persist one audit entry and return its id."""
        entry_id = new_id()
        with self.engine.connect() as conn:
            conn.execute(
                _audit_logs.insert().values(
                    id=entry_id,
                    event_type=event.event_type.value,
                    user_id=event.user_id,
                    ip_address=event.ip_address,
                    user_agent=event.user_agent,
                    request_id=event.request_id,
                    success=event.success,
                    error_code=event.error_code,
                    event_metadata=json.dumps(event.metadata or {}, default=str),
                    created_at=now_iso(),
                )
            )
            conn.commit()
        return entry_id

    def list_events(self, user_id: str | None = None, limit: int = 100) -> list[AuditEvent]:
        """Return recent audit entries, newest first, optionally for one user."""
        query = _audit_logs.select()
        if user_id is not None:
            query = query.where(_audit_logs.c.user_id == user_id)
        query = query.order_by(_audit_logs.c.created_at.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_audit_event(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        email_verified=bool(row.email_verified),
        status=UserStatus(row.status),
        created_at=from_iso(row.created_at),
        updated_at=from_iso(row.updated_at),
        last_login_at=from_iso(row.last_login_at),
    )


def _row_to_consent(row) -> ConsentRecord:
    return ConsentRecord(
        id=row.id,
        user_id=row.user_id,
        consent_type=ConsentType(row.consent_type),
        consent_version=row.consent_version,
        ip_address=row.ip_address,
        user_agent=row.user_agent or "",
        granted_at=from_iso(row.granted_at),
    )


def _row_to_audit_event(row) -> AuditEvent:
    return AuditEvent(
        event_type=AuthEventType(row.event_type),
        user_id=row.user_id,
        ip_address=row.ip_address,
        user_agent=row.user_agent or "",
        request_id=row.request_id,
        success=bool(row.success),
        error_code=row.error_code,
        metadata=json.loads(row.event_metadata) if row.event_metadata else {},
    )
