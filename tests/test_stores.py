"""Unit tests for auth/store.py -- users, consents, audit log.

Covers:
- email uniqueness is case-insensitive and enforced by the database
- lookups by email ignore case; stored email is lower-cased
- update_password / update_last_login / set_status
- consent grants and audit entries persist and read back
"""

import pytest

from auth.errors import EmailExistsError
from auth.models import AuditEvent, AuthEventType, ConsentType, UserStatus
from auth.store import AuditStore, ConsentStore, UserStore


class TestUserStore:
    def test_create_and_find(self, user_store: UserStore) -> None:
        user = user_store.create_user("Bob@X.com", "hash")
        assert user.email == "bob@x.com"
        assert user.status is UserStatus.ACTIVE
        assert user.email_verified is False
        assert user_store.find_by_id(user.id).email == "bob@x.com"

    def test_email_lookup_is_case_insensitive(self, user_store: UserStore) -> None:
        user = user_store.create_user("bob@x.com", "hash")
        assert user_store.find_by_email("BOB@X.COM").id == user.id
        assert user_store.find_by_email("  bob@x.com ").id == user.id

    def test_duplicate_email_differing_in_case(self, user_store: UserStore) -> None:
        user_store.create_user("A@x.com", "hash")
        with pytest.raises(EmailExistsError):
            user_store.create_user("a@X.com", "hash")

    def test_distinct_emails_both_succeed(self, user_store: UserStore) -> None:
        a = user_store.create_user("a@x.com", "hash")
        b = user_store.create_user("b@x.com", "hash")
        assert a.id != b.id

    def test_store_usable_after_duplicate(self, user_store: UserStore) -> None:
        user_store.create_user("a@x.com", "hash")
        with pytest.raises(EmailExistsError):
            user_store.create_user("A@x.com", "hash")
        assert user_store.create_user("c@x.com", "hash").email == "c@x.com"

    def test_magic_link_only_account(self, user_store: UserStore) -> None:
        user = user_store.create_user("nopass@x.com", None)
        assert user.password_hash is None

    def test_update_password(self, user_store: UserStore) -> None:
        user = user_store.create_user("bob@x.com", "old")
        assert user_store.update_password(user.id, "new") is True
        assert user_store.find_by_id(user.id).password_hash == "new"
        assert user_store.update_password("missing", "new") is False

    def test_update_last_login(self, user_store: UserStore) -> None:
        user = user_store.create_user("bob@x.com", "hash")
        assert user.last_login_at is None
        user_store.update_last_login(user.id)
        assert user_store.find_by_id(user.id).last_login_at is not None

    def test_set_status(self, user_store: UserStore) -> None:
        user = user_store.create_user("bob@x.com", "hash")
        user_store.set_status(user.id, UserStatus.SUSPENDED)
        assert user_store.find_by_id(user.id).is_active is False


class TestConsentStore:
    def test_create_and_list(self, consent_store: ConsentStore) -> None:
        for consent_type in ConsentType:
            consent_store.create_consent("u1", consent_type, "1.0", "10.0.0.1", "pytest")
        records = consent_store.list_for_user("u1")
        assert {r.consent_type for r in records} == set(ConsentType)
        assert all(r.consent_version == "1.0" and r.granted_at is not None for r in records)
        assert consent_store.list_for_user("u2") == []


class TestAuditStore:
    def test_round_trip(self, audit_store: AuditStore) -> None:
        event = AuditEvent(
            event_type=AuthEventType.LOGIN_PASSWORD,
            user_id="u1",
            ip_address="10.0.0.1",
            user_agent="pytest",
            request_id="req-1",
            success=False,
            error_code="AUTH_INVALID_CREDENTIALS",
            metadata={"reason": "invalid_password"},
        )
        assert audit_store.create_audit_log(event)
        [stored] = audit_store.list_events(user_id="u1")
        assert stored == event

    def test_anonymous_events_and_limit(self, audit_store: AuditStore) -> None:
        for i in range(3):
            audit_store.create_audit_log(
                AuditEvent(
                    event_type=AuthEventType.LOGIN_MAGIC_LINK,
                    user_id=None,
                    ip_address="10.0.0.1",
                    user_agent="",
                    request_id=f"req-{i}",
                    success=False,
                )
            )
        events = audit_store.list_events(limit=2)
        assert len(events) == 2
        assert events[0].request_id == "req-2"
