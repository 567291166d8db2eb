"""Unit tests for auth/sessions.py -- refresh-token rotation engine.

Covers:
- issue() returns a usable pair and persists only the hash
- rotate() happy path: old token dead, successor works
- rotate() failure ladder: unknown, revoked, expired, device mismatch
- device mismatch revokes EVERY session of the user, not just the presented one
- a rotation that loses the conditional revoke mints no successor, including
  under real threads against a file-backed database
- revoke_session() only ends the owner's still-active session
- revoke_one() / revoke_all() are idempotent
"""

import threading
from datetime import timedelta

import pytest

from auth.errors import DeviceMismatchError, TokenExpiredError, TokenInvalidError
from auth.models import RevokedReason
from auth.sessions import SessionRotationEngine
from auth.token_store import SecretTokenStore
from auth.tokens import TokenCodec, hash_token
from conftest import FP_A, FP_B, FP_C


class TestIssue:
    def test_issue_pair(self, sessions: SessionRotationEngine, codec: TokenCodec, token_store: SecretTokenStore) -> None:
        pair = sessions.issue("u1", FP_A)
        assert codec.validate_access(pair.access_token).user_id == "u1"
        record = token_store.find_refresh_token(hash_token(pair.refresh_token))
        assert record is not None
        assert record.device_fingerprint == FP_A
        assert pair.refresh_token_expires_at > pair.access_token_expires_at

    def test_refresh_ttl_is_seven_days(self, sessions: SessionRotationEngine, token_store: SecretTokenStore) -> None:
        pair = sessions.issue("u1", FP_A)
        record = token_store.find_refresh_token(hash_token(pair.refresh_token))
        lifetime = record.expires_at - record.created_at
        assert timedelta(days=7) - timedelta(seconds=5) < lifetime <= timedelta(days=7)


class TestRotate:
    def test_rotate_returns_new_pair(self, sessions: SessionRotationEngine) -> None:
        first = sessions.issue("u1", FP_A)
        result = sessions.rotate(first.refresh_token, FP_A)
        assert result.user_id == "u1"
        assert result.tokens.refresh_token != first.refresh_token

    def test_old_token_is_dead_after_rotation(self, sessions: SessionRotationEngine, token_store: SecretTokenStore) -> None:
        first = sessions.issue("u1", FP_A)
        second = sessions.rotate(first.refresh_token, FP_A).tokens
        with pytest.raises(TokenInvalidError):
            sessions.rotate(first.refresh_token, FP_A)
        assert token_store.find_refresh_token(hash_token(first.refresh_token)).revoked_reason == "rotation"
        # The successor is still good.
        sessions.rotate(second.refresh_token, FP_A)

    def test_unknown_token(self, sessions: SessionRotationEngine) -> None:
        with pytest.raises(TokenInvalidError):
            sessions.rotate("f" * 64, FP_A)

    def test_revoked_token(self, sessions: SessionRotationEngine) -> None:
        pair = sessions.issue("u1", FP_A)
        sessions.revoke_one(pair.refresh_token)
        with pytest.raises(TokenInvalidError):
            sessions.rotate(pair.refresh_token, FP_A)

    def test_expired_token(self, token_store: SecretTokenStore, codec: TokenCodec) -> None:
        engine = SessionRotationEngine(token_store, codec, refresh_ttl=timedelta(seconds=-1))
        pair = engine.issue("u1", FP_A)
        with pytest.raises(TokenExpiredError):
            engine.rotate(pair.refresh_token, FP_A)

    def test_revoked_checked_before_expiry(self, token_store: SecretTokenStore, codec: TokenCodec) -> None:
        engine = SessionRotationEngine(token_store, codec, refresh_ttl=timedelta(seconds=-1))
        pair = engine.issue("u1", FP_A)
        engine.revoke_one(pair.refresh_token)
        with pytest.raises(TokenInvalidError):
            engine.rotate(pair.refresh_token, FP_A)


class TestDeviceMismatch:
    def test_mismatch_revokes_every_session(self, sessions: SessionRotationEngine) -> None:
        t1 = sessions.issue("u1", FP_A)
        t2 = sessions.issue("u1", FP_B)
        t3 = sessions.issue("u1", FP_C)
        other_user = sessions.issue("u2", FP_A)

        with pytest.raises(DeviceMismatchError):
            sessions.rotate(t1.refresh_token, FP_B)

        assert sessions.active_sessions("u1") == []
        for pair, fp in ((t1, FP_A), (t2, FP_B), (t3, FP_C)):
            with pytest.raises(TokenInvalidError):
                sessions.rotate(pair.refresh_token, fp)
        # Another user's sessions are untouched.
        sessions.rotate(other_user.refresh_token, FP_A)

    def test_mismatch_reason_recorded(self, sessions: SessionRotationEngine, token_store: SecretTokenStore) -> None:
        t1 = sessions.issue("u1", FP_A)
        t2 = sessions.issue("u1", FP_B)
        with pytest.raises(DeviceMismatchError):
            sessions.rotate(t2.refresh_token, FP_A)
        for pair in (t1, t2):
            assert token_store.find_refresh_token(hash_token(pair.refresh_token)).revoked_reason == "device_mismatch"


class TestRotationRace:
    def test_loser_gets_invalid_and_mints_nothing(
        self, sessions: SessionRotationEngine, token_store: SecretTokenStore, monkeypatch
    ) -> None:
        """Two callers read the same active row; only one conditional revoke matches."""
        pair = sessions.issue("u1", FP_A)
        stale = token_store.find_refresh_token(hash_token(pair.refresh_token))

        winner = sessions.rotate(pair.refresh_token, FP_A)

        # The loser still sees the pre-rotation snapshot on read.
        monkeypatch.setattr(token_store, "find_refresh_token", lambda token_hash: stale)
        with pytest.raises(TokenInvalidError):
            sessions.rotate(pair.refresh_token, FP_A)
        monkeypatch.undo()

        active = sessions.active_sessions("u1")
        assert len(active) == 1
        assert token_store.find_refresh_token(hash_token(winner.tokens.refresh_token)).id == active[0].id

    def test_concurrent_rotations_yield_one_successor(self, tmp_path, codec: TokenCodec) -> None:
        store = SecretTokenStore(f"sqlite:///{tmp_path / 'race.db'}")
        engine = SessionRotationEngine(store, codec)
        pair = engine.issue("u1", FP_A)

        threads_n = 8
        barrier = threading.Barrier(threads_n, timeout=10)
        winners, losers, unexpected = [], [], []

        def rotate_once() -> None:
            barrier.wait()
            try:
                winners.append(engine.rotate(pair.refresh_token, FP_A))
            except TokenInvalidError:
                losers.append(True)
            except Exception as exc:
                unexpected.append(exc)

        threads = [threading.Thread(target=rotate_once) for _ in range(threads_n)]
        try:
            for t in threads:
                t.start()
            for t in threads:
                t.join(timeout=30)

            assert unexpected == []
            assert len(winners) == 1
            assert len(losers) == threads_n - 1
            active = engine.active_sessions("u1")
            assert [s.id for s in active] == [
                store.find_refresh_token(hash_token(winners[0].tokens.refresh_token)).id
            ]
        finally:
            store.close()


class TestRevocation:
    def test_revoke_one_returns_owner(self, sessions: SessionRotationEngine) -> None:
        pair = sessions.issue("u1", FP_A)
        assert sessions.revoke_one(pair.refresh_token) == "u1"
        # Idempotent.
        assert sessions.revoke_one(pair.refresh_token) == "u1"

    def test_revoke_one_unknown(self, sessions: SessionRotationEngine) -> None:
        assert sessions.revoke_one("0" * 64) is None

    def test_revoke_all(self, sessions: SessionRotationEngine, token_store: SecretTokenStore) -> None:
        pairs = [sessions.issue("u1", fp) for fp in (FP_A, FP_B)]
        assert sessions.revoke_all("u1") == 2
        assert sessions.revoke_all("u1") == 0
        for pair in pairs:
            assert token_store.find_refresh_token(hash_token(pair.refresh_token)).revoked_reason == "logout_all"

    def test_revoke_all_custom_reason(self, sessions: SessionRotationEngine, token_store: SecretTokenStore) -> None:
        pair = sessions.issue("u1", FP_A)
        sessions.revoke_all("u1", RevokedReason.PASSWORD_RESET)
        assert token_store.find_refresh_token(hash_token(pair.refresh_token)).revoked_reason == "password_reset"

    def test_active_sessions_view(self, sessions: SessionRotationEngine) -> None:
        sessions.issue("u1", FP_A)
        sessions.issue("u1", FP_B)
        listed = sessions.active_sessions("u1")
        assert {s.device_fingerprint for s in listed} == {FP_A, FP_B}
        assert all(s.user_id == "u1" for s in listed)


class TestRevokeSession:
    def test_revokes_only_that_session(self, sessions: SessionRotationEngine, token_store: SecretTokenStore) -> None:
        laptop = sessions.issue("u1", FP_A)
        phone = sessions.issue("u1", FP_B)
        target = token_store.find_refresh_token(hash_token(phone.refresh_token))

        assert sessions.revoke_session("u1", target.id) is True
        assert token_store.find_refresh_token(hash_token(phone.refresh_token)).revoked_reason == "logout"
        assert [s.device_fingerprint for s in sessions.active_sessions("u1")] == [FP_A]
        sessions.rotate(laptop.refresh_token, FP_A)

    def test_other_users_session_untouched(self, sessions: SessionRotationEngine, token_store: SecretTokenStore) -> None:
        victim = sessions.issue("u2", FP_A)
        victim_id = token_store.find_refresh_token(hash_token(victim.refresh_token)).id

        assert sessions.revoke_session("u1", victim_id) is False
        assert token_store.find_refresh_token(hash_token(victim.refresh_token)).revoked_at is None

    def test_already_revoked_and_unknown(self, sessions: SessionRotationEngine, token_store: SecretTokenStore) -> None:
        pair = sessions.issue("u1", FP_A)
        session_id = token_store.find_refresh_token(hash_token(pair.refresh_token)).id
        assert sessions.revoke_session("u1", session_id) is True
        assert sessions.revoke_session("u1", session_id) is False
        assert sessions.revoke_session("u1", "no-such-id") is False
