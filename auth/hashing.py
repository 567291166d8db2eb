"""
auth/hashing.py -- One-way password hashing with bcrypt.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

The dummy hash enables timing equalization: when there is no real hash to
check (unknown email, magic-link-only account) the caller still pays for one
bcrypt verification at the same cost factor, so response time does not reveal
whether the account exists.
"""

from __future__ import annotations

import bcrypt

DEFAULT_ROUNDS = 12


class PasswordHasher:
    """bcrypt hasher with a configurable cost factor.

    Usage:
        hasher = PasswordHasher(rounds=12)
        stored = hasher.hash("pass1234")
        hasher.verify("pass1234", stored)  # True
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        # Computed once per hasher so the first login is not measurably
        # slower than later ones.
        self._dummy_hash = self.hash("authcore_timing_dummy")

    def hash(self, plaintext: str) -> str:
        """Return a bcrypt hash with a fresh random salt (output differs per call).

        Inputs over 72 bytes are truncated by bcrypt. The API layer caps
        passwords at 128 characters.
        """
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(plaintext.encode("utf-8"), salt).decode("utf-8")

    def verify(self, plaintext: str, hashed: str | None) -> bool:
        """Return True if plaintext matches hashed. Malformed or empty hashes return False."""
        if not hashed:
            return False
        try:
            return bcrypt.checkpw(plaintext.encode("utf-8"), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def verify_dummy(self, plaintext: str) -> bool:
        """Burn one full-cost verification. Always returns False."""
        self.verify(plaintext, self._dummy_hash)
        return False
