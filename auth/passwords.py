"""
auth/passwords.py -- Password hashing and verification (bcrypt).

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct bcrypt usage is simpler and has no
compatibility shim.

Both operations are CPU-bound by design (cost 12 is tens of milliseconds).
Call them from sync route handlers, which FastAPI runs in its threadpool,
never from an async handler on the event loop.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import bcrypt


class CredentialVerifier:
    """Salted adaptive hashing with a fixed work factor.

    The _dummy_hash is computed once per instance so verify_dummy() costs the
    same as a real check. The login flow calls it for unknown emails so
    response time does not reveal whether an account exists [C1].
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        self._dummy_hash = self.hash("authgate_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the plaintext; the salt is embedded in the output.

        bcrypt only looks at the first 72 bytes. The API layer caps password
        fields at 128 characters, and the policy forces mixed content, so the
        truncation does not matter in practice.
        """
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if the plaintext matches. Malformed hashes return False."""
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except (ValueError, TypeError, AttributeError):
            return False

    def verify_dummy(self, plain: str) -> None:
        """Burn one verification against a throwaway hash (timing equalization)."""
        self.verify(plain, self._dummy_hash)
