"""
auth/passwords.py -- bcrypt password hashing.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct bcrypt usage is simpler and has no
compatibility shim.

bcrypt gives us everything the hasher contract needs:
  - a random salt per hash, embedded in the digest (hash() is non-deterministic)
  - an adaptive cost factor (rounds), so brute force stays expensive as
    hardware gets faster
  - a constant-time comparison inside checkpw()

Layer rule: stdlib + bcrypt only.
"""

from __future__ import annotations

import bcrypt

_DEFAULT_ROUNDS = 12

# bcrypt rejects secrets longer than this many bytes (UTF-8).
MAX_SECRET_BYTES = 72


class PasswordHasher:
    """One-way hashing and verification of secrets.

    Usage:
        hasher = PasswordHasher(rounds=12)
        digest = hasher.hash("s3cret")
        hasher.verify("s3cret", digest)   # True
    """

    def __init__(self, rounds: int = _DEFAULT_ROUNDS) -> None:
        self.rounds = rounds

    def hash(self, secret: str) -> str:
        """Return a salted bcrypt digest of secret.

        bcrypt only reads the first 72 bytes of input. The API layer caps
        password length well below that (pydantic max_length).
        """
        return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, secret: str, digest: str | None) -> bool:
        """Return True if secret matches digest.

        A malformed, empty or missing digest is a mismatch, not an error.
        """
        if not digest:
            return False
        try:
            return bcrypt.checkpw(secret.encode("utf-8"), digest.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def needs_rehash(self, digest: str) -> bool:
        """True when digest was produced with a different cost than self.rounds.

        bcrypt digests look like $2b$12$<salt+hash>; the second field is the cost.
        """
        parts = digest.split("$")
        if len(parts) < 4 or not parts[2].isdigit():
            return True
        return int(parts[2]) != self.rounds
