"""
auth/credentials.py -- Login + secret verification with timing equalization.

verify() always runs exactly one bcrypt comparison, whether or not the login
exists:
  - Unknown login:       bcrypt runs against a dummy digest (same cost)
  - No local password:   bcrypt runs against the dummy digest
  - Wrong secret:        bcrypt runs against the real digest
so response time does not reveal which logins exist.

The dummy digest is computed once at construction with the hasher's own cost,
so the first sign-in attempt is not measurably slower than later ones and the
dummy check costs the same as a real one.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from auth.errors import InvalidCredentials
from auth.models import Principal
from auth.passwords import PasswordHasher
from auth.store import PrincipalStore


class CredentialVerifier:
    """Checks a (login, secret) pair against the stored digest. Read-only."""

    def __init__(self, principals: PrincipalStore, hasher: PasswordHasher) -> None:
        self.principals = principals
        self.hasher = hasher
        self._dummy_digest = hasher.hash("authgate_timing_dummy")

    def verify(self, login: str, secret: str) -> Principal | None:
        """Return the Principal on success, None on any failure.

        StoreUnavailable from the principal lookup propagates -- an outage is
        not a failed sign-in.
        """
        principal = self.principals.get_by_login(login)
        if principal is None or principal.hashed_password is None:
            # Do NOT return before running bcrypt.
            self.hasher.verify(secret, self._dummy_digest)
            return None
        if not self.hasher.verify(secret, principal.hashed_password):
            return None
        if not principal.is_active:
            return None
        return principal

    def authenticate(self, login: str, secret: str) -> Principal:
        """Like verify(), but raises the generic InvalidCredentials on failure."""
        principal = self.verify(login, secret)
        if principal is None:
            raise InvalidCredentials()
        return principal
