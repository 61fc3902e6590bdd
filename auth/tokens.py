"""
auth/tokens.py -- Opaque bearer tokens for API clients.

Security design decisions:
  Format: ag_<64 hex chars>. secrets.token_hex(32) gives 256 bits of entropy,
       so brute force is computationally infeasible. The prefix makes leaked
       tokens easy to spot in logs and secret scanners.

  Storage: HMAC-SHA256(SECRET_KEY, raw_token) via grants.digest_key(). The raw
       token is returned ONCE by issue() and is unrecoverable afterwards.

  Policy:
       multi  -- any number of concurrent tokens per principal, each revocable
                 on its own. Rotating one client's token leaves the others alone.
       single -- issuing a token first revokes every earlier token of the same
                 principal. Simple, but every client of the principal shares one
                 lifetime: a rotation signs all of them out.

  validate() returns None on any failure -- the gate turns that into
  Unauthenticated. check() raises the specific TokenInvalid / TokenExpired for
  callers that want to log the reason.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from auth.errors import TokenExpired, TokenInvalid
from auth.grants import GrantBackend, digest_key
from auth.models import BearerToken

logger = logging.getLogger("authgate.auth.tokens")

TOKEN_PREFIX = "ag_"
POLICIES = ("multi", "single")

_HANDLE_BYTES = 8
_LABEL_MAX = 100


class TokenValidator(Protocol):
    """Anything that can turn a presented bearer token into a principal id.

    TokenIssuer implements it for locally issued tokens; delegated.JwtTokenValidator
    implements it for tokens minted by an external authority.
    """

    def validate(self, token: str) -> int | None: ...


@dataclass(frozen=True)
class IssuedToken:
    """The raw token (show once) plus the stored record describing it."""

    token: str
    record: BearerToken


class TokenIssuer:
    """Mint, validate and revoke bearer tokens.

    Usage:
        issuer = TokenIssuer(MemoryGrantBackend(), secret_key, ttl=3600)
        issued = issuer.issue(principal.id, name="ci")
        issuer.validate(issued.token)   # principal.id
        issuer.revoke_all(principal.id)
    """

    def __init__(
        self,
        backend: GrantBackend[BearerToken],
        secret_key: str,
        ttl: int = 0,
        policy: str = "multi",
        clock: Callable[[], float] = time.time,
    ) -> None:
        if policy not in POLICIES:
            raise ValueError(f"Unknown token policy: {policy!r}")
        if ttl < 0:
            raise ValueError("token ttl must be >= 0")
        self.backend = backend
        self.ttl = ttl
        self.policy = policy
        self._secret_key = secret_key
        self._clock = clock

    def _key(self, token: str) -> str:
        return digest_key(self._secret_key, token)

    def issue(self, principal_id: int, name: str | None = None, expire_seconds: int | None = None) -> IssuedToken:
        """Mint a new token for principal_id.

        expire_seconds overrides the issuer's default ttl; 0 means no expiry.
        """
        if self.policy == "single":
            self.revoke_all(principal_id)
        ttl = self.ttl if expire_seconds is None else expire_seconds
        token = f"{TOKEN_PREFIX}{secrets.token_hex(32)}"
        now = self._clock()
        record = BearerToken(
            key_hash=self._key(token),
            handle=secrets.token_hex(_HANDLE_BYTES),
            principal_id=principal_id,
            created_at=now,
            expires_at=now + ttl if ttl > 0 else None,
            label=name[:_LABEL_MAX] if name else None,
        )
        self.backend.insert(record)
        logger.info("Issued token %s for principal %s", record.handle, principal_id)
        return IssuedToken(token=token, record=record)

    def check(self, token: str) -> BearerToken:
        """Return the live BearerToken record or raise TokenInvalid / TokenExpired."""
        if not token or not token.startswith(TOKEN_PREFIX):
            raise TokenInvalid("malformed token")
        key_hash = self._key(token)
        record = self.backend.get(key_hash)
        if record is None:
            raise TokenInvalid("unknown token")
        now = self._clock()
        if record.expires_at is not None and record.expires_at <= now:
            self.backend.delete(key_hash)
            raise TokenExpired(f"token {record.handle} expired at {record.expires_at}")
        self.backend.update(key_hash, last_used=now)
        record.last_used = now
        return record

    def validate(self, token: str) -> int | None:
        try:
            return self.check(token).principal_id
        except (TokenInvalid, TokenExpired) as exc:
            logger.debug("Token rejected: %s", exc)
            return None

    def revoke(self, token: str) -> bool:
        """Delete one token. Idempotent; returns whether anything was removed."""
        if not token:
            return False
        return self.backend.delete(self._key(token))

    def revoke_handle(self, principal_id: int, handle: str) -> bool:
        """Revoke by public handle. principal_id must own the token."""
        return self.backend.delete_handle(principal_id, handle)

    def revoke_all(self, principal_id: int) -> int:
        removed = self.backend.delete_for_principal(principal_id)
        if removed:
            logger.info("Revoked %d token(s) for principal %s", removed, principal_id)
        return removed

    def list_for(self, principal_id: int) -> list[BearerToken]:
        now = self._clock()
        return [
            t for t in self.backend.list_for_principal(principal_id) if t.expires_at is None or t.expires_at > now
        ]

    def purge_expired(self) -> int:
        return self.backend.purge_expired(self._clock())
