"""
auth/sessions.py -- Server-side sessions behind the session cookie.

Session ids are secrets.token_urlsafe(32): 256 bits from the OS CSPRNG, never
derived from principal data. Only HMAC(SECRET_KEY, session_id) is stored.

Expiry is evaluated lazily at read time. An expired record found by lookup()
is deleted on the spot; purge_expired() is an optional sweep that reclaims
records nobody reads again.

Expiry modes:
  fixed   -- expires_at = created_at + ttl, never moves.
  sliding -- every successful lookup pushes expires_at to now + ttl, but never
             past created_at + absolute_ttl when absolute_ttl is non-zero.
"""

from __future__ import annotations

import logging
import secrets
import time
from collections.abc import Callable

from auth.errors import SessionExpired, SessionNotFound
from auth.grants import GrantBackend, digest_key
from auth.models import Session

logger = logging.getLogger("authgate.auth.sessions")

_HANDLE_BYTES = 8
_LABEL_MAX = 255


class SessionStore:
    """Create, resolve and revoke cookie sessions.

    Usage:
        sessions = SessionStore(MemoryGrantBackend(), secret_key, ttl=3600)
        sid = sessions.create(principal.id)
        sessions.resolve(sid)    # principal.id
        sessions.revoke(sid)
        sessions.resolve(sid)    # None
    """

    def __init__(
        self,
        backend: GrantBackend[Session],
        secret_key: str,
        ttl: int,
        sliding: bool = False,
        absolute_ttl: int = 0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if ttl <= 0:
            raise ValueError("session ttl must be positive")
        self.backend = backend
        self.ttl = ttl
        self.sliding = sliding
        self.absolute_ttl = absolute_ttl
        self._secret_key = secret_key
        self._clock = clock

    def _key(self, session_id: str) -> str:
        return digest_key(self._secret_key, session_id)

    def create(self, principal_id: int, label: str | None = None) -> str:
        """Start a session for principal_id and return the raw session id.

        The raw id is returned once and only the caller (the cookie) keeps it.
        """
        session_id = secrets.token_urlsafe(32)
        now = self._clock()
        self.backend.insert(
            Session(
                key_hash=self._key(session_id),
                handle=secrets.token_hex(_HANDLE_BYTES),
                principal_id=principal_id,
                created_at=now,
                expires_at=now + self.ttl,
                label=label[:_LABEL_MAX] if label else None,
            )
        )
        logger.debug("Session created for principal %s", principal_id)
        return session_id

    def lookup(self, session_id: str) -> Session:
        """Return the live Session record or raise SessionNotFound / SessionExpired."""
        if not session_id:
            raise SessionNotFound("empty session id")
        key_hash = self._key(session_id)
        session = self.backend.get(key_hash)
        if session is None:
            raise SessionNotFound("unknown session id")
        now = self._clock()
        if session.expires_at is not None and session.expires_at <= now:
            self.backend.delete(key_hash)
            raise SessionExpired(f"session expired at {session.expires_at}")
        if self.sliding:
            expires_at = now + self.ttl
            if self.absolute_ttl:
                expires_at = min(expires_at, session.created_at + self.absolute_ttl)
            self.backend.update(key_hash, expires_at=expires_at, last_used=now)
            session.expires_at = expires_at
            session.last_used = now
        return session

    def resolve(self, session_id: str) -> int | None:
        """Return the principal id for a live session, None otherwise."""
        try:
            return self.lookup(session_id).principal_id
        except (SessionNotFound, SessionExpired) as exc:
            logger.debug("Session rejected: %s", exc)
            return None

    def revoke(self, session_id: str) -> bool:
        """Delete a session. Idempotent; returns whether anything was removed."""
        if not session_id:
            return False
        return self.backend.delete(self._key(session_id))

    def revoke_handle(self, principal_id: int, handle: str) -> bool:
        return self.backend.delete_handle(principal_id, handle)

    def revoke_all(self, principal_id: int) -> int:
        """Sign principal_id out of every browser session."""
        removed = self.backend.delete_for_principal(principal_id)
        if removed:
            logger.info("Revoked %d session(s) for principal %s", removed, principal_id)
        return removed

    def list_for(self, principal_id: int) -> list[Session]:
        """Live sessions for principal_id, newest first."""
        now = self._clock()
        return [
            s for s in self.backend.list_for_principal(principal_id) if s.expires_at is None or s.expires_at > now
        ]

    def purge_expired(self) -> int:
        return self.backend.purge_expired(self._clock())
