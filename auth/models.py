"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the gate
do the work; these types only describe shape.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from auth.errors import Unauthenticated


@dataclass
class Principal:
    """An identity that can be authenticated.

    hashed_password is None for principals that only sign in through a
    delegated authority. oauth_provider / oauth_subject link the principal to
    that authority's stable subject id.
    """

    login: str
    role: str = "user"  # "admin" or "user"
    id: int | None = None
    hashed_password: str | None = None
    oauth_provider: str | None = None
    oauth_subject: str | None = None
    created_at: str | None = None
    last_login: str | None = None
    is_active: bool = True


@dataclass
class Session:
    """Server-side record behind a session cookie.

    key_hash is HMAC-SHA256(SECRET_KEY, session_id). The raw session id lives
    only in the client's cookie. handle is a short public id for listing and
    targeted revocation. Timestamps are epoch seconds.
    """

    key_hash: str
    handle: str
    principal_id: int
    created_at: float
    expires_at: Optional[float]
    label: str | None = None  # client user agent
    last_used: float | None = None


@dataclass
class BearerToken:
    """Server-side record behind an API bearer token.

    Same shape as Session. expires_at is None for tokens that live until
    revoked. label is the client-supplied token name.
    """

    key_hash: str
    handle: str
    principal_id: int
    created_at: float
    expires_at: Optional[float]
    label: str | None = None
    last_used: float | None = None


class Channel(str, Enum):
    """How a request class presents its credential. Exactly one per request."""

    SESSION = "session"
    BEARER = "bearer"


@dataclass(frozen=True)
class AuthResult:
    """Outcome of a gate check: Authenticated(principal) or Unauthenticated."""

    principal: Principal | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.principal is not None


UNAUTHENTICATED = AuthResult()


@dataclass(frozen=True)
class AuthContext:
    """Per-request authentication state, built once and passed explicitly.

    Replaces the ambient "current user" helper: handlers receive this object
    (via Depends) and read the principal through the accessors below.
    """

    result: AuthResult
    channel: Channel
    # Expiry of the session or token behind the context, when the gate knows it.
    expires_at: Optional[float] = None

    @property
    def is_authenticated(self) -> bool:
        return self.result.is_authenticated

    def current_principal(self) -> Principal | None:
        """Non-failing lookup. Returns None when unauthenticated."""
        return self.result.principal

    def require_authenticated(self) -> Principal:
        """Return the principal or raise Unauthenticated.

        The caller recovers by redirecting to sign-in (browser) or issuing a
        401 challenge (API).
        """
        if self.result.principal is None:
            raise Unauthenticated(f"no authenticated principal on {self.channel.value} channel")
        return self.result.principal
