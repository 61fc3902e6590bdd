"""
auth/gate.py -- The authentication decision point.

The gate turns a presented credential into an AuthContext. Each request class
declares ONE channel:

  Channel.SESSION -- the credential is a session id from the cookie; resolved
                     by SessionStore.
  Channel.BEARER  -- the credential is a bearer token; resolved by whichever
                     TokenValidator the gate was built with (local TokenIssuer
                     or a delegated JwtTokenValidator).

There is no fallback between channels. A bearer-channel request that happens
to carry a valid session cookie is still unauthenticated, and vice versa --
otherwise a cookie the browser attaches automatically could authorize an API
call the user never meant to make.

Filters:
  Protected handlers run behind an explicit, ordered list of request filters.
  A filter is any callable filter(request, call_next). It may inspect
  request.context, raise to short-circuit (Unauthenticated, Forbidden), or
  call call_next(request) to continue. guard() builds the AuthContext once,
  then runs filters[0] -> filters[1] -> ... -> handler.

Failures:
  Unknown/expired credentials and missing/inactive principals produce an
  unauthenticated context. StoreUnavailable propagates untouched.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from auth.errors import Forbidden, SessionExpired, SessionNotFound
from auth.models import UNAUTHENTICATED, AuthContext, AuthResult, Channel
from auth.sessions import SessionStore
from auth.store import PrincipalStore
from auth.tokens import TokenValidator

logger = logging.getLogger("authgate.auth.gate")

T = TypeVar("T")


@dataclass(frozen=True)
class GateRequest:
    """What the gate needs to know about one request.

    context is None until the gate has authenticated the request.
    """

    channel: Channel
    credential: str | None
    path: str = "/"
    context: AuthContext | None = None


Handler = Callable[[GateRequest], Any]
Filter = Callable[[GateRequest, Handler], Any]


# ---------------------------------------------------------------------------
# Built-in filters
# ---------------------------------------------------------------------------


def require_authenticated(request: GateRequest, call_next: Handler) -> Any:
    """Stop the chain with Unauthenticated unless a principal is present."""
    request.context.require_authenticated()
    return call_next(request)


def require_role(role: str) -> Filter:
    """Build a filter that allows only principals with the given role."""

    def _require_role(request: GateRequest, call_next: Handler) -> Any:
        principal = request.context.require_authenticated()
        if principal.role != role:
            raise Forbidden(f"principal {principal.id} lacks role {role!r}")
        return call_next(request)

    return _require_role


def compose(filters: Sequence[Filter], handler: Handler) -> Handler:
    """Fold filters around handler. filters[0] runs first."""
    chain = handler
    for f in reversed(filters):
        chain = _bind(f, chain)
    return chain


def _bind(f: Filter, call_next: Handler) -> Handler:
    def _step(request: GateRequest) -> Any:
        return f(request, call_next)

    return _step


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


class AuthenticationGate:
    """Resolve credentials on their declared channel into an AuthContext.

    Usage:
        gate = AuthenticationGate(principals, sessions, token_issuer)
        ctx = gate.authenticate(Channel.BEARER, "ag_...")
        principal = ctx.require_authenticated()
    """

    def __init__(self, principals: PrincipalStore, sessions: SessionStore, tokens: TokenValidator) -> None:
        self.principals = principals
        self.sessions = sessions
        self.tokens = tokens

    def resolve_grant(self, channel: Channel, credential: str | None) -> tuple[int | None, float | None]:
        """Return (principal_id, expires_at) for the credential, (None, None) if it is not live.

        expires_at is only known for sessions; a sliding session reports its
        freshly extended expiry.
        """
        if not credential:
            return None, None
        if channel is Channel.SESSION:
            try:
                session = self.sessions.lookup(credential)
            except (SessionNotFound, SessionExpired) as exc:
                logger.debug("Session rejected: %s", exc)
                return None, None
            return session.principal_id, session.expires_at
        if channel is Channel.BEARER:
            return self.tokens.validate(credential), None
        raise ValueError(f"Unknown channel: {channel!r}")

    def resolve_principal_id(self, channel: Channel, credential: str | None) -> int | None:
        return self.resolve_grant(channel, credential)[0]

    def authenticate(self, channel: Channel, credential: str | None) -> AuthContext:
        principal_id, expires_at = self.resolve_grant(channel, credential)
        if principal_id is None:
            return AuthContext(result=UNAUTHENTICATED, channel=channel)
        principal = self.principals.get_by_id(principal_id)
        if principal is None or not principal.is_active:
            logger.info("Credential for missing or inactive principal %s rejected", principal_id)
            return AuthContext(result=UNAUTHENTICATED, channel=channel)
        return AuthContext(result=AuthResult(principal=principal), channel=channel, expires_at=expires_at)

    def guard(self, request: GateRequest, handler: Callable[[GateRequest], T], filters: Sequence[Filter] = ()) -> T:
        """Authenticate request (unless it already carries a context), then run filters and handler in order."""
        if request.context is None:
            request = dataclasses.replace(request, context=self.authenticate(request.channel, request.credential))
        return compose(filters, handler)(request)
