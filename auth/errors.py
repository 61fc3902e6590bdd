"""
auth/errors.py -- Exception taxonomy for the authentication kernel.

Every error carries a stable machine-readable `code` and a public `message`.
The message is safe to show to clients; anything more specific goes into the
exception args and is only ever logged.

Collapsing rules:
  SessionNotFound, SessionExpired, TokenInvalid and TokenExpired all subclass
  Unauthenticated, so a handler that catches Unauthenticated treats them as one
  signal. The API layer always renders the base class code/message.

  InvalidCredentials covers both "unknown login" and "wrong secret". There is
  deliberately no subclass that tells them apart.

  StoreUnavailable is NOT an Unauthenticated. An unreachable store is an outage
  and surfaces as 503, never as a 401.

Layer rule: stdlib only.
"""

from __future__ import annotations


class AuthError(Exception):
    code = "auth_error"
    message = "Authentication error."
    status_code = 400


class InvalidCredentials(AuthError):
    code = "invalid_credentials"
    message = "Invalid login or password."
    status_code = 401


class Unauthenticated(AuthError):
    code = "unauthorized"
    message = "Authentication required."
    status_code = 401


class SessionNotFound(Unauthenticated):
    pass


class SessionExpired(Unauthenticated):
    pass


class TokenInvalid(Unauthenticated):
    pass


class TokenExpired(Unauthenticated):
    pass


class Forbidden(AuthError):
    code = "forbidden"
    message = "Insufficient privileges."
    status_code = 403


class LoginTaken(AuthError):
    code = "conflict"
    message = "A principal with that login already exists."
    status_code = 409


class StoreUnavailable(AuthError):
    code = "store_unavailable"
    message = "Authentication store is unavailable."
    status_code = 503


class IssuanceDisabled(AuthError):
    code = "issuance_disabled"
    message = "Bearer tokens are issued by an external authority."
    status_code = 400
