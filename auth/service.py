"""
auth/service.py -- Composition root and sign-in / sign-out use cases.

AuthService wires the kernel together from Settings:

    PasswordHasher -> CredentialVerifier -> PrincipalStore
    GrantBackend   -> SessionStore, TokenIssuer
    TokenValidator (TokenIssuer or JwtTokenValidator) -> AuthenticationGate

The FastAPI lifespan builds one AuthService and stores it on app.state.auth;
the CLI builds its own. Nothing in the kernel reaches for a global.

Layer rule: may import from core/ (config only). No imports from api/ or web/.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from auth.credentials import CredentialVerifier
from auth.delegated import JwtTokenValidator
from auth.errors import InvalidCredentials, IssuanceDisabled
from auth.gate import AuthenticationGate
from auth.grants import GrantBackend, MemoryGrantBackend, SqlGrantBackend
from auth.models import BearerToken, Principal, Session
from auth.passwords import PasswordHasher
from auth.sessions import SessionStore
from auth.store import PrincipalStore
from auth.tokens import IssuedToken, TokenIssuer, TokenValidator
from core.config import Settings

logger = logging.getLogger("authgate.auth")


class AuthService:
    """Facade over the authentication kernel.

    Usage:
        service = AuthService.from_settings(get_settings())
        principal, session_id = service.sign_in_session("jwo", "12345")
        ctx = service.gate.authenticate(Channel.SESSION, session_id)
    """

    def __init__(
        self,
        principals: PrincipalStore,
        hasher: PasswordHasher,
        sessions: SessionStore,
        tokens: TokenIssuer,
        token_validator: TokenValidator | None = None,
    ) -> None:
        self.principals = principals
        self.hasher = hasher
        self.sessions = sessions
        self.tokens = tokens
        self.verifier = CredentialVerifier(principals, hasher)
        self.issues_tokens = token_validator is None
        self.gate = AuthenticationGate(principals, sessions, token_validator or tokens)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        db_url: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> AuthService:
        principals = PrincipalStore(db_url or settings.database_url)
        session_backend: GrantBackend[Session]
        token_backend: GrantBackend[BearerToken]
        if settings.grant_backend == "memory":
            session_backend = MemoryGrantBackend(settings.grant_shards)
            token_backend = MemoryGrantBackend(settings.grant_shards)
        else:
            session_backend = SqlGrantBackend(principals.engine, "sessions", Session)
            token_backend = SqlGrantBackend(principals.engine, "bearer_tokens", BearerToken)

        sessions = SessionStore(
            session_backend,
            settings.secret_key,
            ttl=settings.session_expire_seconds,
            sliding=settings.session_sliding,
            absolute_ttl=settings.session_absolute_seconds,
            clock=clock,
        )
        tokens = TokenIssuer(
            token_backend,
            settings.secret_key,
            ttl=settings.token_expire_seconds,
            policy=settings.token_policy,
            clock=clock,
        )
        validator: TokenValidator | None = None
        if settings.token_authority == "delegated":
            validator = JwtTokenValidator(
                principals,
                provider=settings.delegated_provider,
                key=settings.delegated_key,
                algorithm=settings.delegated_algorithm,
                issuer=settings.delegated_issuer,
                audience=settings.delegated_audience,
            )
            logger.info("Bearer tokens delegated to %r", settings.delegated_provider)
        return cls(principals, PasswordHasher(settings.bcrypt_rounds), sessions, tokens, validator)

    # ------------------------------------------------------------------
    # Principals
    # ------------------------------------------------------------------

    def register(self, login: str, password: str | None, role: str = "user") -> Principal:
        """Create a principal. Raises LoginTaken on a duplicate login."""
        hashed = self.hasher.hash(password) if password else None
        principal_id = self.principals.create_principal(Principal(login=login, role=role, hashed_password=hashed))
        logger.info("Principal %r created (role=%s)", login, role)
        return self.principals.get_by_id(principal_id)

    def update_principal(
        self,
        principal_id: int,
        role: str | None = None,
        is_active: bool | None = None,
        password: str | None = None,
    ) -> Principal | None:
        """Apply changes; deactivation or a new password revokes every grant.

        Returns the refreshed principal, or None if it does not exist.
        """
        fields: dict = {}
        if role is not None:
            fields["role"] = role
        if is_active is not None:
            fields["is_active"] = is_active
        if password is not None:
            fields["hashed_password"] = self.hasher.hash(password)
        if fields and not self.principals.update_principal(principal_id, **fields):
            return None
        if is_active is False or password is not None:
            self.revoke_everything(principal_id)
        return self.principals.get_by_id(principal_id)

    # ------------------------------------------------------------------
    # Sign-in / sign-out
    # ------------------------------------------------------------------

    def _sign_in(self, login: str, secret: str) -> Principal:
        try:
            principal = self.verifier.authenticate(login, secret)
        except InvalidCredentials:
            logger.warning("Failed sign-in for login %r", login)
            raise
        if self.hasher.needs_rehash(principal.hashed_password):
            self.principals.update_principal(principal.id, hashed_password=self.hasher.hash(secret))
        self.principals.update_last_login(principal.id)
        logger.info("Principal %r signed in", login)
        return principal

    def sign_in_session(self, login: str, secret: str, label: str | None = None) -> tuple[Principal, str]:
        """Verify credentials and start a cookie session. Raises InvalidCredentials."""
        principal = self._sign_in(login, secret)
        return principal, self.sessions.create(principal.id, label=label)

    def sign_in_token(self, login: str, secret: str, name: str | None = None) -> tuple[Principal, IssuedToken]:
        """Verify credentials and mint a bearer token. Raises InvalidCredentials."""
        if not self.issues_tokens:
            raise IssuanceDisabled()
        principal = self._sign_in(login, secret)
        return principal, self.tokens.issue(principal.id, name=name)

    def sign_out_session(self, session_id: str | None) -> bool:
        return self.sessions.revoke(session_id or "")

    def sign_out_token(self, token: str | None) -> bool:
        return self.tokens.revoke(token or "")

    def revoke_everything(self, principal_id: int) -> int:
        """Sign principal_id out of every session and revoke all its tokens."""
        return self.sessions.revoke_all(principal_id) + self.tokens.revoke_all(principal_id)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    def purge_expired(self) -> int:
        removed = self.sessions.purge_expired() + self.tokens.purge_expired()
        if removed:
            logger.info("Purged %d expired grant(s)", removed)
        return removed

    def close(self) -> None:
        self.sessions.backend.close()
        self.tokens.backend.close()
        self.principals.close()
