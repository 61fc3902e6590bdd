"""
auth/delegated.py -- Bearer tokens minted by an external authority.

An OAuth2/OIDC provider (or any other delegated-authorization service) can
take over token issuance. Its access tokens are JWTs; this module verifies
them with python-jose and maps the `sub` claim to a local Principal through
the (oauth_provider, oauth_subject) link on the principal record.

JwtTokenValidator satisfies the same TokenValidator contract as TokenIssuer,
so the gate does not know which one it is talking to.

Verification returns None on any failure (bad signature, expired, wrong
issuer/audience, unknown or inactive subject). The gate turns None into
Unauthenticated.

Running the OAuth2 redirect flows themselves is not this module's job.

Layer rule: no imports from api/, web/, or core/.
"""

from __future__ import annotations

import logging

from jose import JWTError, jwt

from auth.store import PrincipalStore

logger = logging.getLogger("authgate.auth.delegated")


class JwtTokenValidator:
    """Validate externally issued JWT access tokens.

    Usage:
        validator = JwtTokenValidator(principals, provider="github-app", key=public_pem)
        principal_id = validator.validate(token)
    """

    def __init__(
        self,
        principals: PrincipalStore,
        provider: str,
        key: str,
        algorithm: str = "RS256",
        issuer: str | None = None,
        audience: str | None = None,
    ) -> None:
        self.principals = principals
        self.provider = provider
        self._key = key
        self._algorithm = algorithm
        self._issuer = issuer or None
        self._audience = audience or None

    def decode(self, token: str) -> dict | None:
        """Verify signature, expiry, issuer and audience. Returns claims or None."""
        options = {"verify_aud": self._audience is not None}
        try:
            claims = jwt.decode(
                token,
                self._key,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                audience=self._audience,
                options=options,
            )
        except JWTError as exc:
            logger.debug("Delegated token rejected: %s", exc)
            return None
        if not claims.get("sub"):
            return None
        return claims

    def validate(self, token: str) -> int | None:
        claims = self.decode(token)
        if claims is None:
            return None
        principal = self.principals.get_by_oauth(self.provider, str(claims["sub"]))
        if principal is None or not principal.is_active:
            logger.warning("Delegated token for unlinked or inactive subject from %r", self.provider)
            return None
        return principal.id
