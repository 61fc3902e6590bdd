"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Each request class declares its channel up front:
  - Browser routes (web/) use Channel.SESSION: the session id from the cookie.
  - API routes (api/) use Channel.BEARER: Authorization: Bearer <token>, or the
    ?access_token= query parameter when ALLOW_QUERY_TOKEN is on.

The AuthContext is built once per request and cached on request.state.auth.
Handlers read it through session_context() / bearer_context() (non-failing) or
get the principal through the RequirePrincipal dependencies (failing), which
run the gate's filter chain before the handler.

Layer rule: no imports from web/ or api/.
  auth/dependencies.py may import from fastapi because this module is part of
  the FastAPI dependency injection system.
"""

from fastapi import Request

from auth.gate import Filter, GateRequest, require_authenticated, require_role
from auth.models import AuthContext, Channel, Principal
from auth.service import AuthService


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth


def extract_session_id(request: Request) -> str | None:
    return request.cookies.get(request.app.state.settings.session_cookie_name) or None


def extract_bearer_token(request: Request) -> str | None:
    """Read the token from the Authorization header, then the query string."""
    auth_header = request.headers.get("Authorization", "")
    scheme, _, value = auth_header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    if request.app.state.settings.allow_query_token:
        return request.query_params.get("access_token") or None
    return None


_EXTRACTORS = {
    Channel.SESSION: extract_session_id,
    Channel.BEARER: extract_bearer_token,
}


def build_context(request: Request, channel: Channel) -> AuthContext:
    """Return the request's AuthContext for channel, building it at most once."""
    cached: AuthContext | None = getattr(request.state, "auth", None)
    if cached is not None and cached.channel is channel:
        return cached
    service = get_auth_service(request)
    context = service.gate.authenticate(channel, _EXTRACTORS[channel](request))
    request.state.auth = context
    return context


def session_context(request: Request) -> AuthContext:
    """Non-failing lookup for browser routes."""
    return build_context(request, Channel.SESSION)


def bearer_context(request: Request) -> AuthContext:
    """Non-failing lookup for API routes."""
    return build_context(request, Channel.BEARER)


class RequirePrincipal:
    """Dependency that runs the gate's filter chain and yields the Principal.

    Raises Unauthenticated (401 / redirect) or Forbidden (403) from the chain.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(require_bearer)): ...
    """

    def __init__(self, channel: Channel, *filters: Filter) -> None:
        self.channel = channel
        self.filters: tuple[Filter, ...] = (require_authenticated, *filters)

    def __call__(self, request: Request) -> Principal:
        context = build_context(request, self.channel)
        gate = get_auth_service(request).gate
        return gate.guard(
            GateRequest(channel=self.channel, credential=None, path=request.url.path, context=context),
            lambda r: r.context.require_authenticated(),
            self.filters,
        )


require_session = RequirePrincipal(Channel.SESSION)
require_bearer = RequirePrincipal(Channel.BEARER)
require_admin = RequirePrincipal(Channel.BEARER, require_role("admin"))
