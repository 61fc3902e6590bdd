"""
api/routes/v1/auth.py -- Bearer-token sign-in and principal management endpoints.

Routes:
  POST   /api/v1/auth/token                 -- password sign-in; returns a bearer token
  POST   /api/v1/auth/logout                -- revoke the presented token; always 204
  GET    /api/v1/auth/me                    -- current principal (requires auth)
  GET    /api/v1/auth/tokens                -- caller's tokens (requires auth)
  DELETE /api/v1/auth/tokens                -- revoke all of the caller's tokens (requires auth)
  DELETE /api/v1/auth/tokens/{token_id}     -- revoke one token (requires auth, ownership checked)
  GET    /api/v1/auth/sessions              -- caller's browser sessions (requires auth)
  DELETE /api/v1/auth/sessions/{session_id} -- end one browser session (requires auth, ownership checked)
  POST   /api/v1/auth/principals            -- create principal (admin only)
  GET    /api/v1/auth/principals            -- list principals (admin only)
  PATCH  /api/v1/auth/principals/{id}       -- update role / is_active / password (admin only)

Every route here is on the bearer channel. A session cookie never
authenticates an API call.

Security:
  POST /token shares its per-address rate limit with the browser POST /login.
  Wrong login and wrong password produce the same InvalidCredentials body.
  Cache-Control: no-store on responses that carry a raw token.
  IDOR guard: token/session revocation by id passes the caller's principal id
  to the store; the store checks ownership.
  PATCH /principals/{id} blocks self-deactivation and deactivating or demoting the last admin.
"""

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import SIGN_IN_SCOPE, limiter, login_rate_limit
from api.models import GrantInfo, LoginRequest, PrincipalCreate, PrincipalPatch, PrincipalResponse, TokenResponse
from auth.dependencies import extract_bearer_token, get_auth_service, require_admin, require_bearer
from auth.models import Principal
from auth.service import AuthService

# Auth policy:
# - POST   /auth/token:               public -- the sign-in endpoint itself
# - POST   /auth/logout:              public -- revoking an unknown token is a no-op
# - everything else:                  require_bearer, /principals additionally require_admin
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/token", response_model=TokenResponse)
@limiter.shared_limit(login_rate_limit, scope=SIGN_IN_SCOPE)
def issue_token(request: Request, body: LoginRequest) -> JSONResponse:
    """Exchange login + password for a bearer token.

    InvalidCredentials propagates to the exception handler, which renders the
    same 401 body for unknown logins and wrong passwords.
    """
    service: AuthService = get_auth_service(request)
    _principal, issued = service.sign_in_token(body.login, body.password, name=body.name)
    expires_in = None
    if issued.record.expires_at is not None:
        expires_in = round(issued.record.expires_at - issued.record.created_at)
    resp = JSONResponse(
        content=TokenResponse(
            access_token=issued.token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=expires_in,
            token_id=issued.record.handle,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", status_code=204)
def logout(request: Request) -> Response:
    """Revoke the presented token. Idempotent: unknown or missing tokens still get 204."""
    get_auth_service(request).sign_out_token(extract_bearer_token(request))
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=PrincipalResponse)
def me(principal: Principal = Depends(require_bearer)) -> PrincipalResponse:
    return PrincipalResponse.from_principal(principal)


@router.get("/auth/tokens", response_model=list[GrantInfo])
def list_tokens(request: Request, principal: Principal = Depends(require_bearer)) -> list[GrantInfo]:
    """List the caller's live tokens. Raw token values are never returned."""
    return [GrantInfo.from_record(t) for t in get_auth_service(request).tokens.list_for(principal.id)]


@router.delete("/auth/tokens", status_code=204)
def revoke_all_tokens(request: Request, principal: Principal = Depends(require_bearer)) -> Response:
    """Revoke every token the caller holds, including the one used for this request."""
    get_auth_service(request).tokens.revoke_all(principal.id)
    return Response(status_code=204)


@router.delete("/auth/tokens/{token_id}", status_code=204)
def revoke_token(request: Request, token_id: str, principal: Principal = Depends(require_bearer)) -> Response:
    if not get_auth_service(request).tokens.revoke_handle(principal.id, token_id):
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Token not found."})
    return Response(status_code=204)


@router.get("/auth/sessions", response_model=list[GrantInfo])
def list_sessions(request: Request, principal: Principal = Depends(require_bearer)) -> list[GrantInfo]:
    return [GrantInfo.from_record(s) for s in get_auth_service(request).sessions.list_for(principal.id)]


@router.delete("/auth/sessions/{session_id}", status_code=204)
def revoke_session(request: Request, session_id: str, principal: Principal = Depends(require_bearer)) -> Response:
    if not get_auth_service(request).sessions.revoke_handle(principal.id, session_id):
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Session not found."})
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Principal management (admin only)
# ---------------------------------------------------------------------------


@router.post("/auth/principals", response_model=PrincipalResponse, status_code=201)
def create_principal(
    request: Request,
    body: PrincipalCreate,
    admin: Principal = Depends(require_admin),
) -> PrincipalResponse:
    """Create a principal. LoginTaken propagates as 409."""
    created = get_auth_service(request).register(body.login, body.password, role=body.role.value)
    return PrincipalResponse.from_principal(created)


@router.get("/auth/principals", response_model=list[PrincipalResponse])
def list_principals(request: Request, admin: Principal = Depends(require_admin)) -> list[PrincipalResponse]:
    return [PrincipalResponse.from_principal(p) for p in get_auth_service(request).principals.list_principals()]


@router.patch("/auth/principals/{principal_id}", response_model=PrincipalResponse)
def update_principal(
    request: Request,
    principal_id: int,
    body: PrincipalPatch,
    admin: Principal = Depends(require_admin),
) -> PrincipalResponse:
    """Update a principal. Deactivation or a password change signs it out everywhere.

    Prevents:
      - Self-deactivation (admin accidentally locking themselves out).
      - Deactivating or demoting the last active admin (no recovery path without
        DB access).
    """
    service: AuthService = get_auth_service(request)
    target = service.principals.get_by_id(principal_id)
    if target is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Principal not found."})

    if body.role is None and body.is_active is None and body.password is None:
        raise HTTPException(status_code=400, detail={"code": "no_changes", "message": "No fields to update."})

    demoted = body.role is not None and body.role.value != "admin"
    if target.role == "admin" and target.is_active and demoted and service.principals.count_active_admins() <= 1:
        raise HTTPException(
            status_code=400,
            detail={"code": "last_admin", "message": "Cannot demote the last active admin account."},
        )

    if body.is_active is False:
        if target.id == admin.id:
            raise HTTPException(
                status_code=400,
                detail={"code": "self_deactivation", "message": "You cannot deactivate your own account."},
            )
        if target.role == "admin" and service.principals.count_active_admins() <= 1:
            raise HTTPException(
                status_code=400,
                detail={"code": "last_admin", "message": "Cannot deactivate the last active admin account."},
            )

    updated = service.update_principal(
        principal_id,
        role=body.role.value if body.role is not None else None,
        is_active=body.is_active,
        password=body.password,
    )
    if updated is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Principal not found."})
    return PrincipalResponse.from_principal(updated)
