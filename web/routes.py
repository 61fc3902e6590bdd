"""
web/routes.py -- Browser routes on the session-cookie channel.

These routes share app.state.auth with the API routes but authenticate only
through the session cookie. Page rendering is left to whatever front end sits
in front of them; responses here are redirects and small JSON bodies.

Routes:
  GET  /login    -- sign-in prompt metadata (whitelisted error message, next target)
  POST /login    -- form sign-in; sets the session cookie, redirects to ?next
  POST /logout   -- revoke the session, delete the cookie, redirect to /login
  GET  /account  -- protected; unauthenticated requests are redirected to /login

refresh_sliding_session() is middleware, not a route: with SESSION_SLIDING=true
it re-issues the cookie whenever a request authenticated on the session channel.
"""

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import SIGN_IN_SCOPE, limiter, login_rate_limit
from auth.dependencies import extract_session_id, get_auth_service, require_session, session_context
from auth.models import AuthContext, Channel, Principal

logger = logging.getLogger("authgate.web")

router = APIRouter()

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

# Whitelist mapping for ?error= query params on /login.
# The raw query param is NEVER echoed back -- only the message from this dict is.
_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": "Invalid login or password.",
    "signed_out": "You have been signed out.",
}


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths.

    Prevents open redirect attacks where an attacker crafts a URL like:
      /login?next=https://attacker.com  or  /login?next=//attacker.com

    We only allow paths that start with "/" and not with "//" (a
    protocol-relative URL) or "/\\" (which some browsers normalize to "//").
    """
    if next_url and next_url.startswith("/") and not next_url.startswith(("//", "/\\")):
        return next_url
    return "/account"


def _set_session_cookie(request: Request, response, session_id: str, max_age: Optional[int] = None) -> None:
    """Write the session id as an httpOnly cookie.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation for most cases.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the server-side session lifetime, or what is left of it
             when a sliding session is being refreshed.
    """
    settings = request.app.state.settings
    response.set_cookie(
        settings.session_cookie_name,
        value=session_id,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.session_expire_seconds if max_age is None else max_age,
    )


async def refresh_sliding_session(request: Request, call_next):
    """Re-send the session cookie after a sliding session was extended.

    The server pushes expires_at forward on every authenticated read; without a
    fresh Max-Age the browser would still drop the cookie at sign-in + ttl.
    Registered as HTTP middleware by asgi.py.
    """
    response = await call_next(request)
    settings = request.app.state.settings
    context: Optional[AuthContext] = getattr(request.state, "auth", None)
    if (
        not settings.session_sliding
        or context is None
        or context.channel is not Channel.SESSION
        or not context.is_authenticated
        or context.expires_at is None
    ):
        return response
    cookie_prefix = f"{settings.session_cookie_name}="
    if any(k == b"set-cookie" and v.decode("latin-1").startswith(cookie_prefix) for k, v in response.raw_headers):
        # The route already wrote or deleted the cookie (sign-in, sign-out).
        return response
    session_id = extract_session_id(request)
    if session_id:
        _set_session_cookie(request, response, session_id, max_age=max(int(context.expires_at - time.time()), 0))
    return response


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("/login")
def login_prompt(request: Request, context: AuthContext = Depends(session_context)):
    """Describe the sign-in form. Already signed-in browsers go straight on."""
    next_url = _safe_next(request.query_params.get("next"))
    if context.is_authenticated:
        return RedirectResponse(next_url, status_code=302)
    return JSONResponse(
        {
            "action": "/login",
            "fields": ["login", "password"],
            "next": next_url,
            "error_msg": _ERROR_MESSAGES.get(request.query_params.get("error", "")),
        }
    )


@router.post("/login")
@limiter.shared_limit(login_rate_limit, scope=SIGN_IN_SCOPE)
def login_post(request: Request, login: str = Form(...), password: str = Form(...)) -> RedirectResponse:
    """Handle sign-in form submission.

    InvalidCredentials propagates to the exception handler, which redirects to
    /login?error=bad_credentials for every failure reason alike.
    """
    service = get_auth_service(request)
    # Replace any session the browser already holds (session fixation).
    service.sign_out_session(extract_session_id(request))
    _principal, session_id = service.sign_in_session(login, password, label=request.headers.get("User-Agent"))
    resp = RedirectResponse(_safe_next(request.query_params.get("next")), status_code=302)
    _set_session_cookie(request, resp, session_id)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    """Revoke the session server-side and clear the cookie. Idempotent."""
    get_auth_service(request).sign_out_session(extract_session_id(request))
    resp = RedirectResponse("/login?error=signed_out", status_code=302)
    resp.delete_cookie(request.app.state.settings.session_cookie_name)
    return resp


@router.get("/account")
def account(principal: Principal = Depends(require_session)) -> JSONResponse:
    """Protected page for the signed-in principal."""
    return JSONResponse(
        {"id": principal.id, "login": principal.login, "role": principal.role, "last_login": principal.last_login}
    )
