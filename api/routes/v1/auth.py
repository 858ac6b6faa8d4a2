"""
api/routes/v1/auth.py -- Credential lifecycle REST endpoints.

Routes:
  POST /api/v1/auth/register         -- create account; sets session cookie; 201
  POST /api/v1/auth/login            -- password login; sets session (+ remember-me) cookie
  POST /api/v1/auth/logout           -- destroys session, clears cookies; always 200
  POST /api/v1/auth/forgot-password  -- issues a reset token (returned in body)
  POST /api/v1/auth/reset-password   -- spends a reset token to set a new password
  GET  /api/v1/auth/me               -- current account (requires session)

Security:
  [H2] register/login/forgot-password/reset-password carry the tighter
       credential rate limit from settings.
  [C1] Unknown username and wrong password give the same 401 body; the
       service equalizes timing.
  [M5] Cache-Control: no-store on every response that carries a credential.

Errors are raised as auth.errors.AuthError subclasses; api/main.py renders them.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import credential_limit, limiter
from api.models import (
    AccountResponse,
    ForgotPasswordRequest,
    ForgotPasswordResponse,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
)
from auth.dependencies import (
    REMEMBER_COOKIE,
    SESSION_COOKIE,
    clear_auth_cookies,
    get_current_account,
    set_remember_cookie,
    set_session_cookie,
)
from auth.models import Account
from auth.service import AuthService

# Auth policy:
# - POST /auth/register, /auth/login, /auth/forgot-password, /auth/reset-password: public
# - POST /auth/logout: public -- destroying a session needs no prior auth
# - GET  /auth/me: requires a live session (get_current_account)
router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(credential_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=AccountResponse, status_code=201)
async def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account and start a session for it."""
    settings = request.app.state.settings
    account, session_id = await _service(request).register(body.username, body.password)
    resp = JSONResponse(status_code=201, content=AccountResponse.from_account(account).model_dump())
    set_session_cookie(resp, session_id, settings.session_idle_seconds, settings.secure_cookies)
    return _no_store(resp)


@limiter.limit(credential_limit)  # [H2]
@router.post("/auth/login", response_model=AccountResponse)
async def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; set the session cookie.

    With remember_me, also set a long-lived remember-me cookie that
    auth.dependencies exchanges for a new session once this one lapses.
    """
    settings = request.app.state.settings
    result = await _service(request).login(body.username, body.password, remember_me=body.remember_me)
    resp = JSONResponse(status_code=200, content=AccountResponse.from_account(result.account).model_dump())
    set_session_cookie(resp, result.session_id, settings.session_idle_seconds, settings.secure_cookies)
    if result.remember_me_token:
        set_remember_cookie(
            resp, result.remember_me_token, settings.remember_me_max_age_seconds, settings.secure_cookies
        )
    return _no_store(resp)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout(request: Request) -> JSONResponse:
    """Destroy the session (if any) and clear both auth cookies. Idempotent."""
    await _service(request).logout(request.cookies.get(SESSION_COOKIE), request.cookies.get(REMEMBER_COOKIE))
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_auth_cookies(resp)
    return resp


@limiter.limit(credential_limit)  # [H2]
@router.post("/auth/forgot-password", response_model=ForgotPasswordResponse)
async def forgot_password(request: Request, body: ForgotPasswordRequest) -> JSONResponse:
    """Issue a password-reset token.

    The token is returned in the body because the template ships no mail
    transport. Returns 404 for unknown usernames.
    """
    token = await _service(request).forgot_password(body.username)
    resp = JSONResponse(content=ForgotPasswordResponse(reset_token=token).model_dump())
    return _no_store(resp)


@limiter.limit(credential_limit)  # [H2]
@router.post("/auth/reset-password", response_model=MessageResponse)
async def reset_password(request: Request, body: ResetPasswordRequest) -> JSONResponse:
    """Set a new password using a reset token. Signs out every existing session."""
    await _service(request).reset_password(body.token, body.password)
    resp = JSONResponse(content=MessageResponse(message="Password reset successful").model_dump())
    return _no_store(resp)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=AccountResponse)
async def me(response: Response, current_account: Account = Depends(get_current_account)) -> AccountResponse:
    """Return the account bound to the current session."""
    response.headers["Cache-Control"] = "no-store"  # [M5]
    return AccountResponse.from_account(current_account)
