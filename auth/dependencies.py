"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The session id travels in the httpOnly "session_id" cookie set by the login
and register routes. When that session is missing or expired but a
"remember_me" cookie is present, the remember-me token is exchanged for a
fresh session transparently.

try_get_current_account() is the soft variant (returns None on failure).
get_current_account() wraps it and raises Unauthenticated (401) otherwise.

Every successful resolution re-sets the session cookie so the browser-side
expiry slides along with the server-side one (rolling sessions).

Layer rule: may import from fastapi because this module is part of the
FastAPI dependency injection system. No imports from api/ or core/.
"""

from __future__ import annotations

from fastapi import Request, Response

from auth.errors import Unauthenticated
from auth.models import Account
from auth.service import AuthService

SESSION_COOKIE = "session_id"
REMEMBER_COOKIE = "remember_me"


def set_session_cookie(response: Response, session_id: str, max_age: int, secure: bool) -> None:
    """Write the session id as an httpOnly cookie.

    samesite="strict": never sent on cross-site requests (CSRF mitigation).
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    """
    response.set_cookie(
        SESSION_COOKIE,
        value=session_id,
        httponly=True,
        samesite="strict",
        secure=secure,
        max_age=max_age,
        path="/",
    )


def set_remember_cookie(response: Response, token: str, max_age: int, secure: bool) -> None:
    response.set_cookie(
        REMEMBER_COOKIE,
        value=token,
        httponly=True,
        samesite="strict",
        secure=secure,
        max_age=max_age,
        path="/",
    )


def clear_auth_cookies(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE, path="/")
    response.delete_cookie(REMEMBER_COOKIE, path="/")


async def try_get_current_account(request: Request, response: Response) -> Account | None:
    """Authenticate the request via session cookie, then remember-me cookie.

    Returns None instead of raising so optional-auth routes can use it.
    """
    service: AuthService = request.app.state.auth_service
    settings = request.app.state.settings

    session_id = request.cookies.get(SESSION_COOKIE)
    if session_id:
        try:
            account = await service.current_account(session_id)
        except Unauthenticated:
            account = None
        if account is not None:
            set_session_cookie(response, session_id, settings.session_idle_seconds, settings.secure_cookies)
            return account

    remember_token = request.cookies.get(REMEMBER_COOKIE)
    if remember_token:
        try:
            account, new_session_id = await service.resume(remember_token)
        except Unauthenticated:
            return None
        set_session_cookie(response, new_session_id, settings.session_idle_seconds, settings.secure_cookies)
        return account

    return None


async def get_current_account(request: Request, response: Response) -> Account:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(account: Account = Depends(get_current_account)): ...
    """
    account = await try_get_current_account(request, response)
    if account is None:
        raise Unauthenticated()
    return account
