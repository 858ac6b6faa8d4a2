"""
auth/service.py -- Credential lifecycle flows (register, login, logout,
forgot-password, reset-password, current-account, remember-me resume).

Pattern: Application service / facade. AuthService owns the ordering of each
flow and nothing else: hashing lives in auth/hasher.py, token rules in
auth/tokens.py, persistence in auth/store.py and auth/sessions.py. All
collaborators are passed in, so tests build an AuthService over in-memory
SQLite or doubles without touching module globals.

Scheduling:
  Every flow is a coroutine. bcrypt runs in a worker thread via
  asyncio.to_thread and is bounded by asyncio.wait_for(hash_timeout), so a
  burst of expensive hashes cannot stall the event loop indefinitely.
  Store calls are short SQLite statements made inline.

  Steps run strictly in the order written. There is no cross-component
  rollback: if a request is cancelled after a write has been committed, that
  write stays.

Enumeration:
  login() returns the same InvalidCredentials for an unknown username and a
  wrong password, and burns one dummy verify for unknown usernames so timing
  matches too [C1]. forgot_password() does reveal existence via NotFound;
  that behavior is kept on purpose for the starter template.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import TypeVar

from auth.errors import (
    DuplicateUsername,
    HashTimeout,
    InvalidCredentials,
    InvalidOrExpiredToken,
    NotFound,
    Unauthenticated,
    ValidationError,
)
from auth.hasher import CredentialHasher
from auth.models import Account, LoginResult
from auth.policy import check_password
from auth.sessions import SessionManager
from auth.store import AccountStore
from auth.tokens import RememberMeTokens, ResetTokenManager

logger = logging.getLogger("starterkit.auth.service")

T = TypeVar("T")

DEFAULT_HASH_TIMEOUT = 10.0
MAX_USERNAME_LENGTH = 255


class AuthService:
    def __init__(
        self,
        store: AccountStore,
        sessions: SessionManager,
        hasher: CredentialHasher,
        reset_tokens: ResetTokenManager,
        remember_tokens: RememberMeTokens,
        hash_timeout: float = DEFAULT_HASH_TIMEOUT,
    ) -> None:
        self.store = store
        self.sessions = sessions
        self.hasher = hasher
        self.reset_tokens = reset_tokens
        self.remember_tokens = remember_tokens
        self.hash_timeout = hash_timeout

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _offload(self, fn: Callable[..., T], *args) -> T:
        try:
            return await asyncio.wait_for(asyncio.to_thread(fn, *args), timeout=self.hash_timeout)
        except asyncio.TimeoutError as exc:
            logger.error("Password hashing exceeded %.1fs budget", self.hash_timeout)
            raise HashTimeout() from exc

    @staticmethod
    def _require_username(username: str) -> str:
        if not username or not username.strip():
            raise ValidationError("Username cannot be empty")
        if len(username) > MAX_USERNAME_LENGTH:
            raise ValidationError(f"Username must be at most {MAX_USERNAME_LENGTH} characters long")
        return username

    @staticmethod
    def _enforce_policy(password: str) -> None:
        result = check_password(password)
        if not result.valid:
            raise ValidationError(result.message)

    # ------------------------------------------------------------------
    # Flows
    # ------------------------------------------------------------------

    async def register(self, username: str, password: str) -> tuple[Account, str]:
        """Create an account and sign it in. Returns (account, session_id).

        The early lookup only gives a fast, friendly error. The UNIQUE
        constraint in AccountStore.create() is what decides a race between
        two registrations of the same name.
        """
        username = self._require_username(username)
        if self.store.get_by_username(username) is not None:
            raise DuplicateUsername()
        self._enforce_policy(password)
        password_hash = await self._offload(self.hasher.hash, password)
        account = self.store.create(username, password_hash)
        session_id = self.sessions.create(account.id)
        logger.info("Registered account id=%s", account.id)
        return account, session_id

    async def login(self, username: str, password: str, remember_me: bool = False) -> LoginResult:
        account = self.store.get_by_username(username) if username else None
        if account is None:
            await self._offload(self.hasher.burn, password or "")
            raise InvalidCredentials()
        if not await self._offload(self.hasher.verify, password or "", account.password_hash):
            logger.info("Failed login for account id=%s", account.id)
            raise InvalidCredentials()

        remember_token = None
        if remember_me:
            remember_token = self.remember_tokens.issue(account)
        session_id = self.sessions.create(account.id, {"remember_me": bool(remember_me)})
        logger.info("Login for account id=%s", account.id)
        return LoginResult(account=account, session_id=session_id, remember_me_token=remember_token)

    async def logout(self, session_id: str | None, remember_me_token: str | None = None) -> None:
        """End the session and revoke the remember-me token of its account.

        The owner is read without the expiry filter, and the remember-me
        cookie is resolved on its own, so a lapsed session or a missing
        session cookie still revokes the token. Safe to call with unknown or
        missing values.
        """
        account_ids = set()
        if session_id:
            owner = self.sessions.owner(session_id)
            if owner is not None:
                account_ids.add(owner)
            self.sessions.destroy(session_id)
        remembered = self.remember_tokens.resolve(remember_me_token) if remember_me_token else None
        if remembered is not None:
            account_ids.add(remembered.id)
        for account_id in account_ids:
            if self.store.get_by_id(account_id) is not None:
                self.remember_tokens.revoke(account_id)

    async def forgot_password(self, username: str) -> str:
        """Issue a reset token and return it.

        The token is returned to the caller instead of being mailed; a real
        deployment must deliver it out-of-band and never echo it.
        """
        account = self.store.get_by_username(username) if username else None
        if account is None:
            raise NotFound()
        return self.reset_tokens.issue(account)

    async def reset_password(self, token: str, new_password: str) -> Account:
        account = self.reset_tokens.validate(token)
        if account is None:
            raise InvalidOrExpiredToken()
        self._enforce_policy(new_password)
        password_hash = await self._offload(self.hasher.hash, new_password)
        # Claim the token before writing: of two concurrent resets with the
        # same token only the one that clears it may change the password.
        if not self.reset_tokens.consume(account):
            raise InvalidOrExpiredToken()
        updated = self.store.update(
            account.id, password_hash=password_hash, remember_me_token=None, remember_me_expires_at=None
        )
        self.sessions.destroy_for_account(account.id)
        logger.info("Password reset for account id=%s", account.id)
        return updated

    async def current_account(self, session_id: str | None) -> Account:
        """Resolve the session to its account, sliding the session's expiry."""
        session = self.sessions.touch(session_id) if session_id else None
        if session is None:
            raise Unauthenticated()
        account = self.store.get_by_id(session.account_id)
        if account is None:
            self.sessions.destroy(session.session_id)
            raise Unauthenticated()
        return account

    async def resume(self, remember_me_token: str | None) -> tuple[Account, str]:
        """Trade a remember-me token for a new session."""
        account = self.remember_tokens.resolve(remember_me_token) if remember_me_token else None
        if account is None:
            raise Unauthenticated()
        session_id = self.sessions.create(account.id, {"remember_me": True})
        logger.info("Session resumed from remember-me token for account id=%s", account.id)
        return account, session_id
