"""Unit tests for auth/service.py -- AuthService flows.

Covers:
- register: success, duplicate, policy rejection, empty username,
  concurrent same-name registration (exactly one wins)
- login: success, identical error for unknown user and wrong password,
  remember-me token issuance
- logout: idempotent, revokes remember-me even when the session has lapsed
  or only the remember-me token is presented
- forgot/reset password: NotFound, single use, expiry, policy, sessions
  and remember-me revoked afterwards
- current_account and resume, including remember-me max age
- hash timeout surfaces as HashTimeout
"""

from __future__ import annotations

import asyncio
import time

import pytest

from auth.errors import (
    DuplicateUsername,
    HashTimeout,
    InvalidCredentials,
    InvalidOrExpiredToken,
    NotFound,
    Unauthenticated,
    ValidationError,
)
from auth.service import AuthService
from conftest import REMEMBER_ME_MAX_AGE, STRONG_PASSWORD, FakeClock

NEW_PASSWORD = "N3w!Passw0rd"


class TestRegister:
    @pytest.mark.asyncio
    async def test_register_creates_account_and_session(self, service: AuthService) -> None:
        account, session_id = await service.register("alice", STRONG_PASSWORD)
        assert account.id is not None
        assert account.password_hash != STRONG_PASSWORD
        assert account.password_hash.startswith("$2")
        assert service.sessions.load(session_id).account_id == account.id

    @pytest.mark.asyncio
    async def test_duplicate_username(self, service: AuthService) -> None:
        await service.register("alice", STRONG_PASSWORD)
        with pytest.raises(DuplicateUsername):
            await service.register("alice", STRONG_PASSWORD)

    @pytest.mark.asyncio
    async def test_weak_password_rejected_with_policy_message(self, service: AuthService) -> None:
        with pytest.raises(ValidationError) as excinfo:
            await service.register("alice", "abc")
        assert excinfo.value.message == "Password must be at least 8 characters long"
        assert service.store.get_by_username("alice") is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("username", ["", "   ", "x" * 256])
    async def test_bad_username_rejected(self, service: AuthService, username: str) -> None:
        with pytest.raises(ValidationError):
            await service.register(username, STRONG_PASSWORD)

    @pytest.mark.asyncio
    async def test_concurrent_registration_exactly_one_wins(self, service: AuthService) -> None:
        results = await asyncio.gather(
            service.register("racer", STRONG_PASSWORD),
            service.register("racer", STRONG_PASSWORD),
            return_exceptions=True,
        )
        winners = [r for r in results if not isinstance(r, BaseException)]
        losers = [r for r in results if isinstance(r, DuplicateUsername)]
        assert len(winners) == 1
        assert len(losers) == 1


class TestLogin:
    @pytest.mark.asyncio
    async def test_login_success(self, service: AuthService) -> None:
        account, _ = await service.register("alice", STRONG_PASSWORD)
        result = await service.login("alice", STRONG_PASSWORD)
        assert result.account.id == account.id
        assert result.remember_me_token is None
        session = service.sessions.load(result.session_id)
        assert session.account_id == account.id
        assert session.payload == {"remember_me": False}

    @pytest.mark.asyncio
    async def test_wrong_password_and_unknown_user_are_indistinguishable(self, service: AuthService) -> None:
        await service.register("alice", STRONG_PASSWORD)
        with pytest.raises(InvalidCredentials) as wrong:
            await service.login("alice", "Wr0ng!Password")
        with pytest.raises(InvalidCredentials) as unknown:
            await service.login("nobody", STRONG_PASSWORD)
        assert wrong.value.message == unknown.value.message
        assert wrong.value.code == unknown.value.code

    @pytest.mark.asyncio
    async def test_unknown_user_still_runs_a_verify(self, service: AuthService, monkeypatch) -> None:
        calls = []
        monkeypatch.setattr(service.hasher, "burn", lambda password: calls.append(password))
        with pytest.raises(InvalidCredentials):
            await service.login("nobody", "whatever")
        assert calls == ["whatever"]

    @pytest.mark.asyncio
    async def test_remember_me_issues_token(self, service: AuthService) -> None:
        account, _ = await service.register("alice", STRONG_PASSWORD)
        result = await service.login("alice", STRONG_PASSWORD, remember_me=True)
        assert result.remember_me_token
        assert service.remember_tokens.resolve(result.remember_me_token).id == account.id
        assert service.sessions.load(result.session_id).payload == {"remember_me": True}


class TestLogout:
    @pytest.mark.asyncio
    async def test_logout_destroys_session(self, service: AuthService) -> None:
        _, session_id = await service.register("alice", STRONG_PASSWORD)
        await service.logout(session_id)
        assert service.sessions.load(session_id) is None
        with pytest.raises(Unauthenticated):
            await service.current_account(session_id)

    @pytest.mark.asyncio
    async def test_logout_is_idempotent(self, service: AuthService) -> None:
        _, session_id = await service.register("alice", STRONG_PASSWORD)
        await service.logout(session_id)
        await service.logout(session_id)
        await service.logout("unknown")
        await service.logout(None)

    @pytest.mark.asyncio
    async def test_logout_revokes_remember_me(self, service: AuthService) -> None:
        await service.register("alice", STRONG_PASSWORD)
        result = await service.login("alice", STRONG_PASSWORD, remember_me=True)
        await service.logout(result.session_id)
        assert service.remember_tokens.resolve(result.remember_me_token) is None

    @pytest.mark.asyncio
    async def test_logout_of_expired_session_revokes_remember_me(
        self, service: AuthService, clock: FakeClock
    ) -> None:
        await service.register("alice", STRONG_PASSWORD)
        result = await service.login("alice", STRONG_PASSWORD, remember_me=True)
        clock.advance(5 * 3600)
        assert service.sessions.load(result.session_id) is None

        await service.logout(result.session_id)
        assert service.remember_tokens.resolve(result.remember_me_token) is None

    @pytest.mark.asyncio
    async def test_logout_with_only_remember_me_token(self, service: AuthService) -> None:
        await service.register("alice", STRONG_PASSWORD)
        result = await service.login("alice", STRONG_PASSWORD, remember_me=True)

        await service.logout(None, result.remember_me_token)
        assert service.remember_tokens.resolve(result.remember_me_token) is None
        with pytest.raises(Unauthenticated):
            await service.resume(result.remember_me_token)


class TestPasswordReset:
    @pytest.mark.asyncio
    async def test_forgot_password_unknown_user(self, service: AuthService) -> None:
        with pytest.raises(NotFound):
            await service.forgot_password("nobody")

    @pytest.mark.asyncio
    async def test_reset_flow(self, service: AuthService) -> None:
        await service.register("alice", STRONG_PASSWORD)
        token = await service.forgot_password("alice")

        await service.reset_password(token, NEW_PASSWORD)

        with pytest.raises(InvalidCredentials):
            await service.login("alice", STRONG_PASSWORD)
        result = await service.login("alice", NEW_PASSWORD)
        assert result.account.username == "alice"

    @pytest.mark.asyncio
    async def test_reset_token_is_single_use(self, service: AuthService) -> None:
        await service.register("alice", STRONG_PASSWORD)
        token = await service.forgot_password("alice")
        await service.reset_password(token, NEW_PASSWORD)
        with pytest.raises(InvalidOrExpiredToken):
            await service.reset_password(token, "An0ther!Passw0rd")
        await service.login("alice", NEW_PASSWORD)

    @pytest.mark.asyncio
    async def test_expired_token_rejected(self, service: AuthService, clock: FakeClock) -> None:
        await service.register("alice", STRONG_PASSWORD)
        token = await service.forgot_password("alice")
        clock.advance(3600)
        with pytest.raises(InvalidOrExpiredToken):
            await service.reset_password(token, NEW_PASSWORD)

    @pytest.mark.asyncio
    async def test_garbage_token_rejected(self, service: AuthService) -> None:
        with pytest.raises(InvalidOrExpiredToken):
            await service.reset_password("not-a-token", NEW_PASSWORD)

    @pytest.mark.asyncio
    async def test_weak_new_password_keeps_token(self, service: AuthService) -> None:
        await service.register("alice", STRONG_PASSWORD)
        token = await service.forgot_password("alice")
        with pytest.raises(ValidationError):
            await service.reset_password(token, "weak")
        # the token was not spent by the rejected attempt
        await service.reset_password(token, NEW_PASSWORD)

    @pytest.mark.asyncio
    async def test_reset_signs_out_everywhere(self, service: AuthService) -> None:
        _, first = await service.register("alice", STRONG_PASSWORD)
        second = await service.login("alice", STRONG_PASSWORD, remember_me=True)
        token = await service.forgot_password("alice")

        await service.reset_password(token, NEW_PASSWORD)

        assert service.sessions.load(first) is None
        assert service.sessions.load(second.session_id) is None
        assert service.remember_tokens.resolve(second.remember_me_token) is None

    @pytest.mark.asyncio
    async def test_concurrent_resets_with_one_token(self, service: AuthService) -> None:
        await service.register("alice", STRONG_PASSWORD)
        token = await service.forgot_password("alice")
        results = await asyncio.gather(
            service.reset_password(token, NEW_PASSWORD),
            service.reset_password(token, "An0ther!Passw0rd"),
            return_exceptions=True,
        )
        assert sum(1 for r in results if isinstance(r, InvalidOrExpiredToken)) == 1
        assert sum(1 for r in results if not isinstance(r, BaseException)) == 1


class TestCurrentAccountAndResume:
    @pytest.mark.asyncio
    async def test_current_account(self, service: AuthService) -> None:
        account, session_id = await service.register("alice", STRONG_PASSWORD)
        assert (await service.current_account(session_id)).id == account.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("session_id", [None, "", "unknown"])
    async def test_current_account_requires_session(self, service: AuthService, session_id) -> None:
        with pytest.raises(Unauthenticated):
            await service.current_account(session_id)

    @pytest.mark.asyncio
    async def test_current_account_slides_expiry(self, service: AuthService, clock: FakeClock) -> None:
        _, session_id = await service.register("alice", STRONG_PASSWORD)
        clock.advance(3000)
        await service.current_account(session_id)
        clock.advance(3000)
        await service.current_account(session_id)

    @pytest.mark.asyncio
    async def test_session_of_missing_account_is_dropped(self, service: AuthService) -> None:
        session_id = service.sessions.create(424242)
        with pytest.raises(Unauthenticated):
            await service.current_account(session_id)
        assert service.sessions.load(session_id) is None

    @pytest.mark.asyncio
    async def test_resume_from_remember_me(self, service: AuthService, clock: FakeClock) -> None:
        account, _ = await service.register("alice", STRONG_PASSWORD)
        result = await service.login("alice", STRONG_PASSWORD, remember_me=True)
        clock.advance(5 * 3600)
        assert service.sessions.load(result.session_id) is None

        resumed, session_id = await service.resume(result.remember_me_token)
        assert resumed.id == account.id
        assert session_id != result.session_id
        assert (await service.current_account(session_id)).id == account.id

    @pytest.mark.asyncio
    async def test_resume_rejected_after_max_age(self, service: AuthService, clock: FakeClock) -> None:
        await service.register("alice", STRONG_PASSWORD)
        result = await service.login("alice", STRONG_PASSWORD, remember_me=True)
        clock.advance(REMEMBER_ME_MAX_AGE)
        with pytest.raises(Unauthenticated):
            await service.resume(result.remember_me_token)

    @pytest.mark.asyncio
    async def test_resumed_sessions_end_with_the_token(self, service: AuthService, clock: FakeClock) -> None:
        """Chaining resume() cannot outlive the remember-me max age."""
        await service.register("alice", STRONG_PASSWORD)
        result = await service.login("alice", STRONG_PASSWORD, remember_me=True)
        elapsed = 0
        while elapsed + 5 * 3600 < REMEMBER_ME_MAX_AGE:
            clock.advance(5 * 3600)
            elapsed += 5 * 3600
            await service.resume(result.remember_me_token)
        clock.advance(REMEMBER_ME_MAX_AGE - elapsed)
        with pytest.raises(Unauthenticated):
            await service.resume(result.remember_me_token)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", [None, "", "f" * 64])
    async def test_resume_rejects_unknown_token(self, service: AuthService, token) -> None:
        with pytest.raises(Unauthenticated):
            await service.resume(token)


class TestHashTimeout:
    @pytest.mark.asyncio
    async def test_slow_hash_raises_hash_timeout(self, service: AuthService, monkeypatch) -> None:
        def slow_hash(password: str) -> str:
            time.sleep(0.5)
            return "never"

        monkeypatch.setattr(service.hasher, "hash", slow_hash)
        service.hash_timeout = 0.05
        with pytest.raises(HashTimeout):
            await service.register("alice", STRONG_PASSWORD)
        assert service.store.get_by_username("alice") is None
