"""
auth/tokens.py -- Reset and remember-me token lifecycle.

Security design decisions:
  Entropy: secrets.token_hex(32) gives 256 bits. Guessing a live token is
       computationally infeasible, so no rate limit is needed on lookup.

  Storage: only HMAC-SHA256(SECRET_KEY, raw_token) is persisted. The digest is
       deterministic, so the store can find the account with an indexed
       equality lookup, and a leaked database row cannot be replayed without
       also knowing SECRET_KEY. bcrypt's slowness is unnecessary for
       high-entropy tokens.

  Expiry: each token's absolute expiry is stored beside it. validate() and
       resolve() check it against the same clock issue() used, strictly
       (now < expiry), with no grace window. Presence of the digest alone never
       authorizes anything.

  Single use: consume() clears digest and expiry with one conditional UPDATE
       keyed on the digest, so a token can be spent exactly once even when two
       requests race.

Layer rule: no imports from api/ or core/. The secret key is injected.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
from collections.abc import Callable

from auth.models import Account
from auth.store import AccountStore

logger = logging.getLogger("starterkit.auth.tokens")

DEFAULT_RESET_TTL_SECONDS = 3600
DEFAULT_REMEMBER_ME_MAX_AGE_SECONDS = 30 * 24 * 3600


def generate_token() -> str:
    """Return a new opaque token: 32 random bytes as 64 hex characters."""
    return secrets.token_hex(32)


def hash_token(raw_token: str, secret_key: str) -> str:
    """Return HMAC-SHA256(secret_key, raw_token) as a hex string."""
    return hmac.new(secret_key.encode(), raw_token.encode(), hashlib.sha256).hexdigest()


class ResetTokenManager:
    """Issues, validates and consumes time-limited password-reset tokens.

    clock must be the same callable for issue() and validate(); tests inject
    a fake one to move time forward.
    """

    def __init__(
        self,
        store: AccountStore,
        secret_key: str,
        ttl_seconds: int = DEFAULT_RESET_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self._secret_key = secret_key
        self._clock = clock

    def issue(self, account: Account) -> str:
        """Persist a fresh token digest and expiry on the account; return the raw token.

        Issuing again replaces any earlier token, which stops matching.
        """
        token = generate_token()
        expires_at = self._clock() + self.ttl_seconds
        self.store.update(
            account.id,
            reset_token=hash_token(token, self._secret_key),
            reset_token_expires_at=expires_at,
        )
        logger.info("Reset token issued for account id=%s", account.id)
        return token

    def validate(self, token: str) -> Account | None:
        """Return the account the token belongs to, or None if unknown or expired."""
        if not token:
            return None
        account = self.store.get_by_reset_token(hash_token(token, self._secret_key))
        if account is None or account.reset_token_expires_at is None:
            return None
        if self._clock() >= account.reset_token_expires_at:
            logger.info("Expired reset token presented for account id=%s", account.id)
            return None
        return account

    def consume(self, account: Account) -> bool:
        """Clear the account's reset token. True only for the caller that cleared it."""
        if account.reset_token is None:
            return False
        return self.store.clear_reset_token(account.id, account.reset_token)


class RememberMeTokens:
    """Long-lived "remember me" credential, one per account.

    The raw token goes into a cookie; resolve() turns it back into an account
    so a fresh session can be started without a password. The token carries
    its own absolute expiry, checked with the same strict rule as reset
    tokens, so the cookie's max_age is not the only limit on its life.
    """

    def __init__(
        self,
        store: AccountStore,
        secret_key: str,
        max_age_seconds: int = DEFAULT_REMEMBER_ME_MAX_AGE_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.max_age_seconds = max_age_seconds
        self._secret_key = secret_key
        self._clock = clock

    def issue(self, account: Account) -> str:
        token = generate_token()
        self.store.update(
            account.id,
            remember_me_token=hash_token(token, self._secret_key),
            remember_me_expires_at=self._clock() + self.max_age_seconds,
        )
        return token

    def resolve(self, token: str) -> Account | None:
        """Return the token's account, or None if unknown or expired."""
        if not token:
            return None
        account = self.store.get_by_remember_me_token(hash_token(token, self._secret_key))
        if account is None or account.remember_me_expires_at is None:
            return None
        if self._clock() >= account.remember_me_expires_at:
            logger.info("Expired remember-me token presented for account id=%s", account.id)
            return None
        return account

    def revoke(self, account_id: int) -> None:
        self.store.update(account_id, remember_me_token=None, remember_me_expires_at=None)
