"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic beyond trivial
predicates). Stores own persistence; the service owns the flows.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Account:
    """A local username/password identity.

    password_hash is a bcrypt modular-crypt string (cost + salt + key).

    reset_token and remember_me_token hold HMAC-SHA256 digests of the raw
    tokens, never the tokens themselves. The raw values are handed to the
    caller once, at issue time.

    reset_token_expires_at and remember_me_expires_at are absolute unix
    timestamps. A token whose expiry has passed must not authenticate
    anything even if the digest is still stored -- see
    ResetTokenManager.validate() and RememberMeTokens.resolve().
    """

    username: str
    password_hash: str
    id: int | None = None
    reset_token: str | None = None
    reset_token_expires_at: float | None = None
    remember_me_token: str | None = None
    remember_me_expires_at: float | None = None
    created_at: str | None = None


@dataclass
class Session:
    """Server-side session state keyed by an opaque session id.

    expires_at slides forward on activity (see SessionManager.touch) but
    never past created_at + the configured absolute lifetime.
    """

    session_id: str
    account_id: int
    created_at: float
    expires_at: float
    payload: dict = field(default_factory=dict)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


@dataclass
class LoginResult:
    """What a successful login hands back to the HTTP layer."""

    account: Account
    session_id: str
    remember_me_token: str | None = None
