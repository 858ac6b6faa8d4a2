"""
auth/hasher.py -- Password hashing and verification (bcrypt).

Security design decisions:
  bcrypt: deliberately slow key derivation with a per-password 16-byte salt.
       The stored string is modular-crypt format ($2b$<cost>$<salt><key>), so
       verification needs no side table: the salt and cost are read back out
       of the stored value.

  Constant-time comparison: verify_password() re-derives the key with the
       stored salt and compares the full strings with hmac.compare_digest.
       A short-circuiting == would leak how many leading bytes matched.

  Fail closed: a malformed stored hash (truncated, wrong prefix, not ASCII)
       makes verify_password() return False. It never raises past this module.

  72-byte limit: bcrypt only reads the first 72 bytes of input and current
       releases raise ValueError beyond that. auth/policy.py rejects longer
       passwords before they get here; hash_password() refuses them too so
       the limit cannot be bypassed by calling it directly.

  Timing equalization [C1]: CredentialHasher.burn() lets the login flow run a full verify
       even when the username does not exist, so response time does not
       reveal which usernames are registered.

Using bcrypt directly rather than passlib[bcrypt]: passlib's wrap-bug
detection feeds bcrypt a >72-byte probe that bcrypt 4.x rejects.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hmac

import bcrypt

MAX_PASSWORD_BYTES = 72
DEFAULT_ROUNDS = 12


def hash_password(plain: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a bcrypt hash of the plaintext password with a fresh random salt.

    Raises ValueError if the password exceeds bcrypt's 72-byte input limit.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password exceeds {MAX_PASSWORD_BYTES} bytes.")
    return bcrypt.hashpw(encoded, bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, stored_hash: str) -> bool:
    """Return True if the plaintext password matches the stored bcrypt hash.

    Returns False for any mismatch and for any malformed stored hash.
    """
    try:
        encoded = plain.encode("utf-8")
        if len(encoded) > MAX_PASSWORD_BYTES:
            return False
        stored = stored_hash.encode("ascii")
        candidate = bcrypt.hashpw(encoded, stored)
    except (AttributeError, TypeError, ValueError, UnicodeError):
        return False
    return hmac.compare_digest(candidate, stored)


class CredentialHasher:
    """Injectable wrapper so the cost factor comes from settings.

    Tests pass rounds=4 (bcrypt's minimum) to keep the suite fast.
    """

    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        # Same cost as real hashes, computed once so the first
        # unknown-username login is not measurably faster than later ones [C1].
        self._dummy_hash = hash_password("starterkit_timing_dummy", rounds)

    def hash(self, password: str) -> str:
        return hash_password(password, self.rounds)

    def verify(self, password: str, stored_hash: str) -> bool:
        return verify_password(password, stored_hash)

    def burn(self, password: str) -> None:
        """Spend one verify's worth of work against the dummy hash [C1]."""
        verify_password(password, self._dummy_hash)
