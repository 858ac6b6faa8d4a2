"""
auth/policy.py -- Password strength policy.

Runs before hashing on register and reset. Messages are meant to be shown to
the user as-is, so each rule that fails says what to fix.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from auth.hasher import MAX_PASSWORD_BYTES

MIN_LENGTH = 8
SYMBOLS = "!@#$%^&*()_+-=[]{};':\"\\|,.<>/?"

_UPPER = re.compile(r"[A-Z]")
_LOWER = re.compile(r"[a-z]")
_DIGIT = re.compile(r"[0-9]")


@dataclass(frozen=True)
class PolicyResult:
    valid: bool
    message: str | None = None


def check_password(password: str | None) -> PolicyResult:
    if not password:
        return PolicyResult(False, "Password cannot be empty")
    if len(password) < MIN_LENGTH:
        return PolicyResult(False, f"Password must be at least {MIN_LENGTH} characters long")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        return PolicyResult(False, f"Password must be at most {MAX_PASSWORD_BYTES} bytes long")

    has_symbol = any(ch in SYMBOLS for ch in password)
    if not (_UPPER.search(password) and _LOWER.search(password) and _DIGIT.search(password) and has_symbol):
        return PolicyResult(
            False,
            "Password must contain at least one uppercase letter, one lowercase letter, "
            "one number, and one special character",
        )
    return PolicyResult(True)
