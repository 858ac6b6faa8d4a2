"""
auth/errors.py -- Typed domain errors for the credential lifecycle.

Each error carries a stable machine-readable `code`, the HTTP status the API
boundary should use, and a user-facing `message`. Route handlers never build
these responses by hand: api/main.py registers one exception handler for
AuthError and renders the shared ErrorResponse envelope.

StoreUnavailable is deliberately separate from the domain errors. Its
`message` is generic; the underlying exception is logged by the store and
chained via `raise ... from exc`, never sent to the client.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every error the auth flows raise on purpose."""

    code: str = "auth_error"
    status_code: int = 400
    default_message: str = "Request could not be processed."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AuthError):
    """Bad input shape or password policy violation. Message is actionable."""

    code = "validation_error"
    status_code = 400
    default_message = "Request validation failed."


class DuplicateUsername(AuthError):
    code = "duplicate_username"
    status_code = 400
    default_message = "Username already exists."


class NotFound(AuthError):
    code = "not_found"
    status_code = 404
    default_message = "Account not found."


class InvalidCredentials(AuthError):
    """Returned for unknown usernames AND wrong passwords alike."""

    code = "invalid_credentials"
    status_code = 401
    default_message = "Invalid username or password."


class InvalidOrExpiredToken(AuthError):
    code = "invalid_or_expired_token"
    status_code = 400
    default_message = "Invalid or expired reset token."


class Unauthenticated(AuthError):
    code = "unauthenticated"
    status_code = 401
    default_message = "Authentication required."


class StoreUnavailable(AuthError):
    code = "store_unavailable"
    status_code = 500
    default_message = "Storage is temporarily unavailable."


class HashTimeout(StoreUnavailable):
    """Password hashing exceeded its time budget."""

    code = "hash_timeout"
    status_code = 503
    default_message = "Service is busy. Try again shortly."
