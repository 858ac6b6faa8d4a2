"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper.
AccountStore is the repository; _row_to_account is the mapper. The service
and route code never touch SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Username uniqueness is the UNIQUE constraint on accounts.username, not a
  SELECT-then-INSERT check. When two requests race to register the same
  username, SQLite lets exactly one INSERT through and the other surfaces as
  IntegrityError, which create() turns into DuplicateUsername.

  reset_token / remember_me_token columns hold HMAC digests (auth/tokens.py),
  so a leaked database does not hand out live tokens.

Error contract:
  Point lookups return None when absent. update() raises NotFound. Any other
  database failure is logged here with full detail and re-raised as
  StoreUnavailable so callers can tell "storage is down" apart from domain
  outcomes.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.db import build_engine
from auth.errors import DuplicateUsername, NotFound, StoreUnavailable
from auth.models import Account

logger = logging.getLogger("starterkit.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("reset_token", String(64), unique=True),  # HMAC-SHA256 hex digest
    Column("reset_token_expires_at", Float),  # unix timestamp
    Column("remember_me_token", String(64), unique=True),  # HMAC-SHA256 hex digest
    Column("remember_me_expires_at", Float),  # unix timestamp
    Column("created_at", String(32), nullable=False),
)

# Columns update() may touch. id, username and created_at are immutable.
_UPDATABLE_FIELDS = frozenset(
    {"password_hash", "reset_token", "reset_token_expires_at", "remember_me_token", "remember_me_expires_at"}
)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities.

    Usage:
        store = AccountStore("sqlite:///data/starterkit.db")
        account = store.create("alice", hasher.hash("S3cret!pass"))
        store.get_by_username("alice")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = build_engine(db_url)
        _metadata.create_all(self.engine)

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        """Translate infrastructure failures into StoreUnavailable.

        IntegrityError is re-raised untouched: it is a domain signal
        (duplicate username) that the caller maps itself.
        """
        try:
            yield
        except IntegrityError:
            raise
        except SQLAlchemyError as exc:
            logger.error("Account store %s failed: %s", operation, exc, exc_info=True)
            raise StoreUnavailable() from exc

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_by_id(self, account_id: int) -> Account | None:
        return self._fetch_one("get_by_id", _accounts.c.id == account_id)

    def get_by_username(self, username: str) -> Account | None:
        """Exact, case-sensitive match."""
        return self._fetch_one("get_by_username", _accounts.c.username == username)

    def get_by_reset_token(self, token_digest: str) -> Account | None:
        """Look up by reset-token digest. Does NOT check expiry -- the caller must."""
        return self._fetch_one("get_by_reset_token", _accounts.c.reset_token == token_digest)

    def get_by_remember_me_token(self, token_digest: str) -> Account | None:
        """Look up by remember-me digest. Does NOT check expiry -- the caller must."""
        return self._fetch_one("get_by_remember_me_token", _accounts.c.remember_me_token == token_digest)

    def _fetch_one(self, operation: str, clause) -> Account | None:
        with self._guard(operation), self.engine.connect() as conn:
            row = conn.execute(select(_accounts).where(clause)).fetchone()
        return _row_to_account(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, username: str, password_hash: str) -> Account:
        """Insert a new account and return it with its assigned id.

        Raises DuplicateUsername when the UNIQUE constraint rejects the row.
        """
        created_at = _now_iso()
        try:
            with self._guard("create"), self.engine.connect() as conn:
                result = conn.execute(
                    _accounts.insert().values(
                        username=username,
                        password_hash=password_hash,
                        created_at=created_at,
                    )
                )
                conn.commit()
                account_id = result.inserted_primary_key[0]
        except IntegrityError as exc:
            raise DuplicateUsername() from exc
        return Account(
            id=account_id,
            username=username,
            password_hash=password_hash,
            created_at=created_at,
        )

    def update(self, account_id: int, **fields) -> Account:
        """Partially update an account and return the fresh record.

        Only keys in _UPDATABLE_FIELDS are accepted; anything else raises
        ValueError before any SQL runs. Raises NotFound if no such account.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown account fields: {sorted(unknown)!r}")
        if fields:
            with self._guard("update"), self.engine.connect() as conn:
                result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**fields))
                conn.commit()
            if result.rowcount == 0:
                raise NotFound()
        account = self.get_by_id(account_id)
        if account is None:
            raise NotFound()
        return account

    def clear_reset_token(self, account_id: int, token_digest: str) -> bool:
        """Clear the reset token and its expiry if, and only if, it is still `token_digest`.

        A single conditional UPDATE, so of two concurrent consumers of the
        same token exactly one sees True.
        """
        with self._guard("clear_reset_token"), self.engine.connect() as conn:
            result = conn.execute(
                _accounts.update()
                .where((_accounts.c.id == account_id) & (_accounts.c.reset_token == token_digest))
                .values(reset_token=None, reset_token_expires_at=None)
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.warning("Account store ping failed", exc_info=True)
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        username=row.username,
        password_hash=row.password_hash,
        reset_token=row.reset_token,
        reset_token_expires_at=row.reset_token_expires_at,
        remember_me_token=row.remember_me_token,
        remember_me_expires_at=row.remember_me_expires_at,
        created_at=row.created_at,
    )
