"""
auth/sessions.py -- Server-side session store with rolling expiry.

Sessions live in their own `sessions` table and are owned exclusively by
SessionManager; AccountStore never reads them.

Expiry model:
  expires_at = min(now + idle_ttl, created_at + absolute_ttl)

  create() sets it, touch() recomputes it on each authenticated request, and
  load() treats anything at or past expires_at as absent. purge_expired()
  deletes those rows; api/main.py runs it on a fixed interval so abandoned
  sessions do not accumulate.

Concurrency:
  Sessions are independent rows, so there is no cross-session locking.
  touch() is a plain UPDATE of an existing row and never an upsert, so a
  refresh racing a destroy() can only ever leave the session destroyed.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import json
import logging
import secrets
import time
from collections.abc import Callable

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text, func, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.db import build_engine
from auth.errors import StoreUnavailable
from auth.models import Session

logger = logging.getLogger("starterkit.auth.sessions")

DEFAULT_IDLE_TTL = 24 * 3600
DEFAULT_ABSOLUTE_TTL = 30 * 24 * 3600

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("session_id", String(64), primary_key=True),
    Column("account_id", Integer, nullable=False, index=True),
    Column("created_at", Float, nullable=False),
    Column("expires_at", Float, nullable=False, index=True),
    Column("payload", Text, nullable=False, server_default="{}"),
)


def new_session_id() -> str:
    """Return an opaque, URL-safe session id with 256 bits of entropy."""
    return secrets.token_urlsafe(32)


class SessionManager:
    def __init__(
        self,
        db_url: str,
        idle_ttl_seconds: int = DEFAULT_IDLE_TTL,
        absolute_ttl_seconds: int = DEFAULT_ABSOLUTE_TTL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.engine: Engine = build_engine(db_url)
        self.idle_ttl_seconds = idle_ttl_seconds
        self.absolute_ttl_seconds = absolute_ttl_seconds
        self._clock = clock
        _metadata.create_all(self.engine)

    def _expiry(self, created_at: float, now: float) -> float:
        return min(now + self.idle_ttl_seconds, created_at + self.absolute_ttl_seconds)

    def _execute(self, operation: str, statement, commit: bool = False):
        try:
            with self.engine.connect() as conn:
                result = conn.execute(statement)
                rows = result.fetchall() if result.returns_rows else None
                if commit:
                    conn.commit()
                return rows if rows is not None else result.rowcount
        except SQLAlchemyError as exc:
            logger.error("Session store %s failed: %s", operation, exc, exc_info=True)
            raise StoreUnavailable() from exc

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(self, account_id: int, payload: dict | None = None) -> str:
        """Start a session for account_id and return its id."""
        session_id = new_session_id()
        now = self._clock()
        self._execute(
            "create",
            _sessions.insert().values(
                session_id=session_id,
                account_id=account_id,
                created_at=now,
                expires_at=self._expiry(now, now),
                payload=json.dumps(payload or {}),
            ),
            commit=True,
        )
        return session_id

    def load(self, session_id: str) -> Session | None:
        """Return the session, or None if it does not exist or has expired."""
        if not session_id:
            return None
        rows = self._execute("load", select(_sessions).where(_sessions.c.session_id == session_id))
        if not rows:
            return None
        session = _row_to_session(rows[0])
        if session.is_expired(self._clock()):
            return None
        return session

    def touch(self, session_id: str) -> Session | None:
        """Slide the expiry of a live session forward and return it.

        Returns None for absent or expired sessions; those are not revived.
        """
        session = self.load(session_id)
        if session is None:
            return None
        new_expiry = self._expiry(session.created_at, self._clock())
        updated = self._execute(
            "touch",
            _sessions.update()
            .where((_sessions.c.session_id == session_id) & (_sessions.c.expires_at > self._clock()))
            .values(expires_at=new_expiry),
            commit=True,
        )
        if not updated:
            # destroyed (or swept) between load and update
            return None
        session.expires_at = new_expiry
        return session

    def owner(self, session_id: str) -> int | None:
        """Return the account id a session row belongs to, expired or not."""
        if not session_id:
            return None
        rows = self._execute("owner", select(_sessions.c.account_id).where(_sessions.c.session_id == session_id))
        return rows[0][0] if rows else None

    def destroy(self, session_id: str) -> None:
        """Remove the session. Unknown ids are ignored."""
        if not session_id:
            return
        self._execute("destroy", _sessions.delete().where(_sessions.c.session_id == session_id), commit=True)

    def destroy_for_account(self, account_id: int) -> int:
        """Remove every session of one account (used after a password reset)."""
        return self._execute(
            "destroy_for_account",
            _sessions.delete().where(_sessions.c.account_id == account_id),
            commit=True,
        )

    def purge_expired(self) -> int:
        """Delete all sessions whose expiry has passed. Returns number of rows removed."""
        removed = self._execute(
            "purge_expired",
            _sessions.delete().where(_sessions.c.expires_at <= self._clock()),
            commit=True,
        )
        if removed:
            logger.info("Purged %d expired sessions", removed)
        return removed

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def count(self) -> int:
        rows = self._execute("count", select(func.count()).select_from(_sessions))
        return rows[0][0] if rows else 0

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.warning("Session store ping failed", exc_info=True)
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


def _row_to_session(row) -> Session:
    try:
        payload = json.loads(row.payload) if row.payload else {}
    except ValueError:
        logger.warning("Discarding unreadable payload for a session of account id=%s", row.account_id)
        payload = {}
    return Session(
        session_id=row.session_id,
        account_id=row.account_id,
        created_at=row.created_at,
        expires_at=row.expires_at,
        payload=payload,
    )
