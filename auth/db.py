"""
auth/db.py -- Shared SQLAlchemy engine construction for the auth stores.

AccountStore and SessionManager each own an Engine but configure it the same
way: SQLite gets check_same_thread=False (FastAPI runs sync code in a thread
pool) and WAL journal mode, and a file-backed database gets its parent
directory created on first use.

In-memory databases (":memory:" and "file:...?mode=memory" URIs) get
SingletonThreadPool explicitly: one connection per thread, held open for the
life of the engine, so the database is not dropped when a connection is
returned to the pool.
"""

from __future__ import annotations

from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.pool import SingletonThreadPool


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. In-memory databases silently keep their
    "memory" journal mode.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def is_memory_database(db_url: str) -> bool:
    database = make_url(db_url).database or ""
    return not database or database == ":memory:" or "mode=memory" in db_url


def _ensure_sqlite_dir(db_url: str) -> None:
    database = make_url(db_url).database or ""
    if is_memory_database(db_url) or database.startswith("file:"):
        return
    Path(database).expanduser().parent.mkdir(parents=True, exist_ok=True)


def build_engine(db_url: str) -> Engine:
    if not db_url.startswith("sqlite"):
        return create_engine(db_url)
    _ensure_sqlite_dir(db_url)
    kwargs: dict = {"connect_args": {"check_same_thread": False}}
    if is_memory_database(db_url):
        kwargs["poolclass"] = SingletonThreadPool
    engine = create_engine(db_url, **kwargs)
    event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine
