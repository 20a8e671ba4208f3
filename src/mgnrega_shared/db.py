"""
db.py — SQLAlchemy engine construction and dialect helpers.

The engine is an explicit handle: pipeline components take it as a
constructor argument so tests can hand them an in-memory SQLite engine.
get_engine() keeps one lazily-created default per process for the CLI,
the daemon's child runs and the trigger API.

Usage:
    from mgnrega_shared.db import create_db_engine, get_engine, upsert_insert

    engine = create_db_engine("postgresql+psycopg://...")
    engine = get_engine()                  # process default from settings

    stmt = upsert_insert(conn, raw_data).values(rows)
    stmt = stmt.on_conflict_do_nothing(index_elements=NATURAL_KEY)
"""

from __future__ import annotations

import threading
from typing import Any, Optional

import structlog
from sqlalchemy import Connection, Engine, Table, create_engine, text
from sqlalchemy.dialects import postgresql, sqlite

from mgnrega_shared.config import settings

logger = structlog.get_logger(__name__)


def create_db_engine(url: str | None = None, **overrides: Any) -> Engine:
    """
    Build an engine with the pool settings the batch pipeline relies on.

    Connections are pinged before use and recycled after
    settings.db_pool_recycle_s so a pool left idle between daily runs never
    hands out a dead connection.

    Args:
        url:        Database URL (default: settings.database_url).
        **overrides: Extra keyword arguments for sqlalchemy.create_engine.

    Returns:
        sqlalchemy.Engine
    """
    url = url or settings.database_url
    kwargs: dict[str, Any] = {"pool_pre_ping": True, "future": True}

    if url.startswith("postgresql"):
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=settings.db_pool_recycle_s,
            pool_timeout=settings.db_pool_timeout_s,
            connect_args={"connect_timeout": settings.db_connect_timeout_s},
        )
    kwargs.update(overrides)

    engine = create_engine(url, **kwargs)
    logger.info("db_engine_created", dialect=engine.dialect.name)
    return engine


# ---------------------------------------------------------------------------
# Process default: one engine per process (thread-safe via lock)
# ---------------------------------------------------------------------------
_engine_lock = threading.Lock()
_engine: Optional[Engine] = None


def get_engine() -> Engine:
    """Return the process-wide default engine, creating it on first use."""
    global _engine

    with _engine_lock:
        if _engine is None:
            _engine = create_db_engine()
        return _engine


def reset_engine() -> None:
    """Dispose and forget the default engine (useful in tests)."""
    global _engine
    with _engine_lock:
        if _engine is not None:
            _engine.dispose()
            _engine = None


# ---------------------------------------------------------------------------
# Dialect helpers
# ---------------------------------------------------------------------------


def upsert_insert(conn: Connection | Engine, table: Table):
    """
    Return the dialect-specific insert() construct for *table*.

    Both the PostgreSQL and SQLite constructs expose on_conflict_do_nothing()
    and on_conflict_do_update() with the same signature.
    """
    name = conn.dialect.name
    if name == "postgresql":
        return postgresql.insert(table)
    if name == "sqlite":
        return sqlite.insert(table)
    raise NotImplementedError(f"Upserts are not supported on dialect {name!r}")


def truncate_tables(conn: Connection, *tables: Table) -> None:
    """Empty *tables* inside the caller's transaction."""
    if conn.dialect.name == "postgresql":
        names = ", ".join(conn.dialect.identifier_preparer.format_table(t) for t in tables)
        conn.execute(text(f"TRUNCATE TABLE {names} RESTART IDENTITY"))
    else:
        for table in tables:
            conn.execute(table.delete())
