"""
selectstart.database.engine — Database Connection & Async Helper
=================================================================

**Why this file exists:**
The tracker runs on the bot's ``asyncio`` event loop, while SQLAlchemy +
psycopg2 is **synchronous**.  Every repository call is shipped to a worker
thread with :func:`run_db` so the poll loops and the Discord gateway keep
running while a query is in flight.

Usage::

    from selectstart.database.engine import create_db_engine, init_db, run_db

    engine = create_db_engine()          # reads DATABASE_URL from .env
    init_db(engine)                      # CREATE TABLE IF NOT EXISTS …

    # Inside async code:
    roster = await run_db(repository.load_roster)
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable
from contextlib import contextmanager
from typing import ParamSpec, TypeVar

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session

from selectstart.database.models import Base

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ---------------------------------------------------------------------------
# Engine creation
# ---------------------------------------------------------------------------
def create_db_engine(url: str | None = None) -> Engine:
    """Build a SQLAlchemy :class:`Engine` from *url* or ``DATABASE_URL``.

    PostgreSQL in production; a ``sqlite:///tracker.db`` URL works for
    local runs.  The default pool is plenty: each poll loop issues one
    query at a time.

    Raises
    ------
    RuntimeError
        If no URL is given and ``DATABASE_URL`` is not set.
    """
    url = url or os.getenv("DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL is not set.  "
            "Copy .env.example → .env and set a valid PostgreSQL URL."
        )

    options: dict = {"echo": False, "pool_pre_ping": True}
    if url.startswith("sqlite"):
        # run_db hands the connection to worker threads
        options["connect_args"] = {"check_same_thread": False}
    else:
        options["pool_recycle"] = 3600

    engine = create_engine(url, **options)
    logger.info("Database engine created → %s", engine.url.host or engine.url.database)
    return engine


# ---------------------------------------------------------------------------
# Schema initialization
# ---------------------------------------------------------------------------
def init_db(engine: Engine) -> None:
    """Create all tables defined in :mod:`selectstart.database.models`.

    Idempotent, so the entry point calls it on every start.  There is no
    migration tooling; new columns need a manual ``ALTER TABLE``.
    """
    Base.metadata.create_all(engine)
    logger.info("Database tables verified / created.")


# ---------------------------------------------------------------------------
# Session helper
# ---------------------------------------------------------------------------
@contextmanager
def get_session(engine: Engine):
    """Session scope: commit when the block exits cleanly, roll back if it raises."""
    session = Session(engine)
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Async bridge
# ---------------------------------------------------------------------------
async def run_db(func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
    """Await a blocking repository call without stalling the event loop.

    ``SqlRepository`` methods open their own session, so they are safe to
    run on the default executor via :func:`asyncio.to_thread`.
    """
    return await asyncio.to_thread(func, *args, **kwargs)
