from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from flask import Flask, current_app, g
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

logger = logging.getLogger(__name__)


def engine_options(database_url: str) -> dict[str, Any]:
    """Pool settings per backend. SQLite gets the defaults."""
    options: dict[str, Any] = {"pool_pre_ping": True}
    if database_url.startswith("postgres"):
        # Managed Postgres drops idle connections; recycle well before that.
        options.update(pool_recycle=1800, pool_size=5, max_overflow=10, pool_timeout=30)
    return options


def _sqlite_foreign_keys(dbapi_connection, _connection_record) -> None:
    # Collaborators, comments and uploads rely on ON DELETE CASCADE.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(database_url: str) -> Engine:
    engine = create_engine(database_url, **engine_options(database_url))
    if database_url.startswith("sqlite"):
        event.listen(engine, "connect", _sqlite_foreign_keys)
    return engine


def init_db(app: Flask) -> None:
    engine = build_engine(app.config["DATABASE_URL"])
    app.extensions["sqlalchemy_engine"] = engine
    # Services commit and then hand rows to templates, so rows must survive the commit.
    app.extensions["sqlalchemy_sessionmaker"] = sessionmaker(
        bind=engine,
        autoflush=False,
        expire_on_commit=False,
    )

    if hasattr(os, "register_at_fork"):
        # gunicorn --preload forks after create_app(); children must not share pooled sockets.
        def _dispose_in_child() -> None:
            engine.dispose(close=False)
            logger.info("Reset DB pool in forked worker (pid=%s)", os.getpid())

        os.register_at_fork(after_in_child=_dispose_in_child)


def db_session() -> Session:
    """The session bound to the current request, opened on first use."""
    s: Session | None = g.get("db_session")
    if s is None:
        s = current_app.extensions["sqlalchemy_sessionmaker"]()
        g.db_session = s
    return s


def teardown_db_session(_exc: BaseException | None) -> None:
    s: Session | None = g.pop("db_session", None)
    if s is not None:
        s.close()


@contextmanager
def session_scope(app: Flask) -> Iterator[Session]:
    """Standalone session for scripts and tests. Commits on success."""
    s: Session = app.extensions["sqlalchemy_sessionmaker"]()
    try:
        yield s
        s.commit()
    except Exception:
        s.rollback()
        raise
    finally:
        s.close()
