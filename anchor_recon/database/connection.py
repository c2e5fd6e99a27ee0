"""
Engine and session management.

Uses RECON_DB_URL / DATABASE_URL for PostgreSQL when set; otherwise SQLite
(RECON_DB_PATH or anchor_recon.db). Every store operation runs inside one
session_scope(), which is the transaction boundary: the mutation and its audit
row commit together or not at all.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from anchor_recon.config import env
from anchor_recon.core.exceptions import ConflictError
from anchor_recon.recon_logging import get_logger

logger = get_logger(__name__)

_engine = None
_SessionLocal: sessionmaker | None = None


def _redacted(url: str) -> str:
    return url.split("?")[0].split("@")[-1].split("//")[-1]


def _enable_sqlite_fk(dbapi_conn: Any, _record: Any) -> None:
    cur = dbapi_conn.cursor()
    cur.execute("PRAGMA foreign_keys = ON")
    cur.close()


def get_engine():
    """Create or return the cached engine."""
    global _engine
    if _engine is None:
        url = env.get_database_url()
        connect_args: dict[str, Any] = {}
        if url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = 15
        _engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
        if url.startswith("sqlite"):
            event.listen(_engine, "connect", _enable_sqlite_fk)
        logger.info("recon_engine_created", url=_redacted(url))
    return _engine


def get_session_factory() -> sessionmaker:
    """Return session factory bound to engine."""
    global _SessionLocal
    if _SessionLocal is None:
        _SessionLocal = sessionmaker(
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
            bind=get_engine(),
        )
    return _SessionLocal


@contextmanager
def session_scope(factory: sessionmaker | None = None) -> Iterator[Session]:
    """Context manager for a single session. Commits on success, rolls back on error."""
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


@contextmanager
def integrity_as_conflict(message: str) -> Iterator[None]:
    """Translate a uniqueness/constraint violation raised inside the block into ConflictError."""
    try:
        yield
    except IntegrityError as e:
        logger.info("integrity_conflict", message=message, error=str(e.orig))
        raise ConflictError(message) from e


def init_db() -> None:
    """Create all tables if they do not exist. Safe to call on every startup."""
    from anchor_recon.database.models import Base

    engine = get_engine()
    try:
        Base.metadata.create_all(bind=engine)
    except Exception as e:
        logger.exception("recon_init_db_failed", error=str(e))
        raise
    logger.info("recon_init_db", url=_redacted(env.get_database_url()))


def reset_engine_for_test() -> None:
    """Clear cached engine and session factory. For tests only; use with a new RECON_DB_PATH."""
    global _engine, _SessionLocal
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _SessionLocal = None
