"""
Persistence for the reconciliation ledger: engine, session scope, ORM models.
"""

from anchor_recon.database.connection import (  # noqa: F401
    get_engine,
    get_session_factory,
    init_db,
    reset_engine_for_test,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session_factory",
    "init_db",
    "reset_engine_for_test",
    "session_scope",
]
