"""
Tests for the Audit Log: append-only storage, ordering, filters, and atomicity with
the mutation it records.
"""

from __future__ import annotations

import pytest

from anchor_recon.audit.service import AuditAction, AuditFilters, EntityType, audit_log
from anchor_recon.core.exceptions import ValidationError, parse_model
from anchor_recon.database.connection import session_scope
from anchor_recon.database.models import AuditLogEntry, Transaction
from anchor_recon.database.schemas import RunState
from anchor_recon.ledger.store import transaction_store


def _run(name: str) -> RunState:
    return RunState(run=name, counts={"n": 1})


def test_log_requires_actor(recon_db):
    with pytest.raises(ValidationError):
        audit_log.log(AuditAction.RUN_MATCHING, EntityType.SYSTEM, None, "", new_state=_run("x"))
    assert audit_log.query().total == 0


def test_log_requires_typed_state(recon_db):
    with pytest.raises(ValidationError):
        audit_log.log(AuditAction.RUN_MATCHING, EntityType.SYSTEM, None, "ops", new_state={"free": "form"})


def test_query_newest_first(recon_db):
    for name in ("first", "second", "third"):
        audit_log.log(AuditAction.RUN_MATCHING, EntityType.SYSTEM, None, "ops", new_state=_run(name))
    page = audit_log.query()
    assert page.total == 3
    assert [e["new_state"]["run"] for e in page.items] == ["third", "second", "first"]
    assert page.items[0]["new_state"]["schema_version"] == 1


def test_query_filters(make_claim):
    claim = make_claim()
    audit_log.log(AuditAction.RUN_MATCHING, EntityType.SYSTEM, None, "scheduler", new_state=_run("r"))

    by_entity = audit_log.query(AuditFilters(entity_type="transaction", entity_id=str(claim["id"])))
    assert by_entity.total == 1
    assert by_entity.items[0]["action"] == "create_claim"
    assert by_entity.items[0]["previous_state"] is None

    assert audit_log.query(AuditFilters(actor="scheduler")).total == 1
    assert audit_log.query(AuditFilters(start_ms=1, end_ms=2)).total == 0

    with pytest.raises(ValidationError):
        parse_model(AuditFilters, {"start_ms": 10, "end_ms": 5})


def test_entries_are_append_only(make_claim):
    make_claim()
    with pytest.raises(RuntimeError, match="append-only"):
        with session_scope() as session:
            entry = session.query(AuditLogEntry).first()
            entry.actor = "mallory"
            session.flush()
    with pytest.raises(RuntimeError, match="append-only"):
        with session_scope() as session:
            session.delete(session.query(AuditLogEntry).first())
            session.flush()
    assert audit_log.query().items[0]["actor"] == "user"


def test_failed_mutation_leaves_no_entry(recon_db):
    """The audit row and the mutation it describes commit or roll back together."""
    with pytest.raises(ValueError):
        with session_scope() as session:
            tx = Transaction(
                tx_hash="0x1",
                source="manual",
                status="pending",
                type="Transfer",
                token_symbol="DAI",
                amount_gross="1",
                timestamp=1000,
            )
            session.add(tx)
            session.flush()
            audit_log.log(AuditAction.CREATE_CLAIM, EntityType.TRANSACTION, tx.id, "ops", session=session)
            raise ValueError("boom")
    assert audit_log.query().total == 0
    assert transaction_store.query().total == 0
