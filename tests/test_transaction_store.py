"""
Tests for the Transaction Store: claim import, anchor upsert, queries and stats.

Uses temporary SQLite DB via conftest fixtures.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from anchor_recon.audit.service import AuditFilters, audit_log
from anchor_recon.core.exceptions import ConflictError, NotFoundError, ValidationError
from anchor_recon.ledger.store import transaction_store
from anchor_recon.matching.lifecycle import match_lifecycle

WALLET = "0x" + "a" * 40
COUNTERPARTY = "0x" + "b" * 40


def _claim(tx_hash: str, amount: str = "10.5") -> dict:
    return {
        "tx_hash": tx_hash,
        "source": "csv",
        "token_symbol": "DAI",
        "amount_gross": amount,
        "sender_address": WALLET,
        "receiver_address": COUNTERPARTY,
        "timestamp": 1_700_000_000_000,
    }


def _audit_count(action: str) -> int:
    return audit_log.query(AuditFilters(action=action)).total


def test_import_claims_partial_failure(recon_db):
    """A negative amount fails only its own row; two audit entries are written, not three."""
    result = transaction_store.import_claims(
        [_claim("0x1"), _claim("0x2", "-5"), _claim("0x3")],
        actor="importer",
    )
    assert [row["tx_hash"] for row in result.imported] == ["0x1", "0x3"]
    assert len(result.failed) == 1
    assert result.failed[0].index == 1
    assert "non-negative" in result.failed[0].error
    assert result.failed[0].code == "INVALID_INPUT"
    assert all(row["status"] == "pending" for row in result.imported)
    assert _audit_count("create_claim") == 2

    body = result.to_dict()
    assert body["failed"][0]["index"] == 1
    assert len(body["imported"]) == 2


def test_create_claim_invalid_writes_nothing(recon_db):
    """Validation happens before any mutation."""
    bad = _claim("0x1")
    del bad["token_symbol"]
    with pytest.raises(ValidationError):
        transaction_store.create_claim(bad, actor="user")
    bad = _claim("0x1")
    bad["source"] = "onchain"
    with pytest.raises(ValidationError):
        transaction_store.create_claim(bad, actor="user")
    assert transaction_store.get_stats()["total_claims"] == 0
    assert audit_log.query().total == 0


def test_amounts_keep_full_precision(recon_db):
    """Amounts are stored as canonical decimal strings, never via float."""
    tiny = transaction_store.create_claim(_claim("0x1", "0.000000000000000001"), actor="user")
    assert tiny["amount_gross"] == "0.000000000000000001"
    scaled = transaction_store.create_claim(_claim("0x2", "100.10"), actor="user")
    assert Decimal(scaled["amount_gross"]) == Decimal("100.10")
    big = transaction_store.create_claim(_claim("0x3", "123456789012345678.123456789"), actor="user")
    assert transaction_store.get_by_id(big["id"])["amount_gross"] == "123456789012345678.123456789"


def test_claim_metadata_must_be_flat(recon_db):
    ok = _claim("0x1")
    ok["metadata"] = {"invoice": "INV-7", "line": 3}
    row = transaction_store.create_claim(ok, actor="user")
    assert row["metadata"] == {"invoice": "INV-7", "line": 3}

    nested = _claim("0x2")
    nested["metadata"] = {"invoice": {"id": 7}}
    with pytest.raises(ValidationError):
        transaction_store.create_claim(nested, actor="user")


def test_upsert_anchor_is_idempotent(make_anchor):
    """Re-syncing identical data keeps the row and writes no second audit entry."""
    first = make_anchor(tx_hash="0xabc")
    again = make_anchor(tx_hash="0xabc")
    assert again["id"] == first["id"]
    assert first["status"] == "anchor"
    assert first["source"] == "onchain"
    assert _audit_count("upsert_anchor") == 1

    changed = make_anchor(tx_hash="0xabc", block_number=42)
    assert changed["id"] == first["id"]
    assert changed["block_number"] == 42
    assert _audit_count("upsert_anchor") == 2


def test_upsert_anchor_token_mismatch_conflicts(make_anchor):
    make_anchor(tx_hash="0xabc")
    with pytest.raises(ConflictError):
        make_anchor(tx_hash="0xabc", token_symbol="USDC")
    # Same hash, different event type is a separate anchor
    approval = make_anchor(tx_hash="0xabc", type="Approval")
    assert approval["type"] == "Approval"


def test_query_filters_and_order(make_claim, make_anchor):
    make_claim(timestamp=1000)
    make_claim(timestamp=3000, sender_address=WALLET.upper().replace("0X", "0x"))
    make_claim(timestamp=2000, token_symbol="USDC")
    make_anchor()

    page = transaction_store.query({"source": "manual"})
    assert page.total == 3
    assert [r["timestamp"] for r in page.items] == [3000, 2000, 1000]

    dai = transaction_store.query({"token": "DAI", "status": "pending"})
    assert dai.total == 2

    window = transaction_store.query({"from_date": 1500, "to_date": 2500})
    assert [r["token_symbol"] for r in window.items] == ["USDC"]

    by_sender = transaction_store.query({"sender": WALLET, "source": "manual"})
    assert by_sender.total == 3

    with pytest.raises(ValidationError):
        transaction_store.query({"from_date": 5, "to_date": 1})


def test_get_by_id_unknown(recon_db):
    with pytest.raises(NotFoundError):
        transaction_store.get_by_id(999)


def test_stats_match_rate(make_anchor, make_claim):
    anchor = make_anchor()
    claim = make_claim()
    make_claim(amount_gross="55")
    match_lifecycle.approve(anchor["id"], claim["id"], actor="ops")

    stats = transaction_store.get_stats()
    assert stats["total_anchors"] == 1
    assert stats["unmatched_anchors"] == 0
    assert stats["total_claims"] == 2
    assert stats["pending_claims"] == 1
    assert stats["reconciled"] == 1
    assert stats["match_rate"] == 50


def test_stats_empty(recon_db):
    stats = transaction_store.get_stats()
    assert stats["match_rate"] == 0
    assert stats["total_claims"] == 0


def test_update_status_rules(make_anchor, make_claim):
    anchor = make_anchor()
    claim = make_claim()

    # Linked statuses need a matched anchor
    with pytest.raises(ValidationError):
        transaction_store.update_status(claim["id"], "reconciled", actor="ops")

    row = transaction_store.update_status(claim["id"], "unreconciled", actor="ops")
    assert row["status"] == "unreconciled"
    assert _audit_count("update_status") == 1

    match_lifecycle.approve(anchor["id"], claim["id"], actor="ops")
    with pytest.raises(ConflictError):
        transaction_store.update_status(claim["id"], "pending", actor="ops")
    with pytest.raises(ValidationError):
        transaction_store.update_status(claim["id"], "bogus", actor="ops")


def test_update_status_on_reconciled_row_conflicts(make_anchor, make_claim):
    """A reconciled claim cannot be re-linked to another anchor, even with the same status."""
    anchor = make_anchor()
    other_anchor = make_anchor(tx_hash="0xother")
    claim = make_claim()
    match_lifecycle.approve(anchor["id"], claim["id"], actor="ops")

    with pytest.raises(ConflictError):
        transaction_store.update_status(
            claim["id"], "reconciled", actor="ops", matched_tx_id=other_anchor["id"]
        )
    with pytest.raises(ConflictError):
        transaction_store.update_status(anchor["id"], "reconciled", actor="ops")

    assert transaction_store.get_by_id(claim["id"])["matched_tx_id"] == anchor["id"]
    assert transaction_store.get_by_id(anchor["id"])["matched_tx_id"] == claim["id"]
    assert transaction_store.get_by_id(other_anchor["id"])["status"] == "anchor"
    assert _audit_count("update_status") == 0


def test_update_status_cannot_reconcile_one_side(make_anchor, make_claim):
    anchor = make_anchor()
    claim = make_claim()

    for status in ("reconciled", "force_reconciled"):
        with pytest.raises(ValidationError):
            transaction_store.update_status(
                claim["id"], status, actor="ops", matched_tx_id=anchor["id"]
            )
    with pytest.raises(ValidationError):
        transaction_store.update_status(
            anchor["id"], "reconciled", actor="ops", matched_tx_id=claim["id"]
        )

    assert transaction_store.get_by_id(claim["id"])["status"] == "pending"
    assert [a.id for a in transaction_store.get_unmatched_anchors()] == [anchor["id"]]
    assert _audit_count("update_status") == 0


def test_update_status_suggested_match_needs_pending_suggestion(make_anchor, make_claim):
    anchor = make_anchor()
    claim = make_claim()

    with pytest.raises(ValidationError):
        transaction_store.update_status(
            claim["id"], "suggested_match", actor="ops", matched_tx_id=anchor["id"]
        )
    assert transaction_store.get_by_id(claim["id"])["status"] == "pending"


def test_update_status_leaving_suggested_match_closes_suggestions(make_anchor, make_claim):
    anchor = make_anchor()
    claim = make_claim()
    match_lifecycle.run_matching(min_score=70, actor="scheduler")
    assert transaction_store.get_by_id(claim["id"])["status"] == "suggested_match"

    row = transaction_store.update_status(claim["id"], "unreconciled", actor="ops")
    assert row["status"] == "unreconciled"
    assert row["matched_tx_id"] is None
    assert row["match_score"] is None

    assert match_lifecycle.list_suggestions(status="pending").total == 0
    suggestion = match_lifecycle.list_suggestions().items[0]
    assert suggestion["anchor_id"] == anchor["id"]
    assert suggestion["status"] == "rejected"
    assert suggestion["reviewed_by"] == "ops"

    entry = audit_log.query(AuditFilters(action="update_status")).items[0]
    assert entry["previous_state"]["status"] == "suggested_match"
    assert entry["metadata"]["closed_suggestions"] == 1
