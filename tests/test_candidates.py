"""
Tests for the Candidate Generator: prefilters, rejected pairs, ordering and the cap.
"""

from __future__ import annotations

from decimal import Decimal

from anchor_recon.config.settings import MatchTolerances
from anchor_recon.database.connection import session_scope
from anchor_recon.database.models import Transaction
from anchor_recon.matching.candidates import MAX_CANDIDATES, amount_bounds, candidate_generator
from anchor_recon.matching.lifecycle import match_lifecycle


def _candidates(anchor_id: int, tolerances: MatchTolerances | None = None) -> list[int]:
    with session_scope() as session:
        anchor = session.get(Transaction, anchor_id)
        rows = candidate_generator.generate(session, anchor, tolerances or MatchTolerances())
        return [r.id for r in rows]


def test_amount_bounds():
    lo, hi = amount_bounds(Decimal("100.0"), 0.01)
    assert lo == Decimal("99.00")
    assert hi == Decimal("101.00")


def test_near_match_is_candidate(make_anchor, make_claim):
    """Anchor A (DAI, 100.0, t=1000) and claim C (DAI, 100.05, t=1015)."""
    anchor = make_anchor()
    claim = make_claim()
    assert _candidates(anchor["id"]) == [claim["id"]]


def test_prefilters(make_anchor, make_claim):
    anchor = make_anchor(timestamp=10_000_000)
    keep = make_claim(timestamp=10_000_000, amount_gross="100.0")
    make_claim(timestamp=10_000_000, amount_gross="102")  # outside 1%
    make_claim(timestamp=10_000_000 + 3_600_001, amount_gross="100.0")  # outside window
    make_claim(timestamp=10_000_000, token_symbol="USDC", amount_gross="100.0")
    make_anchor(timestamp=10_000_000, amount_gross="100.0")  # on-chain rows never qualify

    assert _candidates(anchor["id"]) == [keep["id"]]
    wider = MatchTolerances(amount_percent=0.05, time_window_ms=3_600_000)
    assert len(_candidates(anchor["id"], wider)) == 2


def test_only_pending_claims(make_anchor, make_claim):
    anchor = make_anchor()
    other = make_anchor(tx_hash="0xother")
    claim = make_claim()
    match_lifecycle.approve(other["id"], claim["id"], actor="ops")
    assert _candidates(anchor["id"]) == []


def test_rejected_pair_never_returned(make_anchor, make_claim):
    anchor = make_anchor()
    rejected = make_claim()
    kept = make_claim(amount_gross="100.2")
    match_lifecycle.reject(anchor["id"], rejected["id"], actor="user", reason="wrong sender")
    assert _candidates(anchor["id"]) == [kept["id"]]

    # The rejection is scoped to this anchor only
    other = make_anchor(tx_hash="0xother")
    assert rejected["id"] in _candidates(other["id"])


def test_ordered_by_amount_distance_and_capped(make_anchor, make_claim):
    anchor = make_anchor()
    far = make_claim(amount_gross="100.9")
    exact = make_claim(amount_gross="100.0")
    below = make_claim(amount_gross="99.7")
    ids = _candidates(anchor["id"])
    assert ids == [exact["id"], below["id"], far["id"]]

    for i in range(MAX_CANDIDATES + 5):
        make_claim(amount_gross=f"100.{i % 10}")
    assert len(_candidates(anchor["id"])) == MAX_CANDIDATES
    assert _candidates(anchor["id"])[0] == exact["id"]
