"""
Scoring Engine: weighted 0-100 confidence for an (anchor, claim) pair.

Four independent factors, each bounded by its configured weight:

- amount: linear decay from full weight at an exact match to 0 at
  anchor_amount * amount_percent. When the anchor carries amount_net and gas_used,
  the better of the gross and net comparisons is used.
- address: half the weight for a case-insensitive sender match, half for receiver.
- time: linear decay from full weight at dt = 0 to 0 at time_window_ms.
- token: full weight on an exact symbol match, else 0.

Sub-scores and the total are rounded half-up to 2 decimals; the total is the rounded
sum of the unrounded factors.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from anchor_recon.config.settings import MatchingConfig
from anchor_recon.core.numeric import round2, to_decimal
from anchor_recon.database.schemas import ScoreBreakdown
from anchor_recon.matching.models import MatchScore

ZERO = Decimal(0)
ONE = Decimal(1)
HALF = Decimal("0.5")


def _linear(weight: Decimal, diff: Decimal, threshold: Decimal) -> Decimal:
    if diff == 0:
        return weight
    if threshold > 0 and diff <= threshold:
        return weight * (ONE - diff / threshold)
    return ZERO


def _address_eq(a: str | None, b: str | None) -> bool:
    if not a or not b:
        return False
    return a.lower() == b.lower()


def amount_factor(anchor: Any, claim: Any, weight: Decimal, amount_percent: Decimal) -> Decimal:
    anchor_amount = to_decimal(anchor.amount_gross)
    claim_amount = to_decimal(claim.amount_gross)
    threshold = anchor_amount * amount_percent
    score = _linear(weight, abs(anchor_amount - claim_amount), threshold)
    if anchor.amount_net and anchor.gas_used:
        net = to_decimal(anchor.amount_net)
        score = max(score, _linear(weight, abs(net - claim_amount), threshold))
    return score


def address_factor(anchor: Any, claim: Any, weight: Decimal) -> Decimal:
    score = ZERO
    if _address_eq(anchor.sender_address, claim.sender_address):
        score += weight * HALF
    if _address_eq(anchor.receiver_address, claim.receiver_address):
        score += weight * HALF
    return score


def time_factor(anchor: Any, claim: Any, weight: Decimal, window_ms: int) -> Decimal:
    diff = Decimal(abs(int(anchor.timestamp) - int(claim.timestamp)))
    return _linear(weight, diff, Decimal(window_ms))


def token_factor(anchor: Any, claim: Any, weight: Decimal) -> Decimal:
    return weight if anchor.token_symbol == claim.token_symbol else ZERO


def score_pair(anchor: Any, claim: Any, config: MatchingConfig) -> MatchScore:
    """Score claim against anchor. Both only need the Transaction attributes used above."""
    w = config.weights
    tol = config.tolerances
    amount = amount_factor(anchor, claim, to_decimal(w.amount), to_decimal(tol.amount_percent))
    address = address_factor(anchor, claim, to_decimal(w.address))
    time_score = time_factor(anchor, claim, to_decimal(w.time), tol.time_window_ms)
    token = token_factor(anchor, claim, to_decimal(w.token))
    breakdown = ScoreBreakdown(
        amount=float(round2(amount)),
        address=float(round2(address)),
        time=float(round2(time_score)),
        token=float(round2(token)),
    )
    total = round2(amount + address + time_score + token)
    return MatchScore(total=float(total), breakdown=breakdown)
