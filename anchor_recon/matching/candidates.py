"""
Candidate Generator: bounded, pre-filtered claims for one anchor.

SQL narrows by token, status, source, time window and rejected pairs; the amount
window and the ordering by amount distance are applied with Decimal so stored
amount strings are never compared as floats.
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import and_, exists
from sqlalchemy.orm import Session

from anchor_recon.config.settings import MatchTolerances
from anchor_recon.core.numeric import to_decimal
from anchor_recon.database.models import (
    OPEN_CLAIM_STATUSES,
    RejectedPair,
    Transaction,
    TxSource,
)
from anchor_recon.recon_logging import get_logger

logger = get_logger(__name__)

MAX_CANDIDATES = 50


def amount_bounds(amount: Decimal, amount_percent: float) -> tuple[Decimal, Decimal]:
    """Inclusive [lo, hi] window of +/- amount_percent around amount."""
    pct = to_decimal(amount_percent)
    return amount * (1 - pct), amount * (1 + pct)


class CandidateGenerator:
    def __init__(self, limit: int = MAX_CANDIDATES) -> None:
        self.limit = limit

    def generate(
        self,
        session: Session,
        anchor: Transaction,
        tolerances: MatchTolerances,
    ) -> list[Transaction]:
        """
        Up to `limit` open claims for anchor, closest amount first.

        Never returns a claim in rejected_pairs for this anchor, an on-chain row, or a
        claim whose status is no longer pending.
        """
        anchor_amount = to_decimal(anchor.amount_gross)
        lo, hi = amount_bounds(anchor_amount, tolerances.amount_percent)
        window = int(tolerances.time_window_ms)
        rejected = exists().where(
            and_(RejectedPair.anchor_id == anchor.id, RejectedPair.claim_id == Transaction.id)
        )
        rows = (
            session.query(Transaction)
            .filter(
                Transaction.source != TxSource.ONCHAIN.value,
                Transaction.status.in_(OPEN_CLAIM_STATUSES),
                Transaction.token_symbol == anchor.token_symbol,
                Transaction.timestamp >= anchor.timestamp - window,
                Transaction.timestamp <= anchor.timestamp + window,
                Transaction.id != anchor.id,
                ~rejected,
            )
            .all()
        )
        scored: list[tuple[Decimal, int, Transaction]] = []
        for claim in rows:
            amount = to_decimal(claim.amount_gross)
            if lo <= amount <= hi:
                scored.append((abs(amount - anchor_amount), claim.id, claim))
        scored.sort(key=lambda item: (item[0], item[1]))
        out = [claim for _, _, claim in scored[: self.limit]]
        logger.debug(
            "candidates_generated",
            anchor_id=anchor.id,
            prefiltered=len(rows),
            returned=len(out),
        )
        return out


candidate_generator = CandidateGenerator()
