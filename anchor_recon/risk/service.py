"""
Risk score cache over the ledger.

wallet_risk_scores is a recomputable cache: get() computes on a miss, recalculate_all()
rescans every wallet that appears as sender or receiver. Reconciled claims are left
out of a wallet's history because their anchor already records the same transfer.
"""

from __future__ import annotations

import time
from decimal import InvalidOperation
from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from anchor_recon.core.exceptions import ReconError, ValidationError
from anchor_recon.core.locks import run_exclusive
from anchor_recon.core.results import ItemFailure, SyncResult
from anchor_recon.database.connection import session_scope
from anchor_recon.database.models import (
    RECONCILED_STATUSES,
    Transaction,
    TxSource,
    WalletRiskScore,
)
from anchor_recon.database.schemas import RiskBreakdown, RiskSummary, dump_payload
from anchor_recon.recon_logging import bind_wallet, get_logger
from anchor_recon.risk.scorer import RiskProfile, score_wallet

logger = get_logger(__name__)


def _normalize_wallet(wallet: str) -> str:
    wallet = (wallet or "").strip().lower()
    if not wallet:
        raise ValidationError("wallet address is required")
    return wallet


def _wallet_transactions(session: Session, wallet: str) -> list[Transaction]:
    reconciled_claim = (Transaction.source != TxSource.ONCHAIN.value) & Transaction.status.in_(
        RECONCILED_STATUSES
    )
    return (
        session.query(Transaction)
        .filter(
            or_(
                func.lower(Transaction.sender_address) == wallet,
                func.lower(Transaction.receiver_address) == wallet,
            ),
            ~reconciled_claim,
        )
        .all()
    )


def _known_wallets(session: Session) -> list[str]:
    senders = session.query(func.lower(Transaction.sender_address)).filter(
        Transaction.sender_address.isnot(None)
    )
    receivers = session.query(func.lower(Transaction.receiver_address)).filter(
        Transaction.receiver_address.isnot(None)
    )
    wallets = {w for (w,) in senders.union(receivers).all() if w}
    return sorted(wallets)


def _store(session: Session, profile: RiskProfile) -> None:
    row = session.get(WalletRiskScore, profile.wallet_address)
    if row is None:
        row = WalletRiskScore(wallet_address=profile.wallet_address)
        session.add(row)
    row.risk_score = profile.risk_score
    row.risk_breakdown = dump_payload(RiskBreakdown, profile.breakdown)
    row.summary = dump_payload(RiskSummary, profile.summary)
    row.last_calculated = profile.last_calculated


class RiskService:
    def _compute(self, session: Session, wallet: str) -> RiskProfile:
        profile = score_wallet(wallet, _wallet_transactions(session, wallet))
        _store(session, profile)
        bind_wallet(wallet).info(
            "risk_computed",
            risk_score=profile.risk_score,
            tx_count=profile.summary.tx_count,
        )
        return profile

    def get_all(self) -> list[dict[str, Any]]:
        """Cached scores, riskiest first."""
        with session_scope() as session:
            rows = (
                session.query(WalletRiskScore)
                .order_by(WalletRiskScore.risk_score.desc(), WalletRiskScore.wallet_address.asc())
                .all()
            )
            return [r.to_dict() for r in rows]

    def get(self, wallet: str) -> dict[str, Any]:
        """Cached score for wallet; computed and cached on first request."""
        wallet = _normalize_wallet(wallet)
        with session_scope() as session:
            row = session.get(WalletRiskScore, wallet)
            if row is not None:
                return row.to_dict()
            return self._compute(session, wallet).to_dict()

    def recalculate(self, wallet: str) -> dict[str, Any]:
        wallet = _normalize_wallet(wallet)
        with session_scope() as session:
            return self._compute(session, wallet).to_dict()

    def recalculate_all(self) -> SyncResult:
        """
        Recompute every wallet touched by the ledger. A wallet whose amounts cannot be
        priced is skipped and reported; the rest still refresh.
        """
        started = time.monotonic()
        result = SyncResult()
        with run_exclusive("risk"):
            with session_scope() as session:
                wallets = _known_wallets(session)
            for index, wallet in enumerate(wallets):
                try:
                    with session_scope() as session:
                        result.items.append(self._compute(session, wallet).to_dict())
                    result.synced += 1
                except (ReconError, ValueError, InvalidOperation) as e:
                    bind_wallet(wallet).warning("risk_score_skipped", error=str(e))
                    result.errors.append(
                        ItemFailure(index=index, error=str(e), context={"wallet_address": wallet})
                    )
        result.time_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            "risk_recalculated",
            wallets=result.synced,
            skipped=len(result.errors),
            time_ms=result.time_ms,
        )
        return result


risk_service = RiskService()
