"""
SQLAlchemy models for the reconciliation ledger.

One transactions table holds anchors (source='onchain') and claims. matched_tx_id is a
weak reference by id into the same table; the active-match partial unique index makes
sure no transaction is the counterpart of more than one reconciled row.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    text,
)
from sqlalchemy.orm import declarative_base

from anchor_recon.core.timeutil import now_ms

Base = declarative_base()


class TxSource(str, Enum):
    ONCHAIN = "onchain"
    LOCAL = "local"
    CSV = "csv"
    MANUAL = "manual"


class TxType(str, Enum):
    TRANSFER = "Transfer"
    APPROVAL = "Approval"
    MINT = "Mint"


class TxStatus(str, Enum):
    ANCHOR = "anchor"
    PENDING = "pending"
    SUGGESTED_MATCH = "suggested_match"
    RECONCILED = "reconciled"
    FORCE_RECONCILED = "force_reconciled"
    REJECTED = "rejected"
    UNRECONCILED = "unreconciled"


class SuggestionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class AlertLevel(str, Enum):
    NONE = "none"
    WARNING = "warning"
    CRITICAL = "critical"


RECONCILED_STATUSES = (TxStatus.RECONCILED.value, TxStatus.FORCE_RECONCILED.value)
# Claims that matching may still pick up.
OPEN_CLAIM_STATUSES = (TxStatus.PENDING.value,)
# Claims an operator may still approve.
APPROVABLE_CLAIM_STATUSES = (
    TxStatus.PENDING.value,
    TxStatus.SUGGESTED_MATCH.value,
    TxStatus.UNRECONCILED.value,
)

_ONCHAIN_ONLY = text("source = 'onchain'")
_ACTIVE_MATCH = text("status IN ('reconciled', 'force_reconciled')")


class Transaction(Base):
    """Anchor or claim. Never physically deleted."""

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tx_hash = Column(String(128), nullable=False, index=True)
    source = Column(String(16), nullable=False, index=True)
    status = Column(String(32), nullable=False, index=True)
    type = Column(String(16), nullable=False, default=TxType.TRANSFER.value)
    token_symbol = Column(String(32), nullable=False, index=True)
    token_address = Column(String(64), nullable=True)
    amount_gross = Column(String(80), nullable=False)  # canonical decimal string
    amount_net = Column(String(80), nullable=True)
    gas_used = Column(String(80), nullable=True)
    sender_address = Column(String(64), nullable=True, index=True)
    receiver_address = Column(String(64), nullable=True, index=True)
    timestamp = Column(BigInteger, nullable=False, index=True)  # epoch ms
    block_number = Column(BigInteger, nullable=True)
    matched_tx_id = Column(Integer, ForeignKey("transactions.id"), nullable=True)
    match_score = Column(Float, nullable=True)
    score_breakdown = Column(JSON, nullable=True)
    reconciled_by = Column(String(128), nullable=True)
    reconciled_at = Column(BigInteger, nullable=True)
    force_reconciled = Column(Boolean, nullable=False, default=False)
    notes = Column(Text, nullable=True)
    meta = Column("metadata", JSON, nullable=True)
    created_at = Column(BigInteger, nullable=False, default=now_ms)
    updated_at = Column(BigInteger, nullable=False, default=now_ms, onupdate=now_ms)

    __table_args__ = (
        CheckConstraint("amount_gross NOT LIKE '-%'", name="ck_transactions_gross_non_negative"),
        CheckConstraint(
            "amount_net IS NULL OR amount_net NOT LIKE '-%'",
            name="ck_transactions_net_non_negative",
        ),
        Index(
            "uq_transactions_anchor_hash_type",
            "tx_hash",
            "type",
            unique=True,
            sqlite_where=_ONCHAIN_ONLY,
            postgresql_where=_ONCHAIN_ONLY,
        ),
        Index(
            "uq_transactions_active_match",
            "matched_tx_id",
            unique=True,
            sqlite_where=_ACTIVE_MATCH,
            postgresql_where=_ACTIVE_MATCH,
        ),
        Index("ix_transactions_token_status_ts", "token_symbol", "status", "timestamp"),
    )

    @property
    def is_anchor(self) -> bool:
        return self.source == TxSource.ONCHAIN.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "tx_hash": self.tx_hash,
            "source": self.source,
            "status": self.status,
            "type": self.type,
            "token_symbol": self.token_symbol,
            "token_address": self.token_address,
            "amount_gross": self.amount_gross,
            "amount_net": self.amount_net,
            "gas_used": self.gas_used,
            "sender_address": self.sender_address,
            "receiver_address": self.receiver_address,
            "timestamp": self.timestamp,
            "block_number": self.block_number,
            "matched_tx_id": self.matched_tx_id,
            "match_score": self.match_score,
            "score_breakdown": self.score_breakdown,
            "reconciled_by": self.reconciled_by,
            "reconciled_at": self.reconciled_at,
            "force_reconciled": bool(self.force_reconciled),
            "notes": self.notes,
            "metadata": self.meta or {},
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class MatchSuggestion(Base):
    """Proposed (anchor, claim) pairing. Decided exactly once."""

    __tablename__ = "match_suggestions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    anchor_id = Column(Integer, ForeignKey("transactions.id"), nullable=False, index=True)
    claim_id = Column(Integer, ForeignKey("transactions.id"), nullable=False, index=True)
    score = Column(Float, nullable=False)
    score_breakdown = Column(JSON, nullable=False)
    status = Column(String(16), nullable=False, default=SuggestionStatus.PENDING.value, index=True)
    reviewed_by = Column(String(128), nullable=True)
    reviewed_at = Column(BigInteger, nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(BigInteger, nullable=False, default=now_ms)

    __table_args__ = (UniqueConstraint("anchor_id", "claim_id", name="uq_match_suggestions_pair"),)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "anchor_id": self.anchor_id,
            "claim_id": self.claim_id,
            "score": self.score,
            "score_breakdown": self.score_breakdown,
            "status": self.status,
            "reviewed_by": self.reviewed_by,
            "reviewed_at": self.reviewed_at,
            "reason": self.reason,
            "created_at": self.created_at,
        }


class RejectedPair(Base):
    """Pair an operator rejected; never re-suggested. Append-only."""

    __tablename__ = "rejected_pairs"

    anchor_id = Column(Integer, ForeignKey("transactions.id"), primary_key=True)
    claim_id = Column(Integer, ForeignKey("transactions.id"), primary_key=True)
    rejected_by = Column(String(128), nullable=False)
    reason = Column(Text, nullable=True)
    created_at = Column(BigInteger, nullable=False, default=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {
            "anchor_id": self.anchor_id,
            "claim_id": self.claim_id,
            "rejected_by": self.rejected_by,
            "reason": self.reason,
            "created_at": self.created_at,
        }


class AuditLogEntry(Base):
    """Append-only record of every state-changing action."""

    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    timestamp = Column(BigInteger, nullable=False, default=now_ms, index=True)
    action = Column(String(32), nullable=False, index=True)
    entity_type = Column(String(32), nullable=False, index=True)
    entity_id = Column(String(128), nullable=True, index=True)
    actor = Column(String(128), nullable=False, index=True)
    previous_state = Column(JSON, nullable=True)
    new_state = Column(JSON, nullable=True)
    meta = Column("metadata", JSON, nullable=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor": self.actor,
            "previous_state": self.previous_state,
            "new_state": self.new_state,
            "metadata": self.meta or {},
        }


class MatchingConfigRow(Base):
    """One JSON row per MatchingConfig section (weights, tolerances, drift_thresholds)."""

    __tablename__ = "matching_config"

    key = Column(String(32), primary_key=True)
    value = Column(JSON, nullable=False)
    updated_at = Column(BigInteger, nullable=False, default=now_ms)
    updated_by = Column(String(128), nullable=True)


class WalletRiskScore(Base):
    """Cached risk profile; recomputable from the ledger at any time."""

    __tablename__ = "wallet_risk_scores"

    wallet_address = Column(String(64), primary_key=True)
    risk_score = Column(Float, nullable=False)
    risk_breakdown = Column(JSON, nullable=False)
    summary = Column(JSON, nullable=False)
    last_calculated = Column(BigInteger, nullable=False, default=now_ms, index=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "wallet_address": self.wallet_address,
            "risk_score": self.risk_score,
            "risk_breakdown": self.risk_breakdown,
            "summary": self.summary,
            "last_calculated": self.last_calculated,
        }


class WalletBalance(Base):
    """Persisted drift record per wallet/token."""

    __tablename__ = "wallet_balances"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_address = Column(String(64), nullable=False, index=True)
    token_symbol = Column(String(32), nullable=False)
    internal_balance = Column(String(80), nullable=False)
    onchain_balance = Column(String(80), nullable=False)
    drift = Column(String(80), nullable=False)
    drift_percentage = Column(Float, nullable=False)
    alert_level = Column(String(16), nullable=False, default=AlertLevel.NONE.value, index=True)
    last_updated = Column(BigInteger, nullable=False, default=now_ms)

    __table_args__ = (
        UniqueConstraint("wallet_address", "token_symbol", name="uq_wallet_balances_wallet_token"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "wallet_address": self.wallet_address,
            "token_symbol": self.token_symbol,
            "internal_balance": self.internal_balance,
            "onchain_balance": self.onchain_balance,
            "drift": self.drift,
            "drift_percentage": self.drift_percentage,
            "alert_level": self.alert_level,
            "last_updated": self.last_updated,
        }


def _refuse_mutation(mapper: Any, connection: Any, target: Any) -> None:
    raise RuntimeError(f"{type(target).__name__} rows are append-only")


for _model in (AuditLogEntry, RejectedPair):
    event.listen(_model, "before_update", _refuse_mutation)
    event.listen(_model, "before_delete", _refuse_mutation)
