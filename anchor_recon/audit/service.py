"""
Audit Log: append-only record of every state-changing action.

Callers pass their own session so the audit row commits (or rolls back) together with
the mutation it describes. There is no update or delete path; the ORM refuses both.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator
from sqlalchemy.orm import Session

from anchor_recon.core.exceptions import ValidationError
from anchor_recon.core.pagination import Page, Pagination
from anchor_recon.core.timeutil import now_ms
from anchor_recon.database.connection import session_scope
from anchor_recon.database.models import AuditLogEntry, MatchSuggestion, Transaction
from anchor_recon.database.schemas import (
    ConfigState,
    DriftState,
    RunState,
    SuggestionState,
    TransactionState,
    dump_metadata,
)
from anchor_recon.recon_logging import get_logger

logger = get_logger(__name__)


class AuditAction(str, Enum):
    CREATE_CLAIM = "create_claim"
    UPSERT_ANCHOR = "upsert_anchor"
    UPDATE_STATUS = "update_status"
    APPROVE_MATCH = "approve_match"
    FORCE_RECONCILE = "force_reconcile"
    REJECT_MATCH = "reject_match"
    RUN_MATCHING = "run_matching"
    UPDATE_CONFIG = "update_config"
    DRIFT_ALERT = "drift_alert"
    SYNC_ANCHORS = "sync_anchors"


class EntityType(str, Enum):
    TRANSACTION = "transaction"
    SUGGESTION = "match_suggestion"
    CONFIG = "matching_config"
    WALLET_BALANCE = "wallet_balance"
    SYSTEM = "system"


StatePayload = TransactionState | SuggestionState | ConfigState | RunState | DriftState


class AuditFilters(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: str | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    actor: str | None = None
    start_ms: int | None = None
    end_ms: int | None = None

    @model_validator(mode="after")
    def _range(self) -> "AuditFilters":
        if self.start_ms is not None and self.end_ms is not None and self.start_ms > self.end_ms:
            raise ValueError("start_ms must not be after end_ms")
        return self


def transaction_state(tx: Transaction) -> TransactionState:
    return TransactionState(
        id=tx.id,
        source=tx.source,
        status=tx.status,
        token_symbol=tx.token_symbol,
        amount_gross=tx.amount_gross,
        matched_tx_id=tx.matched_tx_id,
        match_score=tx.match_score,
        force_reconciled=bool(tx.force_reconciled),
        reconciled_by=tx.reconciled_by,
        reconciled_at=tx.reconciled_at,
    )


def suggestion_state(s: MatchSuggestion) -> SuggestionState:
    return SuggestionState(
        id=s.id,
        anchor_id=s.anchor_id,
        claim_id=s.claim_id,
        score=s.score,
        status=s.status,
        reviewed_by=s.reviewed_by,
        reason=s.reason,
    )


def _dump_state(state: StatePayload | None) -> dict[str, Any] | None:
    if state is None:
        return None
    if not isinstance(state, BaseModel):
        raise ValidationError(f"audit state must be a typed payload, got {type(state).__name__}")
    return state.model_dump(mode="json")


class AuditLog:
    """Append-only audit trail over the audit_log table."""

    def log(
        self,
        action: AuditAction | str,
        entity_type: EntityType | str,
        entity_id: Any,
        actor: str,
        previous_state: StatePayload | None = None,
        new_state: StatePayload | None = None,
        metadata: dict[str, Any] | None = None,
        *,
        session: Session | None = None,
    ) -> AuditLogEntry:
        """
        Write one entry. With session, the row joins the caller's transaction and is
        flushed so a failing write aborts the surrounding mutation.
        """
        actor = (actor or "").strip()
        if not actor:
            raise ValidationError("actor is required")
        entry = AuditLogEntry(
            timestamp=now_ms(),
            action=getattr(action, "value", action),
            entity_type=getattr(entity_type, "value", entity_type),
            entity_id=None if entity_id is None else str(entity_id),
            actor=actor,
            previous_state=_dump_state(previous_state),
            new_state=_dump_state(new_state),
            meta=dump_metadata(metadata),
        )
        if session is None:
            with session_scope() as own:
                own.add(entry)
                own.flush()
        else:
            session.add(entry)
            session.flush()
        logger.debug(
            "audit_logged",
            action=entry.action,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            actor=actor,
        )
        return entry

    def query(
        self,
        filters: AuditFilters | None = None,
        pagination: Pagination | None = None,
    ) -> Page[dict[str, Any]]:
        """Entries matching filters, newest first."""
        filters = filters or AuditFilters()
        pagination = pagination or Pagination()
        with session_scope() as session:
            q = session.query(AuditLogEntry)
            if filters.action:
                q = q.filter(AuditLogEntry.action == filters.action)
            if filters.entity_type:
                q = q.filter(AuditLogEntry.entity_type == filters.entity_type)
            if filters.entity_id:
                q = q.filter(AuditLogEntry.entity_id == filters.entity_id)
            if filters.actor:
                q = q.filter(AuditLogEntry.actor == filters.actor)
            if filters.start_ms is not None:
                q = q.filter(AuditLogEntry.timestamp >= filters.start_ms)
            if filters.end_ms is not None:
                q = q.filter(AuditLogEntry.timestamp <= filters.end_ms)
            total = q.count()
            rows = (
                q.order_by(AuditLogEntry.timestamp.desc(), AuditLogEntry.id.desc())
                .offset(pagination.offset)
                .limit(pagination.limit)
                .all()
            )
            items = [r.to_dict() for r in rows]
        return Page(items=items, total=total, page=pagination.page, limit=pagination.limit)


audit_log = AuditLog()
