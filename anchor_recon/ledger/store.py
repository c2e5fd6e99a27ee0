"""
Transaction Store: durable ledger of anchors and claims.

Every mutation runs inside one session_scope() together with its audit row, so a
failed audit write rolls the mutation back. Amounts are canonical decimal strings.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from anchor_recon.audit.service import (
    AuditAction,
    EntityType,
    audit_log,
    transaction_state,
)
from anchor_recon.config.settings import MatchingConfig
from anchor_recon.core.exceptions import (
    ConflictError,
    NotFoundError,
    ReconError,
    ValidationError,
    parse_model,
)
from anchor_recon.core.numeric import round_int, to_decimal
from anchor_recon.core.pagination import Page, Pagination
from anchor_recon.core.results import ImportResult, ItemFailure
from anchor_recon.core.timeutil import now_ms
from anchor_recon.database.connection import integrity_as_conflict, session_scope
from anchor_recon.database.models import (
    RECONCILED_STATUSES,
    MatchSuggestion,
    SuggestionStatus,
    Transaction,
    TxSource,
    TxStatus,
)
from anchor_recon.database.schemas import ScoreBreakdown, dump_metadata, dump_payload
from anchor_recon.ledger.schemas import AnchorUpsert, ClaimCreate, TransactionFilters
from anchor_recon.matching.candidates import candidate_generator
from anchor_recon.recon_logging import bind_actor, get_logger

logger = get_logger(__name__)

_UNSET: Any = object()

LINKED_CLAIM_STATUSES = RECONCILED_STATUSES + (TxStatus.SUGGESTED_MATCH.value,)
ANCHOR_STATUSES = (TxStatus.ANCHOR.value,) + RECONCILED_STATUSES
_ANCHOR_DATA_FIELDS = (
    "token_address",
    "amount_gross",
    "amount_net",
    "gas_used",
    "sender_address",
    "receiver_address",
    "timestamp",
    "block_number",
)


def check_link(session: Session, tx: Transaction, status: str, matched_tx_id: int | None) -> None:
    """
    Enforce the status/link invariants for one row.

    A claim's matched_tx_id is set iff it is reconciled, force_reconciled or
    suggested_match, and must point at an on-chain row. An anchor only ever takes
    anchor or a reconciled status.
    """
    if tx.is_anchor:
        if status not in ANCHOR_STATUSES:
            raise ValidationError(f"anchor {tx.id} cannot take status {status}")
        if status == TxStatus.ANCHOR.value and matched_tx_id is not None:
            raise ValidationError(f"unconsumed anchor {tx.id} cannot carry matched_tx_id")
        if status in RECONCILED_STATUSES and matched_tx_id is None:
            raise ValidationError(f"reconciled anchor {tx.id} needs matched_tx_id")
        return
    if status == TxStatus.ANCHOR.value:
        raise ValidationError(f"claim {tx.id} cannot take status anchor")
    linked = status in LINKED_CLAIM_STATUSES
    if linked and matched_tx_id is None:
        raise ValidationError(f"claim status {status} requires matched_tx_id")
    if not linked and matched_tx_id is not None:
        raise ValidationError(f"claim status {status} must not carry matched_tx_id")
    if matched_tx_id is not None:
        target = session.get(Transaction, matched_tx_id)
        if target is None:
            raise NotFoundError(f"transaction {matched_tx_id} not found")
        if not target.is_anchor:
            raise ValidationError(f"matched_tx_id {matched_tx_id} is not an on-chain anchor")


def _pending_suggestion(session: Session, anchor_id: int, claim_id: int) -> MatchSuggestion:
    suggestion = (
        session.query(MatchSuggestion)
        .filter(
            MatchSuggestion.anchor_id == anchor_id,
            MatchSuggestion.claim_id == claim_id,
            MatchSuggestion.status == SuggestionStatus.PENDING.value,
        )
        .one_or_none()
    )
    if suggestion is None:
        raise ValidationError(f"claim {claim_id} has no pending suggestion for anchor {anchor_id}")
    return suggestion


def _close_pending_suggestions(session: Session, claim_id: int, actor: str, new_status: str) -> int:
    """Reject every pending suggestion of a claim; returns how many were closed."""
    pending = (
        session.query(MatchSuggestion)
        .filter(
            MatchSuggestion.claim_id == claim_id,
            MatchSuggestion.status == SuggestionStatus.PENDING.value,
        )
        .all()
    )
    ts = now_ms()
    for s in pending:
        s.status = SuggestionStatus.REJECTED.value
        s.reviewed_by = actor
        s.reviewed_at = ts
        s.reason = f"claim moved to {new_status}"
    return len(pending)


class TransactionStore:
    """Query/mutation layer over the transactions table."""

    # -- ingestion ---------------------------------------------------------

    def _insert_claim(self, session: Session, claim: ClaimCreate, actor: str) -> Transaction:
        tx = Transaction(
            tx_hash=claim.tx_hash,
            source=claim.source,
            status=TxStatus.PENDING.value,
            type=claim.type.value,
            token_symbol=claim.token_symbol,
            token_address=claim.token_address,
            amount_gross=claim.amount_gross,
            amount_net=claim.amount_net,
            gas_used=claim.gas_used,
            sender_address=claim.sender_address,
            receiver_address=claim.receiver_address,
            timestamp=claim.timestamp,
            block_number=claim.block_number,
            notes=claim.notes,
            meta=dump_metadata(claim.metadata),
            force_reconciled=False,
        )
        session.add(tx)
        session.flush()
        audit_log.log(
            AuditAction.CREATE_CLAIM,
            EntityType.TRANSACTION,
            tx.id,
            actor,
            previous_state=None,
            new_state=transaction_state(tx),
            metadata={"source": tx.source, "token": tx.token_symbol},
            session=session,
        )
        return tx

    def create_claim(self, claim: ClaimCreate | dict[str, Any], actor: str = "system") -> dict[str, Any]:
        """Insert one claim with status pending and write its create_claim audit entry."""
        data = parse_model(ClaimCreate, claim)
        with integrity_as_conflict(f"claim {data.tx_hash} violates a ledger constraint"):
            with session_scope() as session:
                tx = self._insert_claim(session, data, actor)
                out = tx.to_dict()
        logger.info(
            "claim_created",
            tx_id=out["id"],
            source=out["source"],
            token=out["token_symbol"],
            actor=actor,
        )
        return out

    def import_claims(self, claims: list[Any], actor: str = "system") -> ImportResult:
        """
        Import each claim in its own transaction. A failing row is reported at its
        input index and does not abort the rest.
        """
        result = ImportResult()
        with bind_actor(actor):
            for index, claim in enumerate(claims):
                try:
                    result.imported.append(self.create_claim(claim, actor))
                except ReconError as e:
                    logger.warning("claim_import_row_failed", index=index, error=e.message)
                    result.failed.append(ItemFailure(index=index, error=e.message, code=e.code))
            logger.info("claims_imported", imported=len(result.imported), failed=len(result.failed))
        return result

    def upsert_anchor(self, anchor: AnchorUpsert | dict[str, Any], actor: str = "system") -> dict[str, Any]:
        """
        Insert or refresh an on-chain anchor keyed by (tx_hash, type).

        Re-syncing identical data is a no-op (no audit entry). A token mismatch for an
        existing key is a ConflictError.
        """
        data = parse_model(AnchorUpsert, anchor)
        with integrity_as_conflict(f"anchor {data.tx_hash}/{data.type.value} conflicts with a concurrent write"):
            with session_scope() as session:
                existing = (
                    session.query(Transaction)
                    .filter(
                        Transaction.source == TxSource.ONCHAIN.value,
                        Transaction.tx_hash == data.tx_hash,
                        Transaction.type == data.type.value,
                    )
                    .one_or_none()
                )
                if existing is None:
                    tx = Transaction(
                        tx_hash=data.tx_hash,
                        source=TxSource.ONCHAIN.value,
                        status=TxStatus.ANCHOR.value,
                        type=data.type.value,
                        token_symbol=data.token_symbol,
                        force_reconciled=False,
                        meta={},
                    )
                    for name in _ANCHOR_DATA_FIELDS:
                        setattr(tx, name, getattr(data, name))
                    session.add(tx)
                    session.flush()
                    previous = None
                    changed = list(_ANCHOR_DATA_FIELDS)
                else:
                    tx = existing
                    if tx.token_symbol != data.token_symbol:
                        raise ConflictError(
                            f"anchor {data.tx_hash}/{data.type.value} already recorded for "
                            f"{tx.token_symbol}, not {data.token_symbol}"
                        )
                    previous = transaction_state(tx)
                    changed = [n for n in _ANCHOR_DATA_FIELDS if getattr(tx, n) != getattr(data, n)]
                    for name in changed:
                        setattr(tx, name, getattr(data, name))
                    session.flush()
                if changed:
                    audit_log.log(
                        AuditAction.UPSERT_ANCHOR,
                        EntityType.TRANSACTION,
                        tx.id,
                        actor,
                        previous_state=previous,
                        new_state=transaction_state(tx),
                        metadata={"tx_hash": tx.tx_hash, "fields": ",".join(changed)},
                        session=session,
                    )
                out = tx.to_dict()
        logger.info("anchor_upserted", tx_id=out["id"], tx_hash=out["tx_hash"], created=previous is None)
        return out

    # -- queries -----------------------------------------------------------

    def query(
        self,
        filters: TransactionFilters | dict[str, Any] | None = None,
        pagination: Pagination | None = None,
    ) -> Page[dict[str, Any]]:
        """Filtered transactions, newest first."""
        f = parse_model(TransactionFilters, filters or {})
        pagination = pagination or Pagination()
        with session_scope() as session:
            q = session.query(Transaction)
            if f.source:
                q = q.filter(Transaction.source == f.source.value)
            if f.status:
                q = q.filter(Transaction.status == f.status.value)
            if f.token:
                q = q.filter(Transaction.token_symbol == f.token)
            if f.from_date is not None:
                q = q.filter(Transaction.timestamp >= f.from_date)
            if f.to_date is not None:
                q = q.filter(Transaction.timestamp <= f.to_date)
            if f.sender:
                q = q.filter(func.lower(Transaction.sender_address) == f.sender.lower())
            if f.receiver:
                q = q.filter(func.lower(Transaction.receiver_address) == f.receiver.lower())
            total = q.count()
            rows = (
                q.order_by(Transaction.timestamp.desc(), Transaction.id.desc())
                .offset(pagination.offset)
                .limit(pagination.limit)
                .all()
            )
            items = [r.to_dict() for r in rows]
        return Page(items=items, total=total, page=pagination.page, limit=pagination.limit)

    def get_by_id(self, tx_id: int) -> dict[str, Any]:
        with session_scope() as session:
            tx = session.get(Transaction, tx_id)
            if tx is None:
                raise NotFoundError(f"transaction {tx_id} not found")
            return tx.to_dict()

    def get_unmatched_anchors(self, token: str | None = None, session: Session | None = None) -> list[Transaction]:
        """Unconsumed anchors, newest first."""
        if session is None:
            with session_scope() as own:
                return self.get_unmatched_anchors(token, own)
        q = session.query(Transaction).filter(
            Transaction.source == TxSource.ONCHAIN.value,
            Transaction.status == TxStatus.ANCHOR.value,
            Transaction.matched_tx_id.is_(None),
        )
        if token:
            q = q.filter(Transaction.token_symbol == token)
        return q.order_by(Transaction.timestamp.desc(), Transaction.id.desc()).all()

    def get_candidate_claims(
        self,
        anchor_id: int,
        config: MatchingConfig,
        session: Session | None = None,
    ) -> list[Transaction]:
        """Candidate claims for one anchor; see CandidateGenerator."""
        if session is None:
            with session_scope() as own:
                return self.get_candidate_claims(anchor_id, config, own)
        anchor = session.get(Transaction, anchor_id)
        if anchor is None or not anchor.is_anchor:
            raise NotFoundError(f"anchor {anchor_id} not found")
        return candidate_generator.generate(session, anchor, config.tolerances)

    def get_stats(self) -> dict[str, Any]:
        """
        Aggregate counts. reconciled counts claims only, so match_rate stays within
        0..100 even though both sides of a pair carry a reconciled status.
        """
        with session_scope() as session:
            def count(*criteria: Any) -> int:
                return session.query(func.count(Transaction.id)).filter(*criteria).scalar() or 0

            claim = Transaction.source != TxSource.ONCHAIN.value
            total_anchors = count(Transaction.source == TxSource.ONCHAIN.value)
            unmatched_anchors = count(Transaction.status == TxStatus.ANCHOR.value)
            total_claims = count(claim)
            pending_claims = count(claim, Transaction.status == TxStatus.PENDING.value)
            reconciled = count(claim, Transaction.status.in_(RECONCILED_STATUSES))
            suggestions = (
                session.query(func.count(MatchSuggestion.id))
                .filter(MatchSuggestion.status == SuggestionStatus.PENDING.value)
                .scalar()
                or 0
            )
        match_rate = round_int(to_decimal(reconciled) / total_claims * 100) if total_claims else 0
        return {
            "total_anchors": total_anchors,
            "unmatched_anchors": unmatched_anchors,
            "total_claims": total_claims,
            "pending_claims": pending_claims,
            "reconciled": reconciled,
            "suggestions": suggestions,
            "match_rate": match_rate,
        }

    # -- mutation ----------------------------------------------------------

    def update_status(
        self,
        tx_id: int,
        status: TxStatus | str,
        *,
        actor: str,
        matched_tx_id: int | None = _UNSET,
        match_score: float | None = _UNSET,
        score_breakdown: dict[str, Any] | None = _UNSET,
    ) -> dict[str, Any]:
        """
        Partial update of status plus optional match linkage.

        Reconciled rows are terminal (ConflictError), and reconciled statuses are only
        reachable through MatchLifecycle.approve, which consumes both sides. A claim
        moved to suggested_match must point at one of its pending suggestions; a claim
        leaving suggested_match has its pending suggestions closed.
        """
        status = getattr(status, "value", status)
        if status not in {s.value for s in TxStatus}:
            raise ValidationError(f"unknown status {status}")
        if score_breakdown is not _UNSET and score_breakdown is not None:
            score_breakdown = dump_payload(ScoreBreakdown, score_breakdown)
        with integrity_as_conflict(f"transaction {tx_id} is already the counterpart of an active match"):
            with session_scope() as session:
                tx = session.get(Transaction, tx_id)
                if tx is None:
                    raise NotFoundError(f"transaction {tx_id} not found")
                if tx.status in RECONCILED_STATUSES:
                    raise ConflictError(f"transaction {tx_id} is already {tx.status}")
                if status in RECONCILED_STATUSES:
                    raise ValidationError(
                        f"status {status} is set by approving a match, not by a status update"
                    )
                previous = transaction_state(tx)
                linked = status in LINKED_CLAIM_STATUSES
                if matched_tx_id is _UNSET:
                    new_link = tx.matched_tx_id if linked else None
                else:
                    new_link = matched_tx_id
                check_link(session, tx, status, new_link)
                if status == TxStatus.SUGGESTED_MATCH.value:
                    _pending_suggestion(session, new_link, tx.id)

                closed = 0
                if tx.status == TxStatus.SUGGESTED_MATCH.value and status != tx.status:
                    closed = _close_pending_suggestions(session, tx.id, actor, status)
                tx.status = status
                tx.matched_tx_id = new_link
                if match_score is not _UNSET:
                    tx.match_score = match_score
                elif not linked:
                    tx.match_score = None
                if score_breakdown is not _UNSET:
                    tx.score_breakdown = score_breakdown
                elif not linked:
                    tx.score_breakdown = None
                session.flush()
                audit_log.log(
                    AuditAction.UPDATE_STATUS,
                    EntityType.TRANSACTION,
                    tx.id,
                    actor,
                    previous_state=previous,
                    new_state=transaction_state(tx),
                    metadata={"closed_suggestions": closed} if closed else None,
                    session=session,
                )
                out = tx.to_dict()
        logger.info("transaction_status_updated", tx_id=tx_id, status=status, actor=actor, closed=closed)
        return out


transaction_store = TransactionStore()
