"""
Match Lifecycle: suggestion -> approval / rejection / force reconciliation.

States:
    anchor (unconsumed anchor) / pending (open claim)
        -> suggested_match (claim has a pending suggestion)
        -> reconciled | force_reconciled

Every transition runs in one session with its audit entry. The at-most-one-active-match
rule is checked here and enforced again by the uq_transactions_active_match index, so a
losing concurrent approval fails with ConflictError instead of double-linking a row.
"""

from __future__ import annotations

import time
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session, aliased

from anchor_recon.audit.service import (
    AuditAction,
    EntityType,
    audit_log,
    suggestion_state,
    transaction_state,
)
from anchor_recon.config.service import MatchingConfigService, matching_config_service
from anchor_recon.config.settings import MatchingConfig, get_settings
from anchor_recon.core.exceptions import ConflictError, NotFoundError, ReconError, ValidationError
from anchor_recon.core.locks import run_exclusive
from anchor_recon.core.pagination import Page, Pagination
from anchor_recon.core.results import BatchReconcileResult, ItemFailure
from anchor_recon.core.timeutil import now_ms
from anchor_recon.database.connection import integrity_as_conflict, session_scope
from anchor_recon.database.models import (
    APPROVABLE_CLAIM_STATUSES,
    RECONCILED_STATUSES,
    MatchSuggestion,
    RejectedPair,
    SuggestionStatus,
    Transaction,
    TxStatus,
)
from anchor_recon.database.schemas import RunState, SuggestionState
from anchor_recon.ledger.store import transaction_store
from anchor_recon.matching.candidates import CandidateGenerator, candidate_generator
from anchor_recon.matching.models import MatchRunResult, MatchScore
from anchor_recon.matching.scoring import score_pair
from anchor_recon.recon_logging import bind_actor, get_logger

logger = get_logger(__name__)


def _check_min_score(min_score: float | None) -> float:
    if min_score is None:
        return get_settings().default_min_score
    try:
        value = float(min_score)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"min_score must be a number, got {min_score!r}") from e
    if not 0 <= value <= 100:
        raise ValidationError(f"min_score must be within 0..100, got {value:g}")
    return value


def _load_pair(session: Session, anchor_id: int, claim_id: int) -> tuple[Transaction, Transaction]:
    anchor = session.get(Transaction, anchor_id)
    if anchor is None:
        raise NotFoundError(f"anchor {anchor_id} not found")
    if not anchor.is_anchor:
        raise ValidationError(f"transaction {anchor_id} is not an on-chain anchor")
    claim = session.get(Transaction, claim_id)
    if claim is None:
        raise NotFoundError(f"claim {claim_id} not found")
    if claim.is_anchor:
        raise ValidationError(f"transaction {claim_id} is an anchor, not a claim")
    return anchor, claim


def _pair_suggestion(session: Session, anchor_id: int, claim_id: int) -> MatchSuggestion | None:
    return (
        session.query(MatchSuggestion)
        .filter(MatchSuggestion.anchor_id == anchor_id, MatchSuggestion.claim_id == claim_id)
        .one_or_none()
    )


def _is_rejected(session: Session, anchor_id: int, claim_id: int) -> bool:
    return session.get(RejectedPair, (anchor_id, claim_id)) is not None


def _refresh_claim_link(session: Session, claim: Transaction) -> None:
    """
    Point an unreconciled claim at its best pending suggestion, or return it to
    pending when none is left.
    """
    if claim.status in RECONCILED_STATUSES:
        return
    best = (
        session.query(MatchSuggestion)
        .filter(
            MatchSuggestion.claim_id == claim.id,
            MatchSuggestion.status == SuggestionStatus.PENDING.value,
        )
        .order_by(MatchSuggestion.score.desc(), MatchSuggestion.id.asc())
        .first()
    )
    if best is None:
        if claim.status == TxStatus.SUGGESTED_MATCH.value:
            claim.status = TxStatus.PENDING.value
            claim.matched_tx_id = None
            claim.match_score = None
            claim.score_breakdown = None
        return
    claim.status = TxStatus.SUGGESTED_MATCH.value
    claim.matched_tx_id = best.anchor_id
    claim.match_score = best.score
    claim.score_breakdown = best.score_breakdown


class MatchLifecycle:
    def __init__(
        self,
        config_service: MatchingConfigService | None = None,
        generator: CandidateGenerator | None = None,
    ) -> None:
        self._config = config_service or matching_config_service
        self._generator = generator or candidate_generator

    # -- matching run ------------------------------------------------------

    def run_matching(
        self,
        token: str | None = None,
        min_score: float | None = None,
        actor: str = "system",
    ) -> MatchRunResult:
        """
        Score candidates for every unconsumed anchor (optionally one token) and persist
        a pending suggestion for each pair at or above min_score.

        Idempotent: claims already suggested are no longer candidates, existing pairs
        are skipped, and rejected pairs are filtered out by the generator.
        """
        threshold = _check_min_score(min_score)
        token = (token or "").strip() or None
        config = self._config.load()
        started = time.monotonic()
        logger.info("matching_run_started", token=token, min_score=threshold, actor=actor)

        with run_exclusive(f"matching:{token or '*'}"):
            with integrity_as_conflict("a concurrent run or approval touched the same pair; retry"):
                with session_scope() as session:
                    result = self._run(session, token, threshold, config, started)
                    audit_log.log(
                        AuditAction.RUN_MATCHING,
                        EntityType.SYSTEM,
                        None,
                        actor,
                        new_state=RunState(
                            run="run_matching",
                            counts={
                                "new_suggestions": result.new_suggestions,
                                "anchors_processed": result.anchors_processed,
                                "skipped_pairs": result.skipped_pairs,
                            },
                            params={"token_filter": token, "min_score": threshold},
                        ),
                        session=session,
                    )
        logger.info(
            "matching_run_finished",
            token=token,
            new_suggestions=result.new_suggestions,
            anchors=result.anchors_processed,
            time_ms=result.time_ms,
        )
        return result

    def _run(
        self,
        session: Session,
        token: str | None,
        threshold: float,
        config: MatchingConfig,
        started: float,
    ) -> MatchRunResult:
        anchors = transaction_store.get_unmatched_anchors(token, session)

        result = MatchRunResult(new_suggestions=0, time_ms=0)
        for anchor in anchors:
            result.anchors_processed += 1
            for claim in self._generator.generate(session, anchor, config.tolerances):
                score = score_pair(anchor, claim, config)
                if score.total < threshold:
                    continue
                if _pair_suggestion(session, anchor.id, claim.id) is not None:
                    result.skipped_pairs += 1
                    continue
                breakdown = score.breakdown_dict()
                moved = (
                    session.query(Transaction)
                    .filter(Transaction.id == claim.id, Transaction.status == TxStatus.PENDING.value)
                    .update(
                        {
                            Transaction.status: TxStatus.SUGGESTED_MATCH.value,
                            Transaction.matched_tx_id: anchor.id,
                            Transaction.match_score: score.total,
                            Transaction.score_breakdown: breakdown,
                            Transaction.updated_at: now_ms(),
                        },
                        synchronize_session="fetch",
                    )
                )
                if not moved:
                    result.skipped_pairs += 1
                    continue
                suggestion = MatchSuggestion(
                    anchor_id=anchor.id,
                    claim_id=claim.id,
                    score=score.total,
                    score_breakdown=breakdown,
                    status=SuggestionStatus.PENDING.value,
                    created_at=now_ms(),
                )
                session.add(suggestion)
                session.flush()
                result.new_suggestions += 1
                result.suggestions.append(suggestion.to_dict())
                logger.debug(
                    "suggestion_created",
                    anchor_id=anchor.id,
                    claim_id=claim.id,
                    score=score.total,
                )
        result.time_ms = int((time.monotonic() - started) * 1000)
        return result

    # -- operator decisions ------------------------------------------------

    def approve(
        self,
        anchor_id: int,
        claim_id: int,
        actor: str,
        force: bool = False,
        min_score: float | None = None,
    ) -> dict[str, Any]:
        """
        Reconcile anchor and claim. Without force the pair needs a pending suggestion
        or an on-the-spot score >= min_score, and must not have been rejected.
        """
        if not (actor or "").strip():
            raise ValidationError("actor is required")
        threshold = _check_min_score(min_score)
        with integrity_as_conflict(f"anchor {anchor_id} or claim {claim_id} is already in an active match"):
            with session_scope() as session:
                out = self._approve(session, anchor_id, claim_id, actor, force, threshold)
        logger.info(
            "match_force_reconciled" if force else "match_approved",
            anchor_id=anchor_id,
            claim_id=claim_id,
            score=out["score"],
            actor=actor,
        )
        return out

    def _approve(
        self,
        session: Session,
        anchor_id: int,
        claim_id: int,
        actor: str,
        force: bool,
        threshold: float,
    ) -> dict[str, Any]:
        anchor, claim = _load_pair(session, anchor_id, claim_id)
        if anchor.status in RECONCILED_STATUSES:
            raise ConflictError(
                f"anchor {anchor_id} is already {anchor.status} with transaction {anchor.matched_tx_id}"
            )
        if claim.status not in APPROVABLE_CLAIM_STATUSES:
            raise ConflictError(f"claim {claim_id} is already {claim.status}")

        suggestion = _pair_suggestion(session, anchor_id, claim_id)
        if suggestion is not None and suggestion.status != SuggestionStatus.PENDING.value and not force:
            raise ConflictError(f"suggestion for ({anchor_id}, {claim_id}) is already {suggestion.status}")
        if not force and _is_rejected(session, anchor_id, claim_id):
            raise ConflictError(f"pair ({anchor_id}, {claim_id}) was rejected; use force to override")

        if suggestion is not None and suggestion.status == SuggestionStatus.PENDING.value:
            score_total, breakdown = suggestion.score, suggestion.score_breakdown
        else:
            score: MatchScore = score_pair(anchor, claim, self._config.load())
            score_total, breakdown = score.total, score.breakdown_dict()
            if not force and score_total < threshold:
                raise ValidationError(
                    f"pair ({anchor_id}, {claim_id}) scores {score_total:g}, below minimum {threshold:g}"
                )

        previous = transaction_state(claim)
        status = TxStatus.FORCE_RECONCILED.value if force else TxStatus.RECONCILED.value
        ts = now_ms()
        for row, counterpart in ((claim, anchor), (anchor, claim)):
            row.status = status
            row.matched_tx_id = counterpart.id
            row.match_score = score_total
            row.score_breakdown = breakdown
            row.reconciled_by = actor
            row.reconciled_at = ts
            row.force_reconciled = force
        if suggestion is not None and suggestion.status == SuggestionStatus.PENDING.value:
            suggestion.status = SuggestionStatus.APPROVED.value
            suggestion.reviewed_by = actor
            suggestion.reviewed_at = ts
        session.flush()

        closed = self._close_siblings(session, anchor, claim, actor, ts)
        audit_log.log(
            AuditAction.FORCE_RECONCILE if force else AuditAction.APPROVE_MATCH,
            EntityType.TRANSACTION,
            claim.id,
            actor,
            previous_state=previous,
            new_state=transaction_state(claim),
            metadata={
                "anchor_id": anchor.id,
                "claim_id": claim.id,
                "suggestion_id": suggestion.id if suggestion is not None else None,
                "score": score_total,
                "force": force,
                "closed_suggestions": closed,
            },
            session=session,
        )
        return {
            "anchor_id": anchor.id,
            "claim_id": claim.id,
            "status": status,
            "score": score_total,
            "score_breakdown": breakdown,
            "force_reconciled": force,
            "closed_suggestions": closed,
        }

    def _close_siblings(
        self,
        session: Session,
        anchor: Transaction,
        claim: Transaction,
        actor: str,
        ts: int,
    ) -> int:
        """Reject the other pending suggestions of a consumed anchor or claim."""
        siblings = (
            session.query(MatchSuggestion)
            .filter(
                MatchSuggestion.status == SuggestionStatus.PENDING.value,
                or_(MatchSuggestion.anchor_id == anchor.id, MatchSuggestion.claim_id == claim.id),
            )
            .all()
        )
        affected_claims: set[int] = set()
        for s in siblings:
            s.status = SuggestionStatus.REJECTED.value
            s.reviewed_by = actor
            s.reviewed_at = ts
            s.reason = f"superseded by match ({anchor.id}, {claim.id})"
            affected_claims.add(s.claim_id)
        session.flush()
        for other_id in affected_claims - {claim.id}:
            other = session.get(Transaction, other_id)
            if other is not None:
                _refresh_claim_link(session, other)
        session.flush()
        return len(siblings)

    def reject(
        self,
        anchor_id: int,
        claim_id: int,
        actor: str,
        reason: str | None = None,
    ) -> dict[str, Any]:
        """
        Reject the pair: close its pending suggestion, remember the pair so it is never
        suggested again, and release the claim if nothing else is pending for it.
        """
        if not (actor or "").strip():
            raise ValidationError("actor is required")
        reason = (reason or "").strip() or None
        with integrity_as_conflict(f"pair ({anchor_id}, {claim_id}) was rejected concurrently"):
            with session_scope() as session:
                anchor, claim = _load_pair(session, anchor_id, claim_id)
                if anchor.status in RECONCILED_STATUSES:
                    raise ConflictError(f"anchor {anchor_id} is already {anchor.status}")
                if claim.status in RECONCILED_STATUSES:
                    raise ConflictError(f"claim {claim_id} is already {claim.status}")
                suggestion = _pair_suggestion(session, anchor_id, claim_id)
                if suggestion is not None and suggestion.status != SuggestionStatus.PENDING.value:
                    raise ConflictError(
                        f"suggestion for ({anchor_id}, {claim_id}) is already {suggestion.status}"
                    )
                if _is_rejected(session, anchor_id, claim_id):
                    raise ConflictError(f"pair ({anchor_id}, {claim_id}) is already rejected")

                ts = now_ms()
                if suggestion is not None:
                    previous = suggestion_state(suggestion)
                    suggestion.status = SuggestionStatus.REJECTED.value
                    suggestion.reviewed_by = actor
                    suggestion.reviewed_at = ts
                    suggestion.reason = reason
                else:
                    previous = None
                session.add(
                    RejectedPair(
                        anchor_id=anchor_id,
                        claim_id=claim_id,
                        rejected_by=actor,
                        reason=reason,
                        created_at=ts,
                    )
                )
                session.flush()
                _refresh_claim_link(session, claim)
                session.flush()
                if suggestion is not None:
                    new_state = suggestion_state(suggestion)
                else:
                    new_state = SuggestionState(
                        anchor_id=anchor_id,
                        claim_id=claim_id,
                        status=SuggestionStatus.REJECTED.value,
                        reviewed_by=actor,
                        reason=reason,
                    )
                audit_log.log(
                    AuditAction.REJECT_MATCH,
                    EntityType.SUGGESTION,
                    suggestion.id if suggestion is not None else f"{anchor_id}:{claim_id}",
                    actor,
                    previous_state=previous,
                    new_state=new_state,
                    metadata={"anchor_id": anchor_id, "claim_id": claim_id, "reason": reason},
                    session=session,
                )
                out = {
                    "anchor_id": anchor_id,
                    "claim_id": claim_id,
                    "suggestion_id": suggestion.id if suggestion is not None else None,
                    "status": SuggestionStatus.REJECTED.value,
                    "claim_status": claim.status,
                    "reason": reason,
                }
        logger.info("match_rejected", anchor_id=anchor_id, claim_id=claim_id, actor=actor, reason=reason)
        return out

    def batch_reconcile(
        self,
        pairs: list[Any],
        actor: str,
        force: bool = False,
    ) -> BatchReconcileResult:
        """
        Approve each (anchor_id, claim_id) independently. Failures are collected per
        input index; pairs already applied stay applied.
        """
        result = BatchReconcileResult()
        with bind_actor(actor):
            for index, pair in enumerate(pairs):
                try:
                    anchor_id, claim_id = _pair_ids(pair)
                    result.results.append(self.approve(anchor_id, claim_id, actor, force=force))
                    result.succeeded += 1
                except ReconError as e:
                    result.failed += 1
                    context = pair if isinstance(pair, dict) else {}
                    result.errors.append(
                        ItemFailure(
                            index=index,
                            error=e.message,
                            code=e.code,
                            context={k: context.get(k) for k in ("anchor_id", "claim_id") if k in context},
                        )
                    )
                    logger.warning("batch_reconcile_item_failed", index=index, error=e.message)
            logger.info("batch_reconcile_finished", succeeded=result.succeeded, failed=result.failed)
        return result

    # -- listing -----------------------------------------------------------

    def list_suggestions(
        self,
        status: str | None = None,
        min_score: float | None = None,
        token: str | None = None,
        pagination: Pagination | None = None,
    ) -> Page[dict[str, Any]]:
        """Suggestions with anchor and claim snapshots, best score first."""
        if status is not None and status not in {s.value for s in SuggestionStatus}:
            raise ValidationError(f"unknown suggestion status {status}")
        pagination = pagination or Pagination()
        anchor_tx = aliased(Transaction)
        claim_tx = aliased(Transaction)
        with session_scope() as session:
            q = (
                session.query(MatchSuggestion, anchor_tx, claim_tx)
                .join(anchor_tx, anchor_tx.id == MatchSuggestion.anchor_id)
                .join(claim_tx, claim_tx.id == MatchSuggestion.claim_id)
            )
            if status:
                q = q.filter(MatchSuggestion.status == status)
            if min_score is not None:
                q = q.filter(MatchSuggestion.score >= _check_min_score(min_score))
            if token:
                q = q.filter(anchor_tx.token_symbol == token)
            total = q.count()
            rows = (
                q.order_by(MatchSuggestion.score.desc(), MatchSuggestion.id.asc())
                .offset(pagination.offset)
                .limit(pagination.limit)
                .all()
            )
            items = [
                {**s.to_dict(), "anchor": a.to_dict(), "claim": c.to_dict()}
                for s, a, c in rows
            ]
        return Page(items=items, total=total, page=pagination.page, limit=pagination.limit)


def _pair_ids(pair: Any) -> tuple[int, int]:
    if isinstance(pair, dict):
        raw = (pair.get("anchor_id"), pair.get("claim_id"))
    elif isinstance(pair, (list, tuple)) and len(pair) == 2:
        raw = tuple(pair)
    else:
        raise ValidationError("each pair needs anchor_id and claim_id")
    try:
        if any(isinstance(v, bool) or v is None for v in raw):
            raise TypeError
        return int(raw[0]), int(raw[1])
    except (TypeError, ValueError) as e:
        raise ValidationError(f"invalid pair ids: {raw!r}") from e


match_lifecycle = MatchLifecycle()
